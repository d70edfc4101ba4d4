import re
import unicodedata

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int = 120) -> str:
    """URL-safe lowercase slug: "Root Canal (Endo)" -> "root-canal-endo"."""
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG_RE.sub("-", ascii_text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "topic"
