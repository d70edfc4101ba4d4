from typing import Optional

from fastapi import Header, HTTPException

from studygen.utils.logger import logger

# Accepted identity prefixes: anonymous browser sessions and signed-in users
USER_ID_PREFIXES = ("user_", "supa_")


async def get_user_id(
    x_user_id: Optional[str] = Header(None),
) -> str:
    """
    Get user ID from header (required for data isolation)

    Usage:
        @router.get("/endpoint")
        async def endpoint(user_id: str = Depends(get_user_id)):
            # Filter data by user_id
    """
    if not x_user_id:
        raise HTTPException(
            status_code=401,
            detail="User ID required. Please refresh the page."
        )

    if not x_user_id.startswith(USER_ID_PREFIXES):
        logger.warning("auth.invalid_user_id", extra={"label": x_user_id[:12]})
        raise HTTPException(
            status_code=400,
            detail="Invalid user ID format"
        )

    return x_user_id


def check_ownership(record_user_id: str, request_user_id: str) -> bool:
    """
    Check if a record belongs to the requesting user.
    A supa_ user may claim records created under their raw id (no prefix).
    """
    if record_user_id == request_user_id:
        return True
    if record_user_id and request_user_id.startswith("supa_") and request_user_id == f"supa_{record_user_id}":
        return True
    return False
