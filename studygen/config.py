from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os

class Settings(BaseSettings):
    # API Keys
    openai_api_key: str = ""

    # Test Mode - canned generator output, no network calls
    test_mode: bool = False

    # Database - hosted environments provide DATABASE_URL, fallback to SQLite for local
    database_url: Optional[str] = None

    # Job store (Redis). Empty means in-process store for local development.
    redis_url: str = ""

    # Blob storage
    storage_type: str = "local"  # "local" or "s3"
    storage_dir: str = "./study_blobs"
    aws_s3_bucket: str = "dental-study-materials"
    aws_s3_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    # Generation
    generation_model: str = "gpt-4o-mini"
    generation_max_tokens: int = 2048
    summary_expansion_max_tokens: int = 3072
    summary_min_length: int = 1500
    summary_source_chars: int = 12000
    stage_source_chars: int = 8000
    max_extracted_text_chars: int = 50000

    # Jobs
    job_ttl_seconds: int = 3600  # 1 hour
    source_cache_ttl_seconds: int = 86400  # 24 hours
    stage_timeout_seconds: float = 300.0

    # App Settings
    app_name: str = "DentalStudyEngine"
    app_version: str = "1.0.0"
    debug: bool = False
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # API Settings
    backend_host: str = "0.0.0.0"
    backend_port: int = int(os.getenv("PORT", "8000"))

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-detect database URL (DATABASE_URL is read into database_url)
        hosted_db = self.database_url
        if hosted_db:
            # Hosted providers hand out postgres:// but SQLAlchemy async needs postgresql+asyncpg://
            if hosted_db.startswith("postgres://"):
                self.database_url = hosted_db.replace("postgres://", "postgresql+asyncpg://", 1)
            elif hosted_db.startswith("postgresql://"):
                self.database_url = hosted_db.replace("postgresql://", "postgresql+asyncpg://", 1)
        else:
            # Fallback to local SQLite
            self.database_url = "sqlite+aiosqlite:///./study_engine.db"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
