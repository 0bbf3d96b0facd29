"""
Configuration settings for the chunked upload server
"""
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings"""

    # Storage
    TEMP_UPLOAD_DIR: str = os.getenv("TEMP_UPLOAD_DIR", "temp/chunks")
    PUBLIC_UPLOAD_DIR: str = os.getenv("PUBLIC_UPLOAD_DIR", "public/uploads/files")
    PUBLIC_URL_PREFIX: str = os.getenv("PUBLIC_URL_PREFIX", "/uploads/files")
    MAX_CHUNK_SIZE: int = int(os.getenv("MAX_CHUNK_SIZE", str(100 * 1024 * 1024)))

    # Session registry ("memory" or "sql")
    REGISTRY_BACKEND: str = os.getenv("REGISTRY_BACKEND", "memory")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./chunk_uploads.db")

    # Stale session reaper
    SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "86400"))
    REAPER_INTERVAL_SECONDS: int = int(os.getenv("REAPER_INTERVAL_SECONDS", "3600"))
    # A merge running longer than this is treated as abandoned by a dead process
    MERGE_TIMEOUT_SECONDS: int = int(os.getenv("MERGE_TIMEOUT_SECONDS", "3600"))
    REAPER_ENABLED: bool = os.getenv("REAPER_ENABLED", "true").lower() == "true"

    # Cookie session shared with the login service
    SESSION_SECRET: str = os.getenv("SESSION_SECRET", "chunked-upload-dev-secret")
    SESSION_COOKIE: str = os.getenv("SESSION_COOKIE", "session")

    # Server
    SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Application
    APP_TITLE: str = "Chunked Upload API"
    APP_DESCRIPTION: str = "Chunked file upload with concurrent part transfer and ordered merge"
    APP_VERSION: str = "1.0.0"


settings = Settings()
