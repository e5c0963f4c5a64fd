import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    database_file: Optional[str] = os.getenv("BOOK_NETWORK_DB_FILE")
    database_timeout: float = float(os.getenv("DB_TIMEOUT", "10"))

    # Cache settings (empty REDIS_URL keeps everything in process memory)
    redis_url: str = os.getenv("REDIS_URL", "")
    cache_ttl: int = int(os.getenv("CACHE_TTL", "300"))

    # Uploads
    file_upload_path: str = os.getenv("FILE_UPLOAD_PATH", "./uploads")
    allowed_cover_types: list = field(
        default_factory=lambda: _env_list("ALLOWED_COVER_TYPES", "image/png,image/jpeg,image/jpg")
    )

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Book Network")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
