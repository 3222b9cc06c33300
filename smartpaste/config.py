from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "SmartPaste"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Local key-value storage (one JSON file per key)
    STORAGE_DIR: str = ".smartpaste"

    # Engine defaults
    DEFAULT_CURRENCY: str = "SAR"
    STALE_TEMPLATE_DAYS: int = 90
    MAX_LEARNED_ENTRIES: int = 200

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
