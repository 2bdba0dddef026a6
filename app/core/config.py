import os
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Wedding Photo Uploads"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # JWT Settings (admin endpoints only, guests upload anonymously)
    SECRET_KEY: str = os.getenv("SECRET_KEY", "supersecretkey")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))
    ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "change-me")

    # Storage settings
    UPLOAD_DIR: Path = Path("uploads")
    TEMP_DIR: Path = Path("uploads/temp")  # chunk objects, one directory per upload id
    MEDIA_DIR: Path = Path("uploads/media")  # reassembled media items

    # Upload limits
    MAX_SINGLE_UPLOAD_BYTES: int = 20 * 1024 * 1024
    MAX_CONCURRENT_MEDIA_WRITES: int = 2

    # Cleanup settings
    CLEANUP_INTERVAL_SECONDS: int = 3600  # Run orphan sweep every hour
    ORPHAN_THRESHOLD_SECONDS: int = 86400  # 24 hours
    ORPHAN_SWEEP_ENABLED: bool = True

    # Create directories if they don't exist
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        self.TEMP_DIR.mkdir(parents=True, exist_ok=True)
        self.MEDIA_DIR.mkdir(parents=True, exist_ok=True)

# Global settings instance
settings = Settings()
