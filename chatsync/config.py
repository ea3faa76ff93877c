import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


class Settings:

    def __init__(self) -> None:
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        self.mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        self.mongo_db = os.getenv("MONGO_DB", "chatsync")

        self.jwt_secret = os.getenv("JWT_SECRET", "change-me")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_expire_minutes = int(os.getenv("JWT_EXPIRE_MINUTES", "1440"))

        # Redis is optional; without it fan-out stays inside this process
        self.redis_url: Optional[str] = os.getenv("REDIS_URL") or None
        self.redis_channel = os.getenv("REDIS_CHANNEL", "chatsync:events")

        self.typing_ttl_seconds = float(os.getenv("TYPING_TTL_SECONDS", "6"))
        self.projection_retry_attempts = int(os.getenv("PROJECTION_RETRY_ATTEMPTS", "3"))
        self.projection_retry_backoff = float(os.getenv("PROJECTION_RETRY_BACKOFF", "0.05"))

        self.upload_dir = os.getenv("UPLOAD_DIR", "uploads")
        self.max_upload_bytes = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

        self.global_room_name = os.getenv("GLOBAL_ROOM_NAME", "Global Chat")


@lru_cache
def get_settings() -> Settings:
    return Settings()
