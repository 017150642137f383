"""
Configuration settings for the chunkstream server
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# Extensions that may be served by the range streamer, with their Content-Type
PLAYABLE_MEDIA_TYPES = {
    "mp4": "video/mp4",
}


class Settings:
    """Application settings"""

    # MinIO / Object Storage
    MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "localhost:9000")
    MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
    MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
    MINIO_SECURE: bool = _env_bool("MINIO_SECURE", "false")
    MINIO_REGION: str | None = os.getenv("MINIO_REGION") or None
    MINIO_BUCKET: str = os.getenv("MINIO_BUCKET", "chunkstream")
    MINIO_PUBLIC_READ: bool = _env_bool("MINIO_PUBLIC_READ", "false")
    PRESIGNED_URL_EXPIRY_SECONDS: int = int(os.getenv("PRESIGNED_URL_EXPIRY_SECONDS", "604800"))

    # Cache
    CACHE_BACKEND: str = os.getenv("CACHE_BACKEND", "memory")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX: str = os.getenv("CACHE_KEY_PREFIX", "chunkstream")

    # Upload / streaming
    HASH_ALGORITHM: str = os.getenv("HASH_ALGORITHM", "md5")
    STREAM_BUFFER_SIZE: int = int(os.getenv("STREAM_BUFFER_SIZE", "8192"))
    MERGE_LOCK_ENABLED: bool = _env_bool("MERGE_LOCK_ENABLED", "true")

    # Server
    SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Application
    APP_TITLE: str = "Chunkstream"
    APP_DESCRIPTION: str = "Chunked, deduplicated uploads with byte-range playback"
    APP_VERSION: str = "1.0.0"


settings = Settings()
