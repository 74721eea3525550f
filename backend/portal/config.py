from __future__ import annotations
import os
from pydantic import BaseModel

def _csv(value: str) -> list[str]:
    return [v.strip().lower() for v in value.split(",") if v.strip()]

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "ctf-portal-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "CTF Portal")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/ctf_portal_dev")

    # Object storage (MinIO speaks the S3 API)
    s3_endpoint: str = os.getenv("S3_ENDPOINT", "http://minio:9000")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "minioadmin")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "minioadmin")
    s3_region: str | None = os.getenv("S3_REGION") or None
    # Public URLs are "{base}/{bucket}/{key}"; defaults to the S3 endpoint (path-style)
    s3_public_url_base: str = os.getenv("S3_PUBLIC_URL_BASE", os.getenv("S3_ENDPOINT", "http://minio:9000"))
    s3_ensure_buckets: bool = os.getenv("S3_ENSURE_BUCKETS", "1") == "1"
    bucket_challenge_files: str = os.getenv("BUCKET_CHALLENGE_FILES", "challenge-files")
    bucket_avatars: str = os.getenv("BUCKET_AVATARS", "avatars")

    # Asset store policy
    avatar_extensions: list[str] = _csv(os.getenv("AVATAR_EXTENSIONS", "png,jpg,jpeg,webp,gif"))
    upload_concurrency: int = int(os.getenv("UPLOAD_CONCURRENCY", "4"))
    # Socket-level limits for the S3 client; the store timeout above is the overall cap
    storage_connect_timeout_seconds: float = float(os.getenv("STORAGE_CONNECT_TIMEOUT_SECONDS", "5"))
    storage_read_timeout_seconds: float = float(os.getenv("STORAGE_READ_TIMEOUT_SECONDS", "20"))
    storage_retries: int = int(os.getenv("STORAGE_RETRIES", "2"))
    storage_timeout_seconds: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

    # Tokens are issued by the auth service; we only verify them
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")

settings = Settings()
