"""Application configuration using Pydantic BaseSettings"""
import logging
import re
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Setup logging
logger = logging.getLogger("config")

_HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Domain & URLs
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"

    # X (Twitter) OAuth 2.0
    X_CLIENT_ID: str = ""
    X_CLIENT_SECRET: str = ""
    X_REDIRECT_URI: str = "http://localhost:8000/api/auth/twitter/callback"
    X_SCOPES: List[str] = ["tweet.read", "tweet.write", "users.read", "offline.access"]

    # X API Configuration
    X_AUTH_URL: str = "https://twitter.com/i/oauth2/authorize"
    X_TOKEN_URL: str = "https://api.twitter.com/2/oauth2/token"
    X_REVOKE_URL: str = "https://api.twitter.com/2/oauth2/revoke"
    X_API_BASE: str = "https://api.twitter.com/2"
    X_UPLOAD_URL: str = "https://upload.twitter.com/1.1/media/upload.json"
    X_WEB_URL: str = "https://twitter.com"

    # Posting
    X_POSTING_USER_ID: str = ""  # Account used when a share has no user of its own
    X_POST_SUFFIX: str = ""
    X_POST_MAX_LENGTH: int = 280

    # Security
    # 32-byte AES-256-GCM key, hex encoded (64 characters)
    ENCRYPTION_KEY: str = ""

    # Token / PKCE lifetimes
    TOKEN_DEFAULT_TTL: int = 24 * 60 * 60  # seconds
    PKCE_STATE_TTL: int = 10 * 60  # seconds
    PKCE_SWEEP_INTERVAL: int = 5 * 60  # seconds
    SESSION_REFRESH_THRESHOLD: int = 5 * 60  # seconds

    # Browser session (opaque id in a cookie, data in Redis)
    SESSION_COOKIE_NAME: str = "session_id"
    BROWSER_SESSION_TTL: int = 7 * 24 * 60 * 60  # seconds

    # Rate limiting (fixed window)
    RATE_LIMIT_WINDOW: int = 15 * 60  # seconds
    RATE_LIMIT_UPLOAD: int = 30
    RATE_LIMIT_POST: int = 50

    # Media
    MEDIA_MAX_BYTES: int = 5 * 1024 * 1024
    MEDIA_CHUNK_THRESHOLD: int = 1024 * 1024
    MEDIA_ALLOWED_TYPES: List[str] = ["image/jpeg", "image/png", "image/gif", "image/webp"]
    MEDIA_STATUS_POLL_ATTEMPTS: int = 10
    MEDIA_STATUS_POLL_INTERVAL: float = 1.0  # seconds
    SHARE_STATUS_MAX_ENTRIES: int = 1000  # per-subject share status kept in memory

    # Retry / HTTP
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0  # seconds
    HTTP_TIMEOUT: float = 30.0  # seconds

    # Pydantic V2 Config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def check_encryption_key(cls, v):
        if not v or v.strip() == "":
            # Token storage cannot be built without this; the app factory refuses to start
            logger.warning("ENCRYPTION_KEY is missing! Token storage will be unavailable.")
            return v
        if not _HEX_KEY_PATTERN.match(v.strip()):
            raise ValueError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
        return v.strip()

    @property
    def rate_limits(self) -> dict:
        """Per-operation limits for one window"""
        return {"upload": self.RATE_LIMIT_UPLOAD, "post": self.RATE_LIMIT_POST}


# Create global settings instance
settings = Settings()

