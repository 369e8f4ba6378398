"""
Core settings and environment variables for Sentinel.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "Sentinel"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - Frontend URLs allowed to access this API
    CORS_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"

    # Firebase/Firestore
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON
    REPORTS_COLLECTION: str = "reports"
    USER_VOTES_COLLECTION: str = "userVotes"

    # In-memory store for local development without Firebase credentials
    USE_MOCK_DB: bool = False

    # Severity classifier
    AI_ENABLED: bool = True  # If False, only the rule-based classifier is used
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    AI_TIMEOUT_SECONDS: float = 10.0

    # Report defaults
    DEFAULT_RADIUS_METERS: int = 300
    DEFAULT_RANGE_KM: float = 7.0

    # Vote application retries (transient write failures)
    VOTE_MAX_RETRIES: int = 3
    VOTE_BACKOFF_SECONDS: float = 0.2

    # Report stream subscription
    SUBSCRIPTION_TIMEOUT_SECONDS: float = 15.0  # No first snapshot within this -> degraded
    SUBSCRIPTION_BACKOFF_SECONDS: float = 1.0
    SUBSCRIPTION_MAX_BACKOFF_SECONDS: float = 60.0
    SUBSCRIPTION_MAX_RETRIES: Optional[int] = None  # None = retry forever

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

    @property
    def cors_origin_list(self) -> list:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


# Global settings instance
settings = Settings()
