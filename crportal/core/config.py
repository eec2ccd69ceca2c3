from pydantic_settings import BaseSettings
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "CR Portal"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # ==========================================
    # Key-value storage
    # ==========================================
    STORAGE_MODE: str = "auto"  # "auto", "redis" or "local"
    REDIS_URL: str = ""  # Empty means no shared backend is available
    REDIS_CONNECT_TIMEOUT: float = 2.0  # seconds, startup probe only
    LOCAL_STORE_PATH: str = ""  # Empty keeps the local store in memory
    CLIENT_NAMESPACE: str = "client"  # Prefix for non-shared keys on Redis

    # ==========================================
    # Authentication
    # ==========================================
    BCRYPT_ROUNDS: int = 12  # 4 for tests (fast), 12 for prod (secure)

    # ==========================================
    # Change requests
    # ==========================================
    MAX_DOCUMENT_SIZE: int = 10485760  # 10MB
    RECOMMENDED_DOCUMENT_SIZE: int = 2097152  # 2MB
    CR_PAGE_SIZE: int = 10

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings


# Create settings instance
settings = Settings()
