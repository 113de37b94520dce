"""
Application configuration settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    # Application
    APP_NAME: str = "ZenityX Studio"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    
    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]
    
    # Database
    DATABASE_URL: Optional[str] = None
    
    # Kie.ai generation provider
    KIE_API_KEY: Optional[str] = None
    KIE_API_BASE: str = "https://api.kie.ai"
    KIE_REQUEST_TIMEOUT: float = 30.0
    
    # Public base URL the provider calls back to (/api/webhook/kie-callback is appended)
    WEBHOOK_BASE_URL: Optional[str] = None
    
    # Fallback polling (webhook is the primary completion path)
    POLL_INTERVAL_SECONDS: float = 120.0  # 2 minutes
    MAX_JOB_LIFETIME_SECONDS: float = 2700.0  # 45 minutes
    RECONCILE_ON_STARTUP: bool = True
    
    # Omise payment gateway
    OMISE_PUBLIC_KEY: Optional[str] = None
    OMISE_SECRET_KEY: Optional[str] = None
    OMISE_API_BASE: str = "https://api.omise.co"
    PAYMENT_RETURN_URL: str = "http://localhost:3000/payment/callback"
    
    # Video thumbnails
    THUMBNAILS_ENABLED: bool = True
    FFMPEG_BINARY: str = "ffmpeg"
    THUMBNAIL_DIR: str = "thumbnails"
    THUMBNAIL_BASE_URL: str = "/thumbnails"
    
    # Admin / test hooks (X-API-Key header)
    ADMIN_API_KEY: Optional[str] = None
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
