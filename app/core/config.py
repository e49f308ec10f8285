from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, List, Union


class Settings(BaseSettings):
    # Database
    database_url: str

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None
    redis_db: int = 0

    # Firebase
    firebase_project_id: str
    firebase_credentials_path: str
    firebase_storage_bucket: Optional[str] = None
    analytics_collection: str = "analytics_events"
    crashlytics_collection: str = "crashlytics_errors"

    # API
    api_v1_str: str = "/api/v1"
    api_base_url: Optional[str] = None
    secret_key: str

    # Environment
    environment: str = "development"
    debug: bool = True

    # Encryption (Fernet key for secret site settings)
    encryption_key: str

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    # Rate limiting
    rate_limit_enabled: bool = True

    # Listings
    product_images_prefix: str = "product-images"
    product_expiry_days: int = 14
    max_create_images: int = 5
    max_product_images: int = 8

    # Checkout
    default_commission_rate: float = 10.0
    checkout_delay_seconds: float = 0.0

    # Administration
    default_ban_days: int = 7
    settings_cache_ttl_minutes: int = 10

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from environment


settings = Settings()
