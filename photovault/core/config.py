"""
Application configuration.
All settings are loaded from environment variables.
"""
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated origins. Empty = default list in main.py.
    cors_origins: str = ""
    # Where the web client lives; used for checkout success/cancel redirects.
    frontend_url: str = "http://localhost:5173"
    # Public base of this API; used to build signed download links for local storage.
    public_base_url: str = "http://localhost:8000"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    # Empty = circuit breaker keeps state in process memory, purchase rate limit is off.
    redis_url: str = ""
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # ===========================================
    # IDENTITY (JWT)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24 * 7
    signup_bonus_credits: int = 0
    # Brute-force guard on /auth/login (needs redis_url)
    login_rate_limit_attempts: int = 10
    login_rate_limit_window_seconds: int = 300
    trusted_proxy_ips: str = ""

    # ===========================================
    # IMAGE GENERATION - PROVIDER SELECTION
    # ===========================================
    image_provider: str = "gemini"  # gemini, openai

    # ===========================================
    # GOOGLE GEMINI (Provider: gemini)
    # ===========================================
    gemini_api_key: str = ""
    gemini_api_endpoint: str = "https://generativelanguage.googleapis.com"
    gemini_image_model: str = "gemini-2.5-flash-image"
    gemini_timeout: float = 120.0
    # JSON list of {category, threshold}; empty = provider defaults
    gemini_safety_settings: str = ""

    # ===========================================
    # OPENAI API (Provider: openai)
    # ===========================================
    openai_api_key: str = ""
    openai_image_model: str = "gpt-image-1"
    openai_request_timeout: float = 120.0

    # ===========================================
    # IMAGE GENERATION - COMMON SETTINGS
    # ===========================================
    # Runner retry budget: max attempts total, backoff seconds, respect Retry-After on 429
    image_generation_retry_max_attempts: int = 2
    image_generation_retry_backoff_seconds: float = 2.0
    image_generation_retry_respect_retry_after: bool = True
    generation_max_photos: int = 20
    # Deadline for the whole fan-out; units still running after it count as failed.
    generation_call_timeout: float = 150.0
    generation_max_concurrency: int = 20
    # False = charge the full reservation when at least one output succeeded.
    refund_partial_failures: bool = True
    credit_update_max_retries: int = 5
    credit_update_retry_backoff_seconds: float = 0.05
    stale_reservation_minutes: int = 30

    # ===========================================
    # UPLOADS & STORAGE
    # ===========================================
    storage_backend: str = "local"  # local, minio
    storage_base_path: str = "/data/photovault"
    storage_signing_secret: str = ""  # falls back to jwt_secret_key
    signed_url_ttl_seconds: int = 24 * 3600
    minio_endpoint: str = ""
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_bucket: str = "photovault"
    minio_secure: bool = True
    max_file_size_mb: int = 10
    allowed_image_extensions: str = ".jpg,.jpeg,.png,.webp"
    output_max_width: int = 800
    output_jpeg_quality: int = 80

    # ===========================================
    # PAYMENTS (Stripe)
    # ===========================================
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    # price id -> credits granted on checkout completion
    price_credit_map: str = (
        '{"price_1SBSSwCnTKaHMCugSFppSsNh": 50, "price_1SBSSjCnTKaHMCugeN5JgRo3": 150, '
        '"price_1SBSSXCnTKaHMCugVU2R9IW7": 500, "price_1SBSSFCnTKaHMCugeruD8b6x": 2000}'
    )
    purchase_rate_limit: int = 3
    purchase_rate_window_seconds: int = 60

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("allowed_image_extensions")
    @classmethod
    def parse_extensions(cls, v: str) -> str:
        """Validate extensions format."""
        return v.lower().strip()

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure the token signing secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("jwt_secret_key must be at least 16 characters")
        if v in ("changeme", "secret", "password"):
            raise ValueError("jwt_secret_key is too weak, please change it")
        return v

    @field_validator("price_credit_map")
    @classmethod
    def validate_price_credit_map(cls, v: str) -> str:
        parsed = json.loads(v or "{}")
        if not isinstance(parsed, dict):
            raise ValueError("price_credit_map must be a JSON object")
        for price_id, credits in parsed.items():
            if not isinstance(credits, int) or credits <= 0:
                raise ValueError(f"price_credit_map[{price_id}] must be a positive integer")
        return v

    @property
    def allowed_extensions_set(self) -> set[str]:
        """Get allowed extensions as a set."""
        return {ext.strip() for ext in self.allowed_image_extensions.split(",") if ext.strip()}

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def price_credits(self) -> dict[str, int]:
        return json.loads(self.price_credit_map or "{}")

    @property
    def effective_storage_secret(self) -> str:
        return self.storage_signing_secret or self.jwt_secret_key

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
