"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
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
    # Comma-separated list of origins. Empty = default list in app.main.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_recycle: int = 1800

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    # Optional: when set, circuit breaker state is shared between workers.
    redis_url: str = ""
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # ===========================================
    # IDENTITY (bearer tokens issued by the auth provider)
    # ===========================================
    identity_jwt_secret: str  # Required, no default
    identity_jwt_algorithm: str = "HS256"
    identity_jwt_audience: str | None = None
    identity_jwt_issuer: str | None = None

    # ===========================================
    # BLOB STORAGE
    # ===========================================
    storage_base_path: str = "/data/files"
    storage_chunk_size: int = 64 * 1024

    # ===========================================
    # SETTLEMENT (on-chain payment verification)
    # ===========================================
    settlement_rpc_url: str = "https://mainnet.base.org"
    settlement_rpc_timeout: float = 10.0
    settlement_check_sender: bool = True
    # Marketplace contract exposing verifyPurchase(string purchaseId)
    settlement_contract_address: str = "0xAe8b2B4285776DbfD9972E1586F423701C6761B9"
    # Allowed difference between the on-chain and recorded totals, micro units (0.01 USDC)
    settlement_amount_tolerance: int = 10_000

    # ===========================================
    # PURCHASES
    # ===========================================
    purchase_expiry_minutes: int = 15
    platform_fee_bps: int = 500  # 5%

    # ===========================================
    # NOTIFICATIONS
    # ===========================================
    notification_retention_cap: int = 100
    notification_list_max: int = 100

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

    @field_validator("identity_jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure token secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("identity_jwt_secret must be at least 16 characters")
        return v

    @field_validator("platform_fee_bps")
    @classmethod
    def validate_fee(cls, v: int) -> int:
        if not 0 <= v <= 10_000:
            raise ValueError("platform_fee_bps must be between 0 and 10000")
        return v

    @field_validator("notification_retention_cap", "notification_list_max")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be positive")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
