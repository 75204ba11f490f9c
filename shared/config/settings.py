"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BlockchainMode(str, Enum):
    """Ledger anchor operation mode."""

    MOCK = "mock"
    TESTNET = "testnet"
    MAINNET = "mainnet"


class PaymentProviderName(str, Enum):
    """Supported payment hold providers."""

    MOCK = "mock"
    STRIPE = "stripe"


class KYCProviderName(str, Enum):
    """Supported identity verification providers."""

    MOCK = "mock"
    PERSONA = "persona"


class StorageBackend(str, Enum):
    """Durable store engine."""

    MEMORY = "memory"
    POSTGRES = "postgres"


class LockBackend(str, Enum):
    """Per-buyer serialization backend."""

    LOCAL = "local"
    REDIS = "redis"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "verisettle"
    password: SecretStr = SecretStr("verisettle_dev_password")
    db: str = "verisettle"
    url_override: str = Field(
        default="",
        description="Full SQLAlchemy async URL, e.g. sqlite+aiosqlite:///./dev.db",
    )

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("verisettle_redis_password")
    db: int = 0

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.db}"


class StorageSettings(BaseSettings):
    """Store and lock backend selection."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: StorageBackend = StorageBackend.MEMORY
    lock_backend: LockBackend = LockBackend.LOCAL
    lock_timeout_seconds: int = 30
    lock_wait_seconds: float = 10.0


class PaymentSettings(BaseSettings):
    """Payment hold provider configuration."""

    model_config = SettingsConfigDict(env_prefix="PAYMENT_")

    provider: PaymentProviderName = PaymentProviderName.MOCK
    stripe_secret_key: SecretStr = SecretStr("")
    stripe_webhook_secret: SecretStr = SecretStr("")
    currency: str = "usd"
    verification_amount_cents: int = Field(default=200, gt=0)


class KYCSettings(BaseSettings):
    """Identity verification provider configuration."""

    model_config = SettingsConfigDict(env_prefix="KYC_")

    provider: KYCProviderName = KYCProviderName.MOCK
    api_key: SecretStr = SecretStr("")
    template_id: str = ""
    webhook_secret: SecretStr = SecretStr("")
    base_url: str = "https://withpersona.com"
    timeout_seconds: float = 15.0


class BlockchainSettings(BaseSettings):
    """Ledger anchor configuration."""

    model_config = SettingsConfigDict(env_prefix="BLOCKCHAIN_")

    mode: BlockchainMode = BlockchainMode.MOCK
    anchor_enabled: bool = True

    # Polygon settings (for testnet/mainnet)
    alchemy_api_key: SecretStr = SecretStr("")
    private_key: SecretStr = SecretStr("")
    anchor_contract_address: str = ""

    @property
    def rpc_url(self) -> str:
        """Generate RPC URL based on mode."""
        if self.mode == BlockchainMode.MOCK:
            return ""
        key = self.alchemy_api_key.get_secret_value()
        if self.mode == BlockchainMode.TESTNET:
            return f"https://polygon-amoy.g.alchemy.com/v2/{key}"
        return f"https://polygon-mainnet.g.alchemy.com/v2/{key}"


class VerificationPolicySettings(BaseSettings):
    """
    Age and address policy constants used by the proof engine.

    Weights must sum to 1.0 so that the address score stays in [0, 1].
    """

    model_config = SettingsConfigDict(env_prefix="POLICY_")

    age_threshold_years: int = Field(default=18, ge=0)
    address_match_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    street_weight: float = Field(default=0.4, ge=0.0)
    city_weight: float = Field(default=0.2, ge=0.0)
    state_weight: float = Field(default=0.2, ge=0.0)
    postal_weight: float = Field(default=0.2, ge=0.0)
    verification_validity_days: int = Field(default=365, gt=0)

    @model_validator(mode="after")
    def check_weights(self) -> "VerificationPolicySettings":
        """Reject weight sets that do not sum to one."""
        total = self.street_weight + self.city_weight + self.state_weight + self.postal_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"address weights must sum to 1.0, got {total}")
        return self


class QuotaSettings(BaseSettings):
    """Dealer quota policy."""

    model_config = SettingsConfigDict(env_prefix="QUOTA_")

    # A reserved credit stays consumed when the verification fails afterwards
    charge_failed_attempts: bool = True
    batch_limit: int = Field(default=50, gt=0)


class ReconciliationSettings(BaseSettings):
    """Webhook reconciliation timing and retry configuration."""

    model_config = SettingsConfigDict(env_prefix="RECONCILE_")

    wait_timeout_seconds: float = 10.0
    poll_interval_ms: int = 500
    retry_after_ms: int = 3000
    max_attempts: int = Field(default=3, ge=1)
    backoff_min_seconds: float = 0.5
    backoff_max_seconds: float = 8.0


class EncryptionSettings(BaseSettings):
    """Buyer secret encryption configuration."""

    model_config = SettingsConfigDict(env_prefix="ENCRYPTION_")

    key: SecretStr = SecretStr("verisettle-dev-encryption-key-change-me")
    pbkdf2_iterations: int = 100_000


class JWTSettings(BaseSettings):
    """JWT authentication configuration."""

    model_config = SettingsConfigDict(env_prefix="JWT_")

    secret_key: SecretStr = SecretStr("your-jwt-secret-key-min-32-chars-long")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_days: int = 7


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class ServicePorts(BaseSettings):
    """Service port configuration."""

    settlement: int = Field(default=8010, alias="SETTLEMENT_PORT")


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Project paths
    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    # Service ports
    ports: ServicePorts = Field(default_factory=ServicePorts)

    # Persistence
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    # External providers
    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    kyc: KYCSettings = Field(default_factory=KYCSettings)
    blockchain: BlockchainSettings = Field(default_factory=BlockchainSettings)

    # Policies
    policy: VerificationPolicySettings = Field(default_factory=VerificationPolicySettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    # Security
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
