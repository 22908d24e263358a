from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .ride import PaymentMethod, VehicleCategory


class CategoryRate(BaseModel):
    """Per-category pricing factors (INR)."""

    base: float = Field(ge=0)
    per_km: float = Field(ge=0)
    per_min: float = Field(ge=0)


class FallbackFare(BaseModel):
    """Fare shown when the route service cannot be reached."""

    amount: int = Field(gt=0)
    eta_minutes: int = Field(gt=0)


DEFAULT_CATEGORY_RATES: dict[VehicleCategory, CategoryRate] = {
    VehicleCategory.BIKE: CategoryRate(base=12, per_km=5, per_min=0.5),
    VehicleCategory.AUTO: CategoryRate(base=20, per_km=7, per_min=1),
    VehicleCategory.MINI: CategoryRate(base=35, per_km=10, per_min=1.5),
    VehicleCategory.PINK: CategoryRate(base=40, per_km=10, per_min=1.5),
    VehicleCategory.PRIME: CategoryRate(base=55, per_km=18, per_min=2),
}

DEFAULT_FALLBACK_FARES: dict[VehicleCategory, FallbackFare] = {
    VehicleCategory.BIKE: FallbackFare(amount=60, eta_minutes=10),
    VehicleCategory.AUTO: FallbackFare(amount=90, eta_minutes=10),
    VehicleCategory.MINI: FallbackFare(amount=150, eta_minutes=12),
    VehicleCategory.PINK: FallbackFare(amount=160, eta_minutes=12),
    VehicleCategory.PRIME: FallbackFare(amount=220, eta_minutes=12),
}


class DispatchSettings(BaseSettings):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    otel_endpoint: str | None = None

    model_config = SettingsConfigDict(env_prefix="DISPATCH_")


class DatabaseSettings(BaseSettings):
    url: str = "sqlite:///data/ride_dispatch.db"
    echo: bool = False
    busy_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="How long a SQLite writer waits for the write lock before giving up",
    )

    model_config = SettingsConfigDict(env_prefix="DB_")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("sqlite://", "postgresql")):
            raise ValueError("Database URL must be a sqlite:// or postgresql URL")
        return v


class StoreSettings(BaseSettings):
    operation_timeout_seconds: float = Field(
        default=10.0,
        ge=0.1,
        le=120.0,
        description="Upper bound on any single store call; exceeding it surfaces as Unavailable",
    )

    model_config = SettingsConfigDict(env_prefix="STORE_")


class RedisSettings(BaseSettings):
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""
    ssl: bool = False
    channel: str = "ride-updates"

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "RedisSettings":
        if self.enabled and not self.password:
            raise ValueError("Required credential not provided: REDIS_PASSWORD")
        return self


class RoutingSettings(BaseSettings):
    base_url: str = "http://localhost:5000"
    timeout_seconds: float = Field(default=3.0, ge=0.1, le=30.0)
    max_retries: int = Field(default=2, ge=1, le=10)
    retry_base_delay: float = Field(default=0.2, ge=0.0, le=5.0)

    model_config = SettingsConfigDict(env_prefix="OSRM_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("OSRM base URL must start with http:// or https://")
        return v.rstrip("/")


class FareSettings(BaseSettings):
    currency: str = "INR"
    category_rates: dict[VehicleCategory, CategoryRate] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_RATES)
    )
    fallback_fares: dict[VehicleCategory, FallbackFare] = Field(
        default_factory=lambda: dict(DEFAULT_FALLBACK_FARES)
    )
    capture_payment_methods: set[PaymentMethod] = Field(
        default_factory=lambda: {PaymentMethod.UPI, PaymentMethod.CARD},
        description="Payment methods that hold the ride in PAYMENT_PENDING until captured",
    )
    max_bid_amount: int = Field(default=100_000, gt=0)

    model_config = SettingsConfigDict(env_prefix="FARE_")

    @model_validator(mode="after")
    def validate_categories_covered(self) -> "FareSettings":
        missing = [
            c.value
            for c in VehicleCategory
            if c not in self.category_rates or c not in self.fallback_fares
        ]
        if missing:
            raise ValueError(f"Pricing not configured for categories: {', '.join(missing)}")
        return self


class MatchingSettings(BaseSettings):
    """Driver visibility and request expiry configuration."""

    nearby_radius_km: float = Field(default=5.0, gt=0.0, le=50.0)
    pending_radius_km: float | None = Field(
        default=None,
        gt=0.0,
        description="Cut each driver's pending view at this pickup distance; None shows all",
    )
    search_timeout_seconds: int = Field(
        default=300,
        ge=30,
        description="SEARCHING requests older than this are cancelled by the system",
    )
    expiry_interval_seconds: float = Field(default=30.0, ge=1.0)
    reconnect_base_delay: float = Field(default=0.5, ge=0.0, le=10.0)
    reconnect_max_delay: float = Field(default=30.0, ge=1.0, le=300.0)
    h3_resolution: int = Field(default=9, ge=5, le=12)

    model_config = SettingsConfigDict(env_prefix="MATCHING_")


class NotificationSettings(BaseSettings):
    dedup_ttl_seconds: int = Field(default=300, ge=1)

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")


class APISettings(BaseSettings):
    key: str = ""
    create_ride_rate_limit: str = "20/minute"
    accept_rate_limit: str = "60/minute"

    model_config = SettingsConfigDict(env_prefix="API_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "APISettings":
        if not self.key:
            raise ValueError("Required credential not provided: API_KEY")
        return self


class CORSSettings(BaseSettings):
    origins: str = "http://localhost:5173,http://localhost:3000"

    model_config = SettingsConfigDict(env_prefix="CORS_")


class Settings(BaseSettings):
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    fares: FareSettings = Field(default_factory=FareSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    api: APISettings = Field(default_factory=APISettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
