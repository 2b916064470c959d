"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )

    # ===================
    # BALANCE & EFFICIENCY
    # ===================
    balance_cv_threshold: float = Field(
        default=0.3,
        gt=0,
        le=2,
        description="Coefficient of variation below which a distribution is balanced"
    )
    efficiency_threshold: float = Field(
        default=90.0,
        ge=0,
        le=100,
        description="Order allocation efficiency (%) below which a recommendation is raised"
    )

    # ===================
    # DEMAND PATTERNS
    # ===================
    demand_buffer: float = Field(
        default=1.1,
        ge=1,
        le=2,
        description="Multiplier applied on top of seasonality-adjusted average demand"
    )
    seasonality_window_days: int = Field(
        default=90,
        ge=7,
        le=365,
        description="Days of recent history compared against the full history"
    )
    recent_activity_days: int = Field(
        default=30,
        ge=1,
        le=180,
        description="Allocations newer than this boost suggestion confidence"
    )

    # ===================
    # OPTIMIZER
    # ===================
    waste_utilization_floor: float = Field(
        default=50.0,
        ge=0,
        le=100,
        description="Utilization (%) below which minimize_waste skips a location"
    )
    rebalance_min_impact: float = Field(
        default=5.0,
        ge=0,
        le=100,
        description="Minimum efficiency gain (points) for a rebalancing recommendation"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
