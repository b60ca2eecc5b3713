from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Stock Ledger"
    env: str = "dev"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # LEDGER
    minimum_quantity_default: int = Field(default=10, ge=0)
    ledger_lock_timeout_seconds: float = Field(default=10.0, gt=0, le=300)

    # ANALYTICS
    analytics_default_window_days: int = Field(default=30, ge=1, le=3660)
    analytics_max_window_days: int = Field(default=3660, ge=1, le=36_600)
    max_page_size: int = Field(default=200, ge=1, le=1000)

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        # Per-item serialization across processes relies on row locks.
        if self.database_url.lower().startswith("sqlite"):
            raise ValueError("DATABASE_URL cannot point at SQLite in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
