from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    app_name: str = Field(default="Ticketdesk API")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s %(levelname)s %(name)s %(message)s")

    # Database configuration
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "POSTGRES_URL", "POSTGRES_PRISMA_URL", "database_url"),
    )
    db_pool_min_size: int = Field(default=1)
    db_pool_max_size: int = Field(default=5)
    db_command_timeout: float = Field(default=10.0)
    db_auto_create_schema: bool = Field(default=False)
    required_tables: tuple[str, ...] = Field(
        default=("tickets", "comments", "ticket_history", "users", "teams")
    )

    # SLA targets, in hours
    sla_tta_hours: float = Field(default=4.0, gt=0)
    sla_ttt_hours: float = Field(default=8.0, gt=0)
    sla_ttr_hours: float = Field(default=24.0, gt=0)
    sla_ttl_hours: float = Field(default=72.0, gt=0)
    sla_approaching_ratio: float = Field(default=0.8, gt=0, le=1)

    # Observability configuration
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="ticketdesk-api")
    otel_exporter_otlp_endpoint: str | None = Field(default=None)
    otel_exporter_otlp_headers: str | None = Field(default=None)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
