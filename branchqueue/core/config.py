"""Application configuration using Pydantic Settings."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = Field(default="Branch Queue Service", alias="APP_NAME")
    env: str = Field(default="dev", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(default="sqlite:///./branchqueue.db", alias="DATABASE_URL")

    # Monitoring
    prometheus_enabled: bool = Field(default=False, alias="PROMETHEUS_ENABLED")

    # Celery
    celery_broker_url: str = Field(default="redis://localhost:6379/0", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://localhost:6379/1", alias="CELERY_RESULT_BACKEND")
    celery_beat_no_show: bool = Field(default=False, alias="CELERY_BEAT_NO_SHOW")

    # No-show scheduler
    enable_no_show_scheduler: bool = Field(default=False, alias="ENABLE_NO_SHOW_SCHEDULER")
    no_show_interval_minutes: int = Field(default=5, alias="NO_SHOW_INTERVAL_MINUTES")
    no_show_grace_time_minutes: int = Field(default=1, alias="NO_SHOW_GRACE_TIME_MINUTES")

    # Queue and lifecycle policy
    default_service_minutes: int = Field(default=10, alias="DEFAULT_SERVICE_MINUTES")
    max_reschedules: int = Field(default=3, alias="MAX_RESCHEDULES")

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.env.lower() in ("prod", "production")

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.env.lower() in ("dev", "development")

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.env.lower() in ("test", "testing")

    @property
    def should_start_no_show_scheduler(self) -> bool:
        """Whether the bootstrap should start the no-show scheduler."""
        return self.enable_no_show_scheduler or self.is_production


# Global settings instance
settings = Settings()

# Set timezone to UTC
os.environ["TZ"] = "UTC"
