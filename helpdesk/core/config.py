from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    model_config = SettingsConfigDict(env_prefix="HELPDESK_", env_file=".env", case_sensitive=False)

    app_name: str = Field(default="IT Helpdesk")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(
        default="%(asctime)s %(levelname)s [%(environment)s trace=%(trace_id)s] %(name)s %(message)s"
    )
    sharepoint_log_level: str | None = Field(default=None)

    # Primary ticket store
    ticket_api_base_url: str = Field(default="http://localhost:4000/api")

    # SharePoint list (secondary system of record)
    graph_base_url: str = Field(default="https://graph.microsoft.com/v1.0")
    sharepoint_site_id: str = Field(default="")
    sharepoint_list_id: str = Field(default="")
    sharepoint_rest_url: str = Field(default="")
    graph_scopes: tuple[str, ...] = Field(default=("Sites.ReadWrite.All",))
    sharepoint_scopes: tuple[str, ...] = Field(default=())
    graph_token: SecretStr | None = Field(default=None)
    sharepoint_token: SecretStr | None = Field(default=None)
    done_photo_field: str = Field(default="ScreenshotBuktiTicketsudahDilaku")

    # Attachment upload retry
    upload_initial_delay: float = Field(default=1.0, gt=0)
    upload_backoff: float = Field(default=2.0, gt=1)
    upload_max_delay: float = Field(default=8.0, gt=0)
    upload_conflict_status_codes: tuple[int, ...] = Field(default=(409, 412))

    # Intake
    max_photo_bytes: int = Field(default=5 * 1024 * 1024, gt=0)

    # Observability configuration
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="helpdesk")
    otel_exporter_otlp_endpoint: str | None = Field(default=None)
    otel_exporter_otlp_headers: str | None = Field(default=None)

    @model_validator(mode="after")
    def _retry_has_room(self) -> "Settings":
        if self.upload_max_delay < self.upload_initial_delay * self.upload_backoff:
            raise ValueError("upload_max_delay must allow at least one conflict retry")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
