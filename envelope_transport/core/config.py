from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from envelope_transport.transport.errors import InvalidDsn
from envelope_transport.transport.types import Dsn


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SENTRY_",
        extra="ignore",
        populate_by_name=True,
    )

    # Destination
    dsn: str = ""  # leave empty to disable delivery
    user_agent: str = "envelope-transport/0.1.0"

    # Proxies: https_proxy is preferred for https destinations
    http_proxy: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SENTRY_HTTP_PROXY", "HTTP_PROXY"),
    )
    https_proxy: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SENTRY_HTTPS_PROXY", "HTTPS_PROXY"),
    )

    # TLS: only disable for local debugging
    accept_invalid_certs: bool = False

    # Delivery
    queue_capacity: int = 30  # Envelopes buffered before new ones are dropped
    request_timeout: float = 30.0  # Seconds per submission
    shutdown_timeout: float = 2.0  # Default flush/shutdown wait

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    @property
    def parsed_dsn(self) -> Dsn | None:
        return Dsn.parse(self.dsn) if self.dsn else None


settings = Settings()


def validate_settings(config: Settings | None = None) -> None:
    """Validate transport settings. Raises SystemExit listing every problem."""
    config = config or settings
    errors: list[str] = []

    if not config.dsn:
        errors.append("SENTRY_DSN must be set")
    else:
        try:
            Dsn.parse(config.dsn)
        except InvalidDsn as e:
            errors.append(f"SENTRY_DSN is invalid: {e}")

    if config.queue_capacity < 1:
        errors.append("SENTRY_QUEUE_CAPACITY must be at least 1")

    if config.request_timeout <= 0:
        errors.append("SENTRY_REQUEST_TIMEOUT must be positive")

    if config.shutdown_timeout < 0:
        errors.append("SENTRY_SHUTDOWN_TIMEOUT must not be negative")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
