"""Application configuration loaded from environment variables.

Settings for the database, authentication, the quota reference timezone,
and billing webhook ingestion. Uses pydantic-settings for validation and
.env file support.
"""

import uuid
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "nexus_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "nexus_quota"
    database_user: str = "nexus_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    # Full SQLAlchemy URL; overrides the individual fields when set
    database_url_override: str = ""

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # CORS
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Authentication
    # Local-first mode: DEFAULT_USER_ID provides user context without JWT
    # Hosted mode: auth_enabled=True, JWT cookie required on every request
    default_user_id: uuid.UUID | None = None
    auth_enabled: bool = False
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "nexus-chat"
    auth_audience: str = "nexus-chat"
    auth_cookie_name: str = "nexus.session-token"

    # Quota accounting
    # Daily counters roll over at midnight in this zone for every user,
    # regardless of client locale.
    quota_reference_timezone: str = "Asia/Seoul"

    # Billing webhook ingestion
    # Provider signatures are verified upstream; this shared secret only
    # authenticates the forwarding hop.
    billing_webhook_secret: SecretStr = SecretStr("")

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def reference_zone(self) -> ZoneInfo:
        """Timezone that defines the daily quota boundary."""
        return ZoneInfo(self.quota_reference_timezone)

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants.

        Checks:
        - Quota reference timezone must be a known IANA zone (all environments)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars when auth is enabled in production
        - BILLING_WEBHOOK_SECRET must be set in production
        """
        try:
            ZoneInfo(self.quota_reference_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = (
                "QUOTA_REFERENCE_TIMEZONE must be an IANA timezone name. "
                f"Got: {self.quota_reference_timezone}"
            )
            raise ValueError(msg) from exc

        if self.environment == "production":
            if (
                not self.database_url_override
                and self.database_password == _INSECURE_DEFAULT_PASSWORD
            ):
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.auth_enabled:
                secret_value = self.auth_secret.get_secret_value()
                if not secret_value:
                    msg = (
                        "AUTH_SECRET must be set when AUTH_ENABLED=true in production. "
                        'Generate with: python -c "import secrets; '
                        'print(secrets.token_hex(32))"'
                    )
                    raise ValueError(msg)
                if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                    msg = (
                        f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                        "characters for adequate security."
                    )
                    raise ValueError(msg)

            if not self.billing_webhook_secret.get_secret_value():
                msg = "BILLING_WEBHOOK_SECRET must be set in production."
                raise ValueError(msg)

        return self


settings = Settings()
