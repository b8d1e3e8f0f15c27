"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str

    # Identity provider session token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (share and invitation links)
    FRONTEND_URL: str = "http://localhost:3000"

    # Share links
    SHARE_LINK_DEFAULT_EXPIRY_DAYS: int | None = None  # None = links never expire unless asked
    SHARE_LINK_MAX_EXPIRY_DAYS: int = 365

    # Invitations
    INVITE_EXPIRY_DAYS: int = 7
    MAX_PENDING_INVITES_PER_ORG: int = 50

    # Audit
    AUDIT_QUERY_MAX_LIMIT: int = 500

    # Email dispatch (Resend-compatible HTTP API)
    EMAIL_PROVIDER_URL: str = "https://api.resend.com/emails"
    EMAIL_PROVIDER_API_KEY: str = ""
    EMAIL_FROM: str = "no-reply@example.com"
    EMAIL_WEBHOOK_SECRET: str = ""  # Svix signing secret (whsec_...)

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Tracing (OpenTelemetry, optional)
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_EXPORTER_OTLP_HEADERS: str = ""  # "key=value,key2=value2"
    OTEL_SERVICE_NAME: str = "tenant-access-api"
    OTEL_SAMPLE_RATE: float = 0.1

    # Rate Limiting (requests per minute)
    RATE_LIMIT_SHARE: int = 30  # Public share token lookups
    RATE_LIMIT_API: int = 120  # General API
    REDIS_URL: str = ""  # Shared limiter storage for multi-worker deployments

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def email_enabled(self) -> bool:
        return bool(self.EMAIL_PROVIDER_API_KEY)


settings = Settings()
