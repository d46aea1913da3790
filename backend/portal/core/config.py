# backend/portal/core/config.py
import json
from functools import lru_cache
from typing import List, Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _as_list(raw: str) -> List[str]:
    """
    Env-style list: `a@x.com,b@x.com` or a JSON array `["a@x.com", "b@x.com"]`.
    A value that looks like JSON but doesn't parse is split on commas instead.
    """
    text = (raw or "").strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            text = text.strip("[]")
        else:
            if isinstance(parsed, list):
                return [str(i).strip() for i in parsed if str(i).strip()]
    return [s.strip().strip('"') for s in text.split(",") if s.strip().strip('"')]


class Settings(BaseSettings):
    """
    Portal backend configuration, read from the environment or backend/.env.

    Secrets that must be overridden outside dev: JWT_SECRET, CLIENT_CODE_SECRET,
    and BOOTSTRAP_SECRET if the bootstrap endpoint is wanted at all.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field(default="dev", description="dev|staging|prod")
    debug: bool = Field(default=True)
    version: str = Field(default="dev")

    database_url: str = Field(default="sqlite:///./portal.db", description="SQLAlchemy URL; Postgres in prod.")

    # Signs session, pending-join and active-project tokens
    jwt_secret: str = Field(default="supersecret")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        description="Session token lifetime in minutes.",
    )

    # Client codes
    client_code_secret: str = Field(
        default="dev-client-code-secret",
        description="HMAC key for client code hashes. Rotating it invalidates every issued code.",
    )
    client_code_max_attempts: int = Field(
        default=10,
        description="Generator retries before reporting code space exhaustion.",
    )
    pending_join_expire_minutes: int = Field(default=10)
    active_project_expire_days: int = Field(default=30)

    # Administrative identities promoted to agency_admin on join
    admin_emails: str = Field(
        default="",
        description="Comma-separated or JSON list of administrative emails.",
    )

    bootstrap_secret: Optional[str] = Field(
        default=None,
        description="Shared secret for POST /setup/bootstrap; bootstrap is disabled when unset.",
    )

    # Passwordless sign-in
    frontend_url: str = Field(default="http://localhost:3000")
    login_link_expire_minutes: int = Field(default=30)

    # Email
    email_provider: str = Field(default="log", description="log|smtp")
    email_from: str = Field(default="Client Portal <no-reply@localhost>")
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True)

    # CORS / docs
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated string or JSON list of allowed frontend origins.",
    )
    enable_docs: bool = Field(default=False)

    # Per-IP request limits on the code and sign-in endpoints
    code_attempt_limit: int = Field(default=10)
    code_attempt_window_seconds: int = Field(default=60)
    magic_link_limit: int = Field(default=5)
    magic_link_window_seconds: int = Field(default=60)

    def origins_list(self) -> List[str]:
        """Normalize allowed_origins into a clean List[str] for CORSMiddleware."""
        return _as_list(self.allowed_origins)

    def admin_email_set(self) -> Set[str]:
        return {e.lower() for e in _as_list(self.admin_emails)}

    @property
    def is_prod(self) -> bool:
        return self.environment.lower() in {"prod", "production"}


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the app only parses env once.
    """
    return Settings()


settings = get_settings()
