# propauth/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_JWT_SECRET = "dev-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- Runtime ----
    app_env: str = "local"  # local|dev|prod
    app_name: str = "propauth"
    database_url: str = "sqlite:///./propauth.db"

    # comma separated string or JSON list
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Principal binding ----
    auth_mode: str = "dev"  # dev|jwt; dev trusts the X-User-Id header
    dev_header_user_id: str = "X-User-Id"
    org_header: str = "X-Org-Id"

    jwt_secret: str = _DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_exp_minutes: int = 60 * 24

    # ---- Trial plan limits for new organizations ----
    default_max_users: int = 3
    default_max_properties: int = 5

    # writes answer 402 unless the org is on a running trial or an active subscription
    enforce_subscription: bool = True

    # ---- Startup ----
    auto_create_tables: bool = False
    validate_roles_on_startup: bool = True

    @property
    def is_prod(self) -> bool:
        return (self.app_env or "").strip().lower() in ("prod", "production")

    @property
    def cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        items = raw.split(",") if isinstance(raw, str) else list(raw or [])
        return [o.strip() for o in items if o and o.strip()] or ["*"]

    def model_post_init(self, __context) -> None:
        if not self.is_prod:
            return

        problems = []
        if (self.auth_mode or "").strip().lower() == "dev":
            problems.append("auth_mode=dev")
        if self.jwt_secret == _DEV_JWT_SECRET:
            problems.append("default jwt_secret")
        if "*" in self.cors_origins:
            problems.append("wildcard cors_allow_origins")
        if problems:
            raise ValueError("SECURITY: not allowed in prod: " + ", ".join(problems))


settings = Settings()
