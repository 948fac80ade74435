from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./letlog.db"
    policy_version: str = "2024-01-01.v1"

    # ---- Logging ----
    log_level: str = "INFO"
    sql_log_level: str = "WARNING"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Invitations ----
    invitation_ttl_days: int = 7
    invitation_base_url: str = "https://www.letlog.uk/invite"

    # ---- Reviews ----
    review_window_days: int = 60

    # ---- Tenancy end badges ----
    tenancy_end_urgent_days: int = 14
    tenancy_end_warning_days: int = 30
    tenancy_end_notice_days: int = 90

    # Not read by the policy engine; shares the constants surface with it.
    compliance_warning_days: int = 30

    # ---- Roles ----
    # Role applied when a profile carries no role at all. None means such
    # profiles are rejected. Invalid role strings are always rejected.
    role_fallback: str | None = None

    # ---- Auth ----
    auth_mode: str = "dev"  # dev|jwt
    allow_local_auth_bypass: bool = True
    dev_header_user_id: str = "X-User-Id"

    jwt_secret: str = "dev-change-me"

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if self.invitation_ttl_days <= 0:
            raise ValueError("invitation_ttl_days must be > 0")
        if self.review_window_days < 0:
            raise ValueError("review_window_days must be >= 0")

        # Hard fail: prod must not trust spoofable identity headers
        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if bool(self.allow_local_auth_bypass):
                raise ValueError("SECURITY: allow_local_auth_bypass=True is not allowed in prod")
            if self.jwt_secret == "dev-change-me":
                raise ValueError("SECURITY: jwt_secret must be set in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
