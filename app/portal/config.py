import json
import os
from dataclasses import dataclass, field

from app.portal.constants import APP_BYPASS_ROLES


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    csrf_enabled: bool
    password_min_length: int
    temp_password_length: int
    app_bypass_roles: dict[str, frozenset[str]] = field(default_factory=dict)


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from None


def _load_bypass_roles(raw: str) -> dict[str, frozenset[str]]:
    """
    APP_BYPASS_ROLES='{"IXN_WORKFLOW_MANAGER": ["MODULE_LEADER"]}' replaces the built-in table.
    """
    if not raw:
        return dict(APP_BYPASS_ROLES)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"APP_BYPASS_ROLES is not valid JSON: {e}") from None
    if not isinstance(value, dict):
        raise RuntimeError("APP_BYPASS_ROLES must be a JSON object of app key -> list of role keys.")
    return {str(k): frozenset(str(r).upper() for r in (v or [])) for k, v in value.items()}


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        csrf_enabled=_getenv("CSRF_ENABLED", "1") != "0",
        password_min_length=_getenv_int("PASSWORD_MIN_LENGTH", 8),
        temp_password_length=_getenv_int("TEMP_PASSWORD_LENGTH", 8),
        app_bypass_roles=_load_bypass_roles(_getenv("APP_BYPASS_ROLES")),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "CSRF_ENABLED": s.csrf_enabled,
        "PASSWORD_MIN_LENGTH": s.password_min_length,
        "TEMP_PASSWORD_LENGTH": s.temp_password_length,
        "APP_BYPASS_ROLES": s.app_bypass_roles,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }
