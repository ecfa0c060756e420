from __future__ import annotations

import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

from fedauth.auth.errors import ConfigurationMissing

GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_AUTHORIZE_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"

DEFAULT_COOKIE_PREFIX = "sb"
DEFAULT_COOKIE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60  # 7 days
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0

# Field name -> environment variable. All of these must be present.
REQUIRED_ENV: Dict[str, str] = {
    "provider_client_id": "GOOGLE_CLIENT_ID",
    "provider_client_secret": "GOOGLE_CLIENT_SECRET",
    "backend_url": "SUPABASE_URL",
    "backend_key": "SUPABASE_ANON_KEY",
    "redirect_uri": "AUTH_REDIRECT_URI",
}


@dataclass(frozen=True)
class AuthConfig:
    # Identity provider (authorization-code exchange)
    provider_client_id: str
    provider_client_secret: str
    token_endpoint: str
    authorize_endpoint: str
    redirect_uri: str  # Must be character-identical to the one registered with the provider

    # Auth backend (identity token -> session)
    backend_url: str
    backend_key: str
    backend_instance_id: str

    # Session cookie
    cookie_prefix: str
    cookie_max_age_seconds: int

    http_timeout_seconds: float
    app_origin: Optional[str]  # Overrides the request origin for final redirects


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    return (environ.get(name, "") or "").strip() or None


def _parse_int(value: Optional[str], default: int, *, minimum: int) -> int:
    try:
        f = float(value) if value else float(default)
    except ValueError:
        f = float(default)
    n = int(f) if math.isfinite(f) else default
    return n if n >= minimum else minimum


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        f = float(value) if value else default
    except ValueError:
        f = default
    return f if math.isfinite(f) and f > 0 else default


def derive_instance_id(backend_url: str) -> str:
    """
    Fallback backend instance id: the first DNS label of the backend host.

    `https://abcd1234.supabase.co` -> `abcd1234`. Prefer setting SUPABASE_INSTANCE_ID;
    hosts that don't follow this naming scheme still produce a stable (if less pretty) id.
    """
    host = urlparse(backend_url).hostname or ""
    label = host.split(".", 1)[0]
    return label or "local"


def missing_config_fields(environ: Mapping[str, str]) -> List[str]:
    """Return the env var names of every absent required setting (empty list when complete)."""
    return [env_name for env_name in REQUIRED_ENV.values() if _env(environ, env_name) is None]


def resolve_auth_config(environ: Mapping[str, str]) -> AuthConfig:
    """
    Build an AuthConfig from an environment mapping.

    Raises ConfigurationMissing naming every absent required variable. Never touches
    the network; the callback resolves this before the first outbound call.
    """
    missing = missing_config_fields(environ)
    if missing:
        raise ConfigurationMissing(missing)

    values = {field: _env(environ, env_name) or "" for field, env_name in REQUIRED_ENV.items()}
    backend_url = values["backend_url"].rstrip("/")

    return AuthConfig(
        provider_client_id=values["provider_client_id"],
        provider_client_secret=values["provider_client_secret"],
        token_endpoint=_env(environ, "OAUTH_TOKEN_ENDPOINT") or GOOGLE_TOKEN_ENDPOINT,
        authorize_endpoint=_env(environ, "OAUTH_AUTHORIZE_ENDPOINT") or GOOGLE_AUTHORIZE_ENDPOINT,
        redirect_uri=values["redirect_uri"],
        backend_url=backend_url,
        backend_key=values["backend_key"],
        backend_instance_id=_env(environ, "SUPABASE_INSTANCE_ID") or derive_instance_id(backend_url),
        cookie_prefix=_env(environ, "AUTH_COOKIE_PREFIX") or DEFAULT_COOKIE_PREFIX,
        cookie_max_age_seconds=_parse_int(
            _env(environ, "AUTH_COOKIE_MAX_AGE_SECONDS"), DEFAULT_COOKIE_MAX_AGE_SECONDS, minimum=60
        ),
        http_timeout_seconds=_parse_float(_env(environ, "AUTH_HTTP_TIMEOUT_SECONDS"), DEFAULT_HTTP_TIMEOUT_SECONDS),
        app_origin=(_env(environ, "AUTH_APP_ORIGIN") or "").rstrip("/") or None,
    )


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from the process environment.

    Cached; tests that change env vars must call `load_auth_config.cache_clear()`.
    """
    return resolve_auth_config(os.environ)
