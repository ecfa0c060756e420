from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Response

from fedauth.auth.config import AuthConfig
from fedauth.auth.models import Session, SessionCookie
from fedauth.auth.util import b64url

SESSION_ROLE = "auth-token"
# Backend SDK cookie storage marks base64url-encoded JSON values with this prefix.
ENCODED_VALUE_PREFIX = "base64-"


def session_cookie_name(cfg: AuthConfig) -> str:
    # Later requests find the session with the same derivation, no out-of-band name.
    return f"{cfg.cookie_prefix}-{cfg.backend_instance_id}-{SESSION_ROLE}"


def _epoch(dt: Optional[datetime]) -> Optional[int]:
    return int(dt.timestamp()) if dt is not None else None


def session_payload(session: Session) -> Dict[str, Any]:
    expires_at = _epoch(session.expires_at)
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "token_type": session.token_type,
        "expires_at": expires_at,
        "expires_in": max(0, expires_at - _epoch(session.issued_at)) if expires_at is not None else None,
        "user": {
            "id": session.user.id,
            "email": session.user.email,
            "user_metadata": {
                "full_name": session.user.display_name,
                "avatar_url": session.user.avatar_url,
            },
        },
    }


def encode_session(session: Session) -> str:
    raw = json.dumps(session_payload(session), separators=(",", ":"), sort_keys=True)
    return ENCODED_VALUE_PREFIX + b64url(raw.encode("utf-8"))


def _max_age(cfg: AuthConfig, session: Session, now: datetime) -> int:
    if session.expires_at is None:
        return cfg.cookie_max_age_seconds
    return max(0, int((session.expires_at - now).total_seconds()))


def build_session_cookie(cfg: AuthConfig, session: Session, *, now: Optional[datetime] = None) -> SessionCookie:
    now = now or datetime.now(timezone.utc)
    return SessionCookie(
        name=session_cookie_name(cfg),
        value=encode_session(session),
        path="/",
        http_only=True,
        secure=True,
        same_site="lax",
        max_age=_max_age(cfg, session, now),
    )


def session_cookie_kwargs(cookie: SessionCookie) -> dict:
    return {
        "key": cookie.name,
        "value": cookie.value,
        "max_age": cookie.max_age,
        "httponly": cookie.http_only,
        "secure": cookie.secure,
        "samesite": cookie.same_site,
        "path": cookie.path,
    }


def attach_session_cookie(
    cfg: AuthConfig, session: Session, response: Response, *, now: Optional[datetime] = None
) -> Response:
    """
    Write the session cookie onto `response` and return that same object.

    Headers can't be added once a response is sent, so `response` must be the object
    the handler returns, not a throwaway built earlier.
    """
    response.set_cookie(**session_cookie_kwargs(build_session_cookie(cfg, session, now=now)))
    return response
