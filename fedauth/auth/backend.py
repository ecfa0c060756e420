from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt  # PyJWT
import requests

from fedauth.auth.config import AuthConfig
from fedauth.auth.errors import BackendSessionFailed
from fedauth.auth.models import IdentityToken, Session, SessionUser

logger = logging.getLogger(__name__)


def _response_body(r: requests.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {"raw": (r.text or "")[:500]}
    return data if isinstance(data, dict) else {"raw": data}


def _backend_error(body: Dict[str, Any]) -> Optional[str]:
    # GoTrue uses both OAuth-style and its own error envelopes.
    for key in ("error_code", "error", "msg", "message"):
        v = body.get(key)
        if v:
            return str(v)
    return None


def _access_token_claims(access_token: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        # Opaque (non-JWT) access tokens are acceptable; we just lose the claim hints.
        return {}
    return claims if isinstance(claims, dict) else {}


def _session_id(access_token: str, claims: Dict[str, Any]) -> str:
    sid = str(claims.get("session_id") or claims.get("jti") or "").strip()
    if sid:
        return sid
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()[:32]


def _epoch_to_datetime(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(float(value)), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _expires_at(body: Dict[str, Any], claims: Dict[str, Any], now: datetime) -> Optional[datetime]:
    # Precedence: explicit expires_at, then relative expires_in, then the token's own exp.
    expires_at = _epoch_to_datetime(body.get("expires_at"))
    if expires_at is not None:
        return expires_at
    try:
        expires_in = int(float(body.get("expires_in")))
    except (TypeError, ValueError):
        expires_in = 0
    if expires_in > 0:
        return now + timedelta(seconds=expires_in)
    return _epoch_to_datetime(claims.get("exp"))


def _session_user(raw_user: Dict[str, Any]) -> SessionUser:
    meta = raw_user.get("user_metadata")
    if not isinstance(meta, dict):
        meta = {}
    display_name = str(meta.get("full_name") or meta.get("name") or "").strip() or None
    avatar_url = str(meta.get("avatar_url") or meta.get("picture") or "").strip() or None
    email = str(raw_user.get("email") or "").strip() or None
    return SessionUser(id=str(raw_user["id"]), display_name=display_name, avatar_url=avatar_url, email=email)


def issue_session(
    cfg: AuthConfig,
    id_token: IdentityToken,
    *,
    provider: str,
    http: Any = None,
    now: Optional[datetime] = None,
) -> Session:
    """
    Exchange a provider ID token for a backend session (`signInWithIdToken`).

    The returned Session is the only output: nothing is written to cookies here.
    Raises BackendSessionFailed when the backend reports an error, and also when it
    reports success without a usable session (no access token or no user).
    """
    client = http or requests
    now = now or datetime.now(timezone.utc)
    url = f"{cfg.backend_url}/auth/v1/token?grant_type=id_token"
    headers = {
        "apikey": cfg.backend_key,
        "Authorization": f"Bearer {cfg.backend_key}",
        "Content-Type": "application/json",
    }
    r = client.post(
        url,
        json={"provider": provider, "id_token": id_token.raw},
        headers=headers,
        timeout=cfg.http_timeout_seconds,
    )

    if r.status_code >= 300:
        body = _response_body(r)
        error = _backend_error(body) or f"status_{r.status_code}"
        logger.warning(
            "Backend sign-in failed: status=%d error=%s keys=%s", r.status_code, error, sorted(body.keys())
        )
        raise BackendSessionFailed(error, status_code=r.status_code, backend_error=body)

    body = r.json()
    if not isinstance(body, dict):
        raise BackendSessionFailed("invalid_session_response", status_code=r.status_code)

    error = body.get("error") or body.get("error_code")
    if error:
        logger.warning(
            "Backend sign-in returned an error: error=%s keys=%s", _backend_error(body), sorted(body.keys())
        )
        raise BackendSessionFailed(str(error), status_code=r.status_code, backend_error=body)

    access_token = str(body.get("access_token") or "").strip()
    raw_user = body.get("user")
    if not access_token:
        logger.warning("Backend sign-in returned no session (keys=%s)", sorted(body.keys()))
        raise BackendSessionFailed("missing_session", status_code=r.status_code)
    if not isinstance(raw_user, dict) or not raw_user.get("id"):
        logger.warning("Backend sign-in returned a session without a user")
        raise BackendSessionFailed("missing_user", status_code=r.status_code)

    claims = _access_token_claims(access_token)
    session = Session(
        session_id=_session_id(access_token, claims),
        user=_session_user(raw_user),
        issued_at=now,
        expires_at=_expires_at(body, claims, now),
        access_token=access_token,
        refresh_token=str(body.get("refresh_token") or "").strip() or None,
        token_type=str(body.get("token_type") or "bearer"),
    )
    logger.info("Backend session issued (user=%s session=%s)", session.user.id, session.session_id)
    return session
