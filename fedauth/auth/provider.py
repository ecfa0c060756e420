from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from fedauth.auth.config import AuthConfig
from fedauth.auth.errors import ProviderExchangeFailed
from fedauth.auth.models import IdentityToken

logger = logging.getLogger(__name__)

# Single authorization-code path: Google as the identity provider.
SUPPORTED_PROVIDERS = ("google",)

# Scopes requested at login. No `email`: profile is enough to identify the user.
LOGIN_SCOPE = "openid profile"


def build_authorize_url(cfg: AuthConfig) -> str:
    """
    Build the provider authorization URL.

    Uses `cfg.redirect_uri` verbatim so the later code exchange presents the exact same
    redirect URI (providers reject the exchange on any difference).
    """
    params = {
        "client_id": cfg.provider_client_id,
        "redirect_uri": cfg.redirect_uri,
        "response_type": "code",
        "scope": LOGIN_SCOPE,
    }
    return f"{cfg.authorize_endpoint}?{urlencode(params)}"


def _response_body(r: requests.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        # Error pages from proxies/load balancers are frequently HTML.
        return {"raw": (r.text or "")[:500]}
    return data if isinstance(data, dict) else {"raw": data}


def _failure_reason(status_code: int, body: Dict[str, Any]) -> str:
    error = str(body.get("error") or "").strip()
    description = str(body.get("error_description") or "").strip()
    if error == "redirect_uri_mismatch" or "redirect_uri" in description.lower():
        return "redirect_uri_mismatch"
    if error == "invalid_grant":
        # Expired, revoked or already redeemed code. Only a fresh login flow helps.
        return "invalid_grant"
    if error:
        return f"provider_error:{error}"
    return f"provider_status:{status_code}"


def _unverified_claims(raw: str) -> Dict[str, Any]:
    claims = jwt.decode(raw, options={"verify_signature": False})
    if not isinstance(claims, dict):
        raise jwt.DecodeError("ID token claims are not an object")
    return claims


def exchange_code_for_id_token(cfg: AuthConfig, code: str, *, http: Any = None) -> IdentityToken:
    """
    Redeem an authorization code for the provider's ID token.

    Sends exactly one POST; codes are single-use so a rejected code is never retried.
    Raises ProviderExchangeFailed for any provider-side refusal, a response without an
    `id_token`, or an `id_token` that isn't a JWT. Transport errors propagate unchanged.
    """
    client = http or requests
    payload = {
        "code": code,
        "client_id": cfg.provider_client_id,
        "client_secret": cfg.provider_client_secret,
        "redirect_uri": cfg.redirect_uri,
        "grant_type": "authorization_code",
    }
    r = client.post(cfg.token_endpoint, data=payload, timeout=cfg.http_timeout_seconds)

    if r.status_code >= 300:
        body = _response_body(r)
        reason = _failure_reason(r.status_code, body)
        logger.warning(
            "Provider token exchange failed: reason=%s status=%d redirect_uri=%s error=%s",
            reason,
            r.status_code,
            cfg.redirect_uri,
            body,
        )
        raise ProviderExchangeFailed(reason, status_code=r.status_code, provider_error=body)

    data = r.json()
    if not isinstance(data, dict):
        raise ProviderExchangeFailed("invalid_token_response", status_code=r.status_code, provider_error=data)
    if data.get("error"):
        reason = _failure_reason(r.status_code, data)
        logger.warning("Provider token exchange returned an error: reason=%s error=%s", reason, data.get("error"))
        raise ProviderExchangeFailed(reason, status_code=r.status_code, provider_error=data)

    raw = str(data.get("id_token") or "").strip()
    if not raw:
        # Keys only: the response may carry an access token.
        logger.warning("Provider token response has no id_token (keys=%s)", sorted(data.keys()))
        raise ProviderExchangeFailed("missing_id_token", status_code=r.status_code)

    try:
        claims = _unverified_claims(raw)
    except jwt.PyJWTError as e:
        logger.warning("Provider returned a malformed id_token: %s", str(e))
        raise ProviderExchangeFailed("malformed_id_token", status_code=r.status_code) from e

    token = IdentityToken(raw=raw, claims=claims)
    logger.info("Provider token exchange OK (sub=%s)", token.subject)
    return token
