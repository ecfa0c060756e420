"""
Authorization-code callback.

Drives code -> provider ID token -> backend session -> session cookie, one step at a
time, and maps every failure to a redirect with an `error` query parameter.

Negotiation (`negotiate_session`) returns a Session value and never touches the HTTP
response. The response is created once, after negotiation, and the session cookie is
written onto that same object before it is returned.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from fastapi.responses import RedirectResponse

from fedauth.auth.backend import issue_session
from fedauth.auth.config import AuthConfig, load_auth_config, resolve_auth_config
from fedauth.auth.errors import CallbackError, CallbackErrorKind, MissingCode
from fedauth.auth.models import CallbackFailure, CallbackOutcome, CallbackSuccess, Session
from fedauth.auth.provider import exchange_code_for_id_token
from fedauth.auth.session import attach_session_cookie

logger = logging.getLogger(__name__)


class CallbackState(str, Enum):
    AWAITING_CODE = "awaiting_code"
    CONFIGURING = "configuring"
    EXCHANGING_PROVIDER_TOKEN = "exchanging_provider_token"
    ISSUING_SESSION = "issuing_session"
    WRITING_COOKIE = "writing_cookie"
    REDIRECTING = "redirecting"
    ERRORED = "errored"


_NEXT: Dict[CallbackState, CallbackState] = {
    CallbackState.AWAITING_CODE: CallbackState.CONFIGURING,
    CallbackState.CONFIGURING: CallbackState.EXCHANGING_PROVIDER_TOKEN,
    CallbackState.EXCHANGING_PROVIDER_TOKEN: CallbackState.ISSUING_SESSION,
    CallbackState.ISSUING_SESSION: CallbackState.WRITING_COOKIE,
    CallbackState.WRITING_COOKIE: CallbackState.REDIRECTING,
}

TERMINAL_STATES: FrozenSet[CallbackState] = frozenset({CallbackState.REDIRECTING, CallbackState.ERRORED})


class CallbackFlow:
    """
    Per-request state tracker.

    Only forward, one-step transitions are allowed; `fail()` moves any non-terminal
    state to ERRORED. There is no way back, so a request can't loop or retry.
    """

    def __init__(self) -> None:
        self.state = CallbackState.AWAITING_CODE
        self.error_kind: Optional[CallbackErrorKind] = None
        self.history: List[CallbackState] = [self.state]

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, to: CallbackState) -> None:
        if _NEXT.get(self.state) != to:
            raise RuntimeError(f"Illegal callback transition {self.state.value} -> {to.value}")
        logger.debug("callback: %s -> %s", self.state.value, to.value)
        self.state = to
        self.history.append(to)

    def fail(self, kind: CallbackErrorKind) -> None:
        if self.terminal:
            raise RuntimeError(f"Callback already finished in state {self.state.value}")
        logger.debug("callback: %s -> errored(%s)", self.state.value, kind.value)
        self.state = CallbackState.ERRORED
        self.error_kind = kind
        self.history.append(CallbackState.ERRORED)


def outcome_redirect_url(origin: str, error_kind: Optional[CallbackErrorKind] = None) -> str:
    base = (origin or "").rstrip("/") or "/"
    if error_kind is None:
        return f"{base}?login=success"
    return f"{base}?error={error_kind.value}"


def _outcome(origin: str, error_kind: Optional[CallbackErrorKind]) -> CallbackOutcome:
    target = outcome_redirect_url(origin, error_kind)
    if error_kind is None:
        return CallbackSuccess(redirect_target=target)
    return CallbackFailure(error_kind=error_kind, redirect_target=target)


def redirect_response(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def negotiate_session(
    code: str,
    cfg: AuthConfig,
    *,
    provider: str,
    http: Any = None,
    flow: Optional[CallbackFlow] = None,
    now: Optional[datetime] = None,
) -> Session:
    """
    Exchange an authorization code for a backend Session.

    Strictly sequential: the provider exchange finishes before the backend is called.
    Raises ProviderExchangeFailed / BackendSessionFailed; anything else propagates.
    """
    if flow is not None:
        flow.advance(CallbackState.EXCHANGING_PROVIDER_TOKEN)
    id_token = exchange_code_for_id_token(cfg, code, http=http)

    if flow is not None:
        flow.advance(CallbackState.ISSUING_SESSION)
    return issue_session(cfg, id_token, provider=provider, http=http, now=now)


def handle_callback(
    code: Optional[str],
    *,
    origin: str,
    provider: str = "google",
    environ: Optional[Mapping[str, str]] = None,
    http: Any = None,
    now: Optional[datetime] = None,
) -> RedirectResponse:
    """
    Run the whole callback and return the one response for this request.

    Never raises: classified failures redirect with their own error code, anything
    unexpected redirects with `error=unknown`. Causes are logged, not put in the URL.
    `environ` overrides the (cached) process configuration, mainly for tests.
    """
    flow = CallbackFlow()
    redirect_origin = origin
    try:
        code = (code or "").strip()
        if not code:
            raise MissingCode()
        flow.advance(CallbackState.CONFIGURING)

        cfg = load_auth_config() if environ is None else resolve_auth_config(environ)
        redirect_origin = cfg.app_origin or origin

        session = negotiate_session(code, cfg, provider=provider, http=http, flow=flow, now=now)

        flow.advance(CallbackState.WRITING_COOKIE)
        resp = redirect_response(_outcome(redirect_origin, None).redirect_target)
        attach_session_cookie(cfg, session, resp, now=now)
        flow.advance(CallbackState.REDIRECTING)
        logger.info("Login callback succeeded (user=%s session=%s)", session.user.id, session.session_id)
        return resp
    except CallbackError as e:
        logger.warning("Login callback failed in state %s: %s (%s)", flow.state.value, e.kind.value, e.reason)
        flow.fail(e.kind)
    except Exception as e:
        logger.exception("Login callback crashed in state %s: %s", flow.state.value, str(e))
        flow.fail(CallbackErrorKind.UNKNOWN)

    # Failure responses are built fresh; nothing from a partially written success survives.
    return redirect_response(_outcome(redirect_origin, flow.error_kind).redirect_target)
