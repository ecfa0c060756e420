from __future__ import annotations

import pytest
import requests
from conftest import FakeResponse

import fedauth.auth.callback as cb
from fedauth.auth.callback import CallbackFlow, CallbackState, handle_callback, negotiate_session, outcome_redirect_url
from fedauth.auth.config import resolve_auth_config
from fedauth.auth.errors import CallbackErrorKind, ProviderExchangeFailed

ORIGIN = "https://app.example.test"


def _location(resp) -> str:  # type: ignore[no-untyped-def]
    assert resp.status_code == 302
    return resp.headers["location"]


def _set_cookies(resp) -> list:  # type: ignore[no-untyped-def]
    return resp.headers.getlist("set-cookie")


@pytest.mark.parametrize("code", [None, "", "   "])
def test_missing_code_redirects_without_network(auth_env, services, code) -> None:
    resp = handle_callback(code, origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=missing_code"
    assert services.calls == 0
    assert _set_cookies(resp) == []


@pytest.mark.parametrize(
    "name", ["GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "SUPABASE_URL", "SUPABASE_ANON_KEY", "AUTH_REDIRECT_URI"]
)
def test_missing_config_redirects_without_provider_call(auth_env, services, name: str) -> None:
    auth_env.pop(name)
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=missing_env"
    assert services.calls == 0


def test_provider_response_without_id_token_is_auth_failed(auth_env, services) -> None:
    services.provider_response = FakeResponse(200, {"access_token": "ya29.x"})
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=auth_failed"
    assert services.backend_calls == []
    assert _set_cookies(resp) == []


def test_backend_without_session_is_login_failed(auth_env, services) -> None:
    services.backend_response = FakeResponse(200, {"user": None})
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=login_failed"
    assert _set_cookies(resp) == []


def test_success_sets_exactly_one_session_cookie(auth_env, services) -> None:
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?login=success"
    assert resp.headers["cache-control"] == "no-store"

    cookies = _set_cookies(resp)
    assert len(cookies) == 1
    assert cookies[0].startswith("sb-abcd1234-auth-token=")
    assert "HttpOnly" in cookies[0]
    assert "Secure" in cookies[0]
    assert "Path=/" in cookies[0]
    # Provider exchange strictly before session issuance.
    assert len(services.provider_calls) == 1
    assert len(services.backend_calls) == 1


def test_replayed_code_succeeds_at_most_once(auth_env, services) -> None:
    first = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    second = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)

    assert _location(first) == f"{ORIGIN}?login=success"
    assert _location(second) == f"{ORIGIN}?error=auth_failed"
    assert _set_cookies(second) == []
    assert services.sessions_issued == 1


def test_unexpected_exception_is_unknown(auth_env) -> None:
    class _Down:
        def post(self, *_args, **_kwargs):  # type: ignore[no-untyped-def]
            raise requests.ConnectionError("connection refused")

    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=_Down())
    assert _location(resp) == f"{ORIGIN}?error=unknown"


def test_malformed_provider_json_is_unknown(auth_env, services) -> None:
    services.provider_response = FakeResponse(200, None, text="{not json")
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=unknown"


def test_malformed_backend_json_is_unknown(auth_env, services) -> None:
    services.backend_response = FakeResponse(200, None, text="<html>gateway</html>")
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=unknown"
    assert _set_cookies(resp) == []


def test_crash_while_writing_cookie_returns_clean_failure(monkeypatch, auth_env, services) -> None:
    def _boom(*_args, **_kwargs):  # type: ignore[no-untyped-def]
        raise RuntimeError("cookie encoder exploded")

    monkeypatch.setattr(cb, "attach_session_cookie", _boom)
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=unknown"
    assert _set_cookies(resp) == []


def test_error_cause_never_leaks_into_redirect(auth_env, services) -> None:
    services.provider_response = FakeResponse(400, {"error": "redirect_uri_mismatch", "error_description": "secret"})
    resp = handle_callback("code-1", origin=ORIGIN, environ=auth_env, http=services)
    assert _location(resp) == f"{ORIGIN}?error=auth_failed"


def test_app_origin_override(auth_env, services) -> None:
    auth_env["AUTH_APP_ORIGIN"] = "https://www.example.test"
    resp = handle_callback("code-1", origin="http://internal:8080", environ=auth_env, http=services)
    assert _location(resp) == "https://www.example.test?login=success"


def test_negotiate_session_walks_states_in_order(auth_env, services) -> None:
    flow = CallbackFlow()
    flow.advance(CallbackState.CONFIGURING)
    session = negotiate_session(
        "code-1", resolve_auth_config(auth_env), provider="google", http=services, flow=flow
    )
    assert session.user.id == "user-1"
    assert flow.history == [
        CallbackState.AWAITING_CODE,
        CallbackState.CONFIGURING,
        CallbackState.EXCHANGING_PROVIDER_TOKEN,
        CallbackState.ISSUING_SESSION,
    ]


def test_negotiate_session_stops_at_provider_failure(auth_env, services) -> None:
    services.provider_response = FakeResponse(400, {"error": "invalid_grant"})
    with pytest.raises(ProviderExchangeFailed):
        negotiate_session("code-1", resolve_auth_config(auth_env), provider="google", http=services)
    assert services.backend_calls == []


def test_flow_rejects_skips_and_post_terminal_moves() -> None:
    flow = CallbackFlow()
    with pytest.raises(RuntimeError):
        flow.advance(CallbackState.ISSUING_SESSION)

    flow.fail(CallbackErrorKind.MISSING_CODE)
    assert flow.terminal
    assert flow.error_kind is CallbackErrorKind.MISSING_CODE
    with pytest.raises(RuntimeError):
        flow.fail(CallbackErrorKind.UNKNOWN)
    with pytest.raises(RuntimeError):
        flow.advance(CallbackState.CONFIGURING)


def test_outcome_redirect_url() -> None:
    assert outcome_redirect_url("https://a.test/") == "https://a.test?login=success"
    assert outcome_redirect_url("https://a.test", CallbackErrorKind.UNKNOWN) == "https://a.test?error=unknown"
    assert outcome_redirect_url("", CallbackErrorKind.MISSING_CODE) == "/?error=missing_code"
