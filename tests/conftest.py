"""
Pytest config.

Local imports like `import fedauth` rely on the repo root being on sys.path. When the
package isn't installed (e.g. invoking a global `pytest` entrypoint) that doesn't happen
reliably during collection, so we pin it here.

Also provides an in-memory stand-in for the identity provider token endpoint and the
auth backend, so no test touches the network.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

import jwt  # noqa: E402  (PyJWT)

TOKEN_ENDPOINT = "https://oauth2.example.test/token"
BACKEND_URL = "https://abcd1234.supabase.co"
REDIRECT_URI = "https://app.example.test/auth/google/callback"
JWT_TEST_KEY = "test-signing-key-for-unit-tests-only-0123456789"

AUTH_ENV: Dict[str, str] = {
    "GOOGLE_CLIENT_ID": "client-123.apps.googleusercontent.com",
    "GOOGLE_CLIENT_SECRET": "client-secret",
    "SUPABASE_URL": BACKEND_URL,
    "SUPABASE_ANON_KEY": "anon-key",
    "AUTH_REDIRECT_URI": REDIRECT_URI,
    "OAUTH_TOKEN_ENDPOINT": TOKEN_ENDPOINT,
}


def make_jwt(claims: Dict[str, Any]) -> str:
    return jwt.encode(claims, JWT_TEST_KEY, algorithm="HS256")


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, *, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ""

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeAuthServices:
    """
    Provider token endpoint + auth backend in one object exposing `post()` like `requests`.

    Authorization codes are single-use, like a real provider: a second redemption of the
    same code gets `invalid_grant`. Set `provider_response` / `backend_response` to force
    a specific reply.
    """

    def __init__(self, *, valid_codes: Tuple[str, ...] = ("code-1",)) -> None:
        self.valid_codes: Set[str] = set(valid_codes)
        self.redeemed: Set[str] = set()
        self.provider_calls: List[Dict[str, Any]] = []
        self.backend_calls: List[Dict[str, Any]] = []
        self.provider_response: Optional[FakeResponse] = None
        self.backend_response: Optional[FakeResponse] = None
        self.sessions_issued = 0

    @property
    def calls(self) -> int:
        return len(self.provider_calls) + len(self.backend_calls)

    def post(self, url: str, data=None, json=None, headers=None, timeout=None):  # type: ignore[no-untyped-def]
        if url == TOKEN_ENDPOINT:
            self.provider_calls.append({"data": dict(data or {}), "timeout": timeout})
            return self._redeem(str((data or {}).get("code") or ""))
        if url.startswith(f"{BACKEND_URL}/auth/v1/token"):
            self.backend_calls.append({"url": url, "json": dict(json or {}), "headers": dict(headers or {})})
            return self._sign_in(dict(json or {}))
        raise AssertionError(f"unexpected POST {url}")

    def _redeem(self, code: str) -> FakeResponse:
        if self.provider_response is not None:
            return self.provider_response
        if code not in self.valid_codes or code in self.redeemed:
            return FakeResponse(400, {"error": "invalid_grant", "error_description": "Bad Request"})
        self.redeemed.add(code)
        id_token = make_jwt({"sub": "google-sub-1", "name": "Ada Lovelace", "iss": "https://accounts.google.com"})
        return FakeResponse(200, {"id_token": id_token, "access_token": "ya29.x", "token_type": "Bearer"})

    def _sign_in(self, body: Dict[str, Any]) -> FakeResponse:
        if self.backend_response is not None:
            return self.backend_response
        if not body.get("id_token"):
            return FakeResponse(400, {"error": "invalid_request", "error_description": "missing id_token"})
        self.sessions_issued += 1
        now = int(time.time())
        access_token = make_jwt({"sub": "user-1", "session_id": f"sess-{self.sessions_issued}", "exp": now + 3600})
        return FakeResponse(
            200,
            {
                "access_token": access_token,
                "token_type": "bearer",
                "expires_in": 3600,
                "expires_at": now + 3600,
                "refresh_token": "refresh-1",
                "user": {
                    "id": "user-1",
                    "email": None,
                    "user_metadata": {"full_name": "Ada Lovelace", "avatar_url": "https://img.example.test/a.png"},
                },
            },
        )


@pytest.fixture
def auth_env() -> Dict[str, str]:
    return dict(AUTH_ENV)


@pytest.fixture
def services() -> FakeAuthServices:
    return FakeAuthServices()


@pytest.fixture(autouse=True)
def _clear_auth_config_cache():
    """`load_auth_config` is cached per process; tests change env vars freely."""
    from fedauth.auth.config import load_auth_config

    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()
