from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional


class CallbackErrorKind(str, Enum):
    """User-facing failure kinds. The value is the `error` query parameter on the redirect."""

    MISSING_CODE = "missing_code"
    MISSING_CONFIG = "missing_env"
    PROVIDER_EXCHANGE_FAILED = "auth_failed"
    BACKEND_SESSION_FAILED = "login_failed"
    UNKNOWN = "unknown"


class CallbackError(Exception):
    """Base class for classified callback failures."""

    kind: CallbackErrorKind = CallbackErrorKind.UNKNOWN

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MissingCode(CallbackError):
    kind = CallbackErrorKind.MISSING_CODE

    def __init__(self) -> None:
        super().__init__("authorization code missing from callback request")


class ConfigurationMissing(CallbackError):
    """One or more required settings are absent. `missing` lists the env var names."""

    kind = CallbackErrorKind.MISSING_CONFIG

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"missing configuration: {', '.join(self.missing)}")


class ProviderExchangeFailed(CallbackError):
    """
    The identity provider refused (or mangled) the authorization-code exchange.

    `provider_error` holds the raw error payload for operator logs; it must never be
    echoed back to the client.
    """

    kind = CallbackErrorKind.PROVIDER_EXCHANGE_FAILED

    def __init__(self, reason: str, *, status_code: Optional[int] = None, provider_error: Any = None):
        super().__init__(reason)
        self.status_code = status_code
        self.provider_error = provider_error


class BackendSessionFailed(CallbackError):
    kind = CallbackErrorKind.BACKEND_SESSION_FAILED

    def __init__(self, reason: str, *, status_code: Optional[int] = None, backend_error: Any = None):
        super().__init__(reason)
        self.status_code = status_code
        self.backend_error = backend_error
