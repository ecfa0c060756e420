from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from fedauth.auth.errors import CallbackErrorKind


@dataclass(frozen=True)
class IdentityToken:
    """Provider-issued ID token. Claims are unverified (the auth backend verifies the signature)."""

    raw: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> Optional[str]:
        sub = self.claims.get("sub")
        return str(sub) if sub else None


@dataclass(frozen=True)
class SessionUser:
    id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """Backend-issued session. Never mutated after creation."""

    session_id: str
    user: SessionUser
    issued_at: datetime
    expires_at: Optional[datetime]
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"


@dataclass(frozen=True)
class SessionCookie:
    name: str
    value: str
    path: str
    http_only: bool
    secure: bool
    same_site: str
    max_age: int


@dataclass(frozen=True)
class CallbackSuccess:
    redirect_target: str


@dataclass(frozen=True)
class CallbackFailure:
    error_kind: CallbackErrorKind
    redirect_target: str


CallbackOutcome = Union[CallbackSuccess, CallbackFailure]
