from __future__ import annotations

import base64
from urllib.parse import urlsplit


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def origin_of(url: str) -> str:
    """
    `https://app.example.com:8443/auth/google/callback?code=x` -> `https://app.example.com:8443`.

    Redirects go to the origin only, never to a caller-controlled path.
    """
    parts = urlsplit((url or "").strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return "/"
    # Keep it simple: strip any CR/LF.
    netloc = parts.netloc.replace("\r", "").replace("\n", "")
    return f"{parts.scheme}://{netloc}"
