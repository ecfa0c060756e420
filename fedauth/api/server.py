"""
Login callback server.

Exposes the provider login redirect and the authorization-code callback. Every
callback outcome is a 302 back to the application origin.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request

from fedauth.auth.callback import handle_callback, outcome_redirect_url, redirect_response
from fedauth.auth.config import load_auth_config
from fedauth.auth.errors import ConfigurationMissing
from fedauth.auth.provider import SUPPORTED_PROVIDERS, build_authorize_url
from fedauth.auth.util import origin_of

logger = logging.getLogger(__name__)

app = FastAPI(title="fedauth login callback")


def _require_provider(provider: str) -> str:
    p = (provider or "").strip().lower()
    if p not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=404, detail="Unknown login provider")
    return p


def _request_origin(request: Request) -> str:
    return origin_of(str(request.url))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests (path only: the query string carries the authorization code)."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/auth/{provider}/login")
def auth_login(request: Request, provider: str):
    """Redirect the browser to the provider's consent screen."""
    _require_provider(provider)
    try:
        cfg = load_auth_config()
    except ConfigurationMissing as e:
        logger.error("Login unavailable: %s", e.reason)
        return redirect_response(outcome_redirect_url(_request_origin(request), e.kind))

    return redirect_response(build_authorize_url(cfg))


@app.get("/auth/{provider}/callback")
def auth_callback(request: Request, provider: str, code: Optional[str] = Query(None)):
    """
    Handle the provider redirect after user consent.

    Sync on purpose: the provider and backend calls block, so FastAPI runs this in its
    threadpool.
    """
    p = _require_provider(provider)
    return handle_callback(code, origin=_request_origin(request), provider=p)


_UVICORN_LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


def configure_logging(level_name: Optional[str] = None) -> str:
    """Set up root logging from LOG_LEVEL and return the matching uvicorn level name."""
    name = (level_name or os.getenv("LOG_LEVEL") or "info").strip().lower()
    logging.basicConfig(
        level=getattr(logging, name.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return name if name in _UVICORN_LOG_LEVELS else "info"


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    uvicorn_level = configure_logging()
    logger.info("Starting login callback server on %s:%d (log_level=%s)", host, port, uvicorn_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_level)
