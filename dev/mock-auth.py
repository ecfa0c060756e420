#!/usr/bin/env python3
"""
Mock identity provider + auth backend for local development.

Point the callback server at it:
  OAUTH_TOKEN_ENDPOINT=http://localhost:19999/token
  OAUTH_AUTHORIZE_ENDPOINT=http://localhost:19999/authorize
  SUPABASE_URL=http://localhost:19999
"""

import sys
import time
import uuid
from urllib.parse import urlencode

import jwt  # PyJWT
from flask import Flask, jsonify, redirect, request

app = Flask(__name__)

_SIGNING_KEY = "mock-auth-signing-key-not-for-production-use"
_issued_codes = set()
_redeemed_codes = set()


def _jwt(claims):
    return jwt.encode(claims, _SIGNING_KEY, algorithm="HS256")


@app.route("/authorize", methods=["GET"])
def authorize():
    """Skip consent: immediately bounce back to the redirect URI with a fresh code."""
    code = uuid.uuid4().hex
    _issued_codes.add(code)
    return redirect(f"{request.args.get('redirect_uri', '/')}?{urlencode({'code': code})}")


@app.route("/token", methods=["POST"])
def token():
    """Authorization-code exchange. Codes are single-use."""
    code = request.form.get("code", "")
    if code not in _issued_codes or code in _redeemed_codes:
        return jsonify({"error": "invalid_grant", "error_description": "Bad Request"}), 400
    _redeemed_codes.add(code)
    now = int(time.time())
    id_token = _jwt({"sub": "mock-user", "name": "Mock User", "aud": request.form.get("client_id"), "iat": now})
    return jsonify({"id_token": id_token, "access_token": "mock-access", "token_type": "Bearer", "expires_in": 3599})


@app.route("/auth/v1/token", methods=["POST"])
def sign_in_with_id_token():
    """Identity token -> session."""
    body = request.get_json(silent=True) or {}
    if request.args.get("grant_type") != "id_token" or not body.get("id_token"):
        return jsonify({"code": 400, "error_code": "validation_failed", "msg": "id_token required"}), 400
    now = int(time.time())
    return jsonify(
        {
            "access_token": _jwt({"sub": "mock-user", "session_id": uuid.uuid4().hex, "exp": now + 3600}),
            "token_type": "bearer",
            "expires_in": 3600,
            "expires_at": now + 3600,
            "refresh_token": uuid.uuid4().hex[:12],
            "user": {"id": "mock-user", "user_metadata": {"full_name": "Mock User", "avatar_url": None}},
        }
    )


@app.route("/healthz")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    print("Mock auth services starting on http://0.0.0.0:19999", file=sys.stderr)
    app.run(host="0.0.0.0", port=19999, debug=False)
