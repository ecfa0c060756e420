#!/usr/bin/env python3
"""
fedauth - federated-login callback service.
Redeems provider authorization codes for backend sessions and sets the session cookie.
"""

import argparse
import json
import logging
import os
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep fedauth imports lazy (inside functions) so `--help` works without
# the web stack installed.
#


def check_config() -> int:
    """Print which required settings are missing (names only, never values)."""
    from fedauth.auth.config import missing_config_fields, resolve_auth_config
    from fedauth.auth.session import session_cookie_name

    missing = missing_config_fields(os.environ)
    if missing:
        print(json.dumps({"ok": False, "missing": missing}, indent=2))
        return 1

    cfg = resolve_auth_config(os.environ)
    print(
        json.dumps(
            {
                "ok": True,
                "redirect_uri": cfg.redirect_uri,
                "token_endpoint": cfg.token_endpoint,
                "backend_url": cfg.backend_url,
                "cookie_name": session_cookie_name(cfg),
            },
            indent=2,
        )
    )
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Federated-login callback server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Verify configuration (reports missing env vars by name)
  python main.py --check-config

  # Run the callback server
  python main.py --serve --port 8080
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the login callback HTTP server")
    parser.add_argument(
        "--check-config", action="store_true", help="Validate required environment variables and exit"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args()

    if args.check_config:
        sys.exit(check_config())

    if args.serve:
        from fedauth.api.server import run as run_server

        run_server(host=args.host, port=args.port)
        return

    # No arguments provided
    parser.print_help()


if __name__ == "__main__":
    main()
