"""Command line interface for the authorization code flow.

Settings come from flags or ``AUTHFLOW_*`` environment variables (a
``.env`` file in the working directory is honored).
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from authflow.config import ClientConfig
from authflow.models.errors import (
    CallbackTimeoutError,
    OAuth2Error,
    ProviderError,
    StateMismatchError,
    TokenFileNotFoundError,
    TransportError,
)
from authflow.oauth_client import AuthorizationOrchestrator
from authflow.services.storage import TokenStore

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ABORTED = 2
# EX_TEMPFAIL: the same command may succeed if run again
EXIT_TRY_AGAIN = 75


def cmd_login(config: ClientConfig) -> int:
    config.require("authorize_url", "token_url", "client_id", "token_path")

    with AuthorizationOrchestrator(callback_timeout=config.timeout) as orchestrator:
        print("Opening browser for authorization...")
        print("If the browser did not open, visit the URL logged above.\n")
        record = orchestrator.run(
            authorize_url=config.authorize_url,
            token_url=config.token_url,
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.redirect_uri,
            scope=config.scope,
            use_pkce=config.use_pkce,
            access_type=config.access_type,
            use_basic_auth=config.use_basic_auth,
            token_path=config.token_path,
        )

    print("Success! You are now authenticated.")
    print(f"Token saved to: {config.token_path}")
    print(f"Token expires: {datetime.fromtimestamp(record.expires_at)}")
    return EXIT_SUCCESS


def cmd_status(config: ClientConfig) -> int:
    config.require("token_path")
    store = TokenStore()

    try:
        record = store.load(config.token_path)
    except TokenFileNotFoundError:
        print('Not authenticated. Run "login" to authenticate.')
        return EXIT_FAILURE

    state = "expired" if store.is_expired(record, buffer_seconds=0) else "valid"
    print(f"Access token: {state}")
    print(f"Token expires: {datetime.fromtimestamp(record.expires_at)}")
    print(f"Refresh token: {'present' if record.can_refresh() else 'absent'}")
    if record.scope:
        print(f"Scope: {record.scope}")
    return EXIT_SUCCESS


def cmd_refresh(config: ClientConfig) -> int:
    config.require("token_url", "client_id", "token_path")

    with AuthorizationOrchestrator() as orchestrator:
        record = orchestrator.refresh(
            token_url=config.token_url,
            token_path=config.token_path,
            client_id=config.client_id,
            client_secret=config.client_secret,
            use_basic_auth=config.use_basic_auth,
        )

    print("Token refreshed.")
    print(f"Token expires: {datetime.fromtimestamp(record.expires_at)}")
    return EXIT_SUCCESS


def cmd_logout(config: ClientConfig) -> int:
    config.require("token_path")
    TokenStore().clear(config.token_path)
    print("Credentials cleared.")
    return EXIT_SUCCESS


COMMANDS = {
    "login": cmd_login,
    "status": cmd_status,
    "refresh": cmd_refresh,
    "logout": cmd_logout,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authflow",
        description="OAuth 2.0 authorization code flow client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  authflow login --authorize-url https://idp.example/authorize \\
      --token-url https://idp.example/token --client-id my-app \\
      --token-file ~/.config/my-app/token.json
  authflow status --token-file ~/.config/my-app/token.json
  authflow refresh
  authflow logout
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--authorize-url", help="Provider authorization endpoint")
    parser.add_argument("--token-url", help="Provider token endpoint")
    parser.add_argument("--client-id", help="OAuth client identifier")
    parser.add_argument("--client-secret", help="OAuth client secret (confidential clients)")
    parser.add_argument("--redirect-uri", help="Loopback redirect URI to listen on")
    parser.add_argument("--scope", action="append", help="Scope to request (repeatable)")
    parser.add_argument("--access-type", help="Provider access_type parameter (e.g. offline)")
    parser.add_argument("--token-file", dest="token_path", help="Where the token is stored")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the browser redirect")
    parser.add_argument(
        "--no-pkce", dest="use_pkce", action="store_false", default=None, help="Disable PKCE"
    )
    parser.add_argument(
        "--basic-auth",
        dest="use_basic_auth",
        action="store_true",
        default=None,
        help="Send client credentials with HTTP Basic authentication",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("login", help="Authorize in the browser and store the token")
    subparsers.add_parser("status", help="Show the stored token's status")
    subparsers.add_parser("refresh", help="Refresh the stored token")
    subparsers.add_parser("logout", help="Delete the stored token")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command not in COMMANDS:
        parser.print_help()
        return EXIT_FAILURE

    try:
        config = ClientConfig.from_env(
            authorize_url=args.authorize_url,
            token_url=args.token_url,
            client_id=args.client_id,
            client_secret=args.client_secret,
            redirect_uri=args.redirect_uri,
            scope=tuple(args.scope) if args.scope else None,
            access_type=args.access_type,
            token_path=Path(args.token_path).expanduser() if args.token_path else None,
            timeout=args.timeout,
            use_pkce=args.use_pkce,
            use_basic_auth=args.use_basic_auth,
        )
        return COMMANDS[args.command](config)
    except (StateMismatchError, ProviderError) as e:
        print(f"Authorization aborted: {e}", file=sys.stderr)
        return EXIT_ABORTED
    except (CallbackTimeoutError, TransportError) as e:
        print(f"{e}\nPlease try again.", file=sys.stderr)
        return EXIT_TRY_AGAIN
    except OAuth2Error as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
