"""Command-line interface for the cosmic-accounts daemon."""

from __future__ import annotations

import argparse
import sys

from typing import TYPE_CHECKING

from .config import get_settings


if TYPE_CHECKING:
    from .config import AccountsSettings


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="cosmic-accounts",
        description="Desktop online-accounts daemon",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the accounts daemon (RPC and OAuth2 redirect listener)",
    )
    serve_parser.add_argument("--host", type=str, help="Override the bind address")
    serve_parser.add_argument("--port", type=int, help="Override the bind port")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration (secrets redacted)",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )

    # providers command
    subparsers.add_parser(
        "providers",
        help="List configured identity providers",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()

    if args.command == "serve":
        return handle_serve(args, settings)
    if args.command == "config":
        return handle_config(args, settings)
    if args.command == "providers":
        return handle_providers(settings)

    return 0


def handle_serve(args: argparse.Namespace, settings: AccountsSettings) -> int:
    """Handle the serve command."""
    import uvicorn

    from .interface import create_service_from_settings
    from .log import configure_logging, enable_debug
    from .rpc import create_app

    configure_logging(settings.log)
    if args.debug:
        enable_debug()

    if not settings.configured_providers():
        print(
            "Warning: no provider has a client_id configured; "
            "set COSMIC_ACCOUNTS_GOOGLE__CLIENT_ID or COSMIC_ACCOUNTS_MICROSOFT__CLIENT_ID",
            file=sys.stderr,
        )

    service = create_service_from_settings(settings)
    app = create_app(service, settings)
    uvicorn.run(
        app,
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        log_level=settings.log.level.lower(),
    )
    return 0


def handle_config(args: argparse.Namespace, settings: AccountsSettings) -> int:
    """Handle the config command."""
    from .config import config_sources

    if args.sources:
        sources = config_sources()
        print("Configuration sources (in order of precedence, lowest first):")
        print()
        if not sources:
            print("  (no configuration files found)")
        for i, path in enumerate(sources, 1):
            print(f"  {i}. {path}")
        print()
        print("  Environment variables (COSMIC_ACCOUNTS_*) take precedence over files.")
        return 0

    if args.env:
        print(settings.to_env())
        return 0

    print(settings.show())
    return 0


def handle_providers(settings: AccountsSettings) -> int:
    """Handle the providers command."""
    configured = settings.configured_providers()
    if not configured:
        print("No providers configured.")
        return 1
    for name, section in configured.items():
        print(f"{name:10} redirect_uri={section.redirect_uri}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
