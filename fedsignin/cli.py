"""Command-line interface for fedsignin configuration management."""

from __future__ import annotations

import argparse
import os
import sys

from pathlib import Path

from . import log
from .exceptions import ConfigurationError
from .log import redact_sensitive_data


PROPERTIES_TEMPLATE = """\
# fedsignin provider configuration
#
# At least one of oidc.provider.id / saml.provider.id must be set.
# Provider IDs must match the providers enabled in the identity backend.

# OpenID Connect provider (must start with "oidc.")
oidc.provider.id=oidc.example

# SAML provider (must start with "saml.")
#saml.provider.id=saml.example

# Extra parameters sent to the OIDC provider: key1=value1,key2=value2
#oidc.custom.params=prompt=login,tenant=example

# Requested OIDC scopes: comma separated
oidc.scopes=openid,email,profile

# Allow callers to request provider IDs that are not listed above
oidc.development.mode=false
"""


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="fedsignin",
        description="fedsignin configuration tools",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # check command
    check_parser = subparsers.add_parser(
        "check",
        help="Validate a provider configuration file",
    )
    check_parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="Properties file to validate (default: the configured config_path)",
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Write a provider configuration template",
    )
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite an existing file",
    )
    init_parser.add_argument(
        "--path",
        "-p",
        type=str,
        default="config.properties",
        help="Path for the template (default: config.properties)",
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export process settings",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current settings",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export settings as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show settings file sources",
    )

    args = parser.parse_args(argv)

    if args.debug:
        log.enable_debug()

    if args.command == "check":
        return handle_check(args)
    if args.command == "init":
        return handle_init(args)
    if args.command == "config":
        return handle_config(args)
    parser.print_help()
    return 0


def handle_check(args: argparse.Namespace) -> int:
    """Handle the check command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code (1 if the configuration is unusable).
    """
    from .auth.config_store import ConfigStore
    from .config import get_settings

    path = Path(args.path) if args.path else get_settings().auth.config_path

    try:
        config = ConfigStore(path).load()
    except ConfigurationError as exc:
        print(f"Error [{exc.kind.value}]: {exc.message}", file=sys.stderr)
        return 1

    print(f"{path}: OK")
    print(f"  oidc provider     = {config.oidc_provider_ref or '-'}")
    print(f"  saml provider     = {config.saml_provider_ref or '-'}")
    print(f"  custom parameters = {redact_sensitive_data(dict(config.custom_parameters))}")
    print(f"  scopes            = {', '.join(config.scopes) or '-'}")
    print(f"  development mode  = {config.development_mode}")
    print(f"  default provider  = {config.default_provider_ref()}")
    return 0


def handle_init(args: argparse.Namespace) -> int:
    """Handle the init command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    path = Path(args.path)

    if path.exists() and not args.force:
        print(f"Error: {path} already exists. Use --force to overwrite.", file=sys.stderr)
        return 1

    path.write_text(PROPERTIES_TEMPLATE, encoding="utf-8")
    print(f"Created {path}")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import FedSignInSettings

    if args.sources:
        return show_config_sources()

    settings = FedSignInSettings()
    print(settings.to_env() if args.env else settings.show())
    return 0


def show_config_sources() -> int:
    """Show settings file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    sources = [
        ("pyproject.toml [tool.fedsignin]", Path("pyproject.toml")),
        ("./fedsignin.toml", Path("fedsignin.toml")),
    ]
    explicit = os.environ.get("FEDSIGNIN_CONFIG_FILE")
    if explicit:
        sources.append(("FEDSIGNIN_CONFIG_FILE", Path(explicit)))

    print("Settings sources (in order of precedence):\n")
    print(f"{'Source':<36} {'Status':<12} {'Path'}")
    print("-" * 72)
    print(f"{'Built-in defaults':<36} {'active':<12}")
    for name, path in sources:
        status = "found" if path.exists() else "not found"
        print(f"{name:<36} {status:<12} {path}")

    env_vars = sorted(k for k in os.environ if k.startswith("FEDSIGNIN_"))
    shown = ", ".join(env_vars[:3]) + ("..." if len(env_vars) > 3 else "")
    print(f"{'Environment variables':<36} {f'{len(env_vars)} vars':<12} {shown}")

    print("\nNote: Later sources override earlier ones.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
