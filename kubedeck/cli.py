"""
Command-line interface for Kubedeck.

Parses arguments, validates configuration and starts the server the UI
talks to.

Example:
    ```bash
    kubedeck serve
    kubedeck serve --context staging --port 8765 --namespaces default,prod
    ```
"""

import argparse
import asyncio
import logging
import sys
from typing import NoReturn, Optional, Sequence

from .config import Settings, configure_logging
from .constants import ENV_CONTEXT, ENV_HOST, ENV_KUBECONFIG, ENV_LOG_LEVEL, ENV_METRICS_INTERVAL, ENV_NAMESPACES, ENV_PORT
from .exceptions import ConfigurationError
from .server import run_server
from .validation import parse_namespace_list, validate_host, validate_metrics_interval, validate_port

log = logging.getLogger('kubedeck')

EXIT_SERVER_ERROR = 1
EXIT_CONFIG_ERROR = 2


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    """Argument parser whose defaults come from ``defaults`` (normally Settings.from_env())."""
    p = argparse.ArgumentParser("kubedeck", description="Kubernetes orchestration core for the Kubedeck desktop UI")
    p.add_argument("command", choices=['serve'], help="What to run; 'serve' starts the UI server")
    p.add_argument("--kubeconfig", default=defaults.kubeconfig, help=f"kubeconfig file (env: {ENV_KUBECONFIG})")
    p.add_argument("--context", default=defaults.context, help=f"Initial context, default is the kubeconfig's current one (env: {ENV_CONTEXT})")
    p.add_argument("--host", default=defaults.host, help=f"Bind address (env: {ENV_HOST})")
    p.add_argument("--port", type=int, default=defaults.port, help=f"Bind port (env: {ENV_PORT})")
    p.add_argument("--metrics-interval", type=float, default=defaults.metrics_interval,
                   help=f"Seconds between metrics samples (env: {ENV_METRICS_INTERVAL})")
    p.add_argument("--namespaces", default=None, help=f"Comma separated namespaces offered instead of listing them (env: {ENV_NAMESPACES})")
    p.add_argument("--log-level", default=None, help=f"Log level (env: {ENV_LOG_LEVEL})")
    return p


def settings_from_args(args: argparse.Namespace, defaults: Settings) -> Settings:
    """
    Merge parsed flags over the environment defaults and validate the result.

    Raises:
        ConfigurationError: If any value is out of range
    """
    namespaces = parse_namespace_list(args.namespaces) if args.namespaces else defaults.namespaces
    return Settings(
        kubeconfig=args.kubeconfig,
        context=args.context,
        host=validate_host(args.host),
        port=validate_port(args.port),
        metrics_interval=validate_metrics_interval(args.metrics_interval),
        namespaces=namespaces,
        uvicorn_log_level=defaults.uvicorn_log_level,
    )


def _exit(code: int, message: str) -> NoReturn:
    print(message, file=sys.stderr)
    sys.exit(code)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point of the ``kubedeck`` console script."""
    try:
        defaults = Settings.from_env()
    except ConfigurationError as e:
        _exit(EXIT_CONFIG_ERROR, f"Configuration error: {e}")

    args = build_parser(defaults).parse_args(argv)
    configure_logging(args.log_level)

    try:
        settings = settings_from_args(args, defaults)
    except ConfigurationError as e:
        _exit(EXIT_CONFIG_ERROR, f"Configuration error: {e}")

    log.info(f"[cli] serving on http://{settings.host}:{settings.port}")
    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
    except Exception as e:
        _exit(EXIT_SERVER_ERROR, f"Server error: {e}")


if __name__ == "__main__":  # pragma: no cover
    main()
