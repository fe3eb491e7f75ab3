"""
Runtime settings and logging setup for Kubedeck.

Settings come from KUBEDECK_* environment variables, falling back to the
defaults in constants.py. The CLI overrides individual fields with its flags.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .constants import (
    DEFAULT_HOST, DEFAULT_LOG_LEVEL, DEFAULT_METRICS_INTERVAL_SECONDS,
    DEFAULT_PORT, DEFAULT_UVICORN_LOG_LEVEL, ENV_CONTEXT, ENV_HOST,
    ENV_KUBECONFIG, ENV_LOG_LEVEL, ENV_METRICS_INTERVAL, ENV_NAMESPACES,
    ENV_PORT, ENV_UVICORN_LEVEL, LOG_FORMAT,
)
from .validation import parse_namespace_list

log = logging.getLogger('kubedeck')


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger (level via KUBEDECK_LOG_LEVEL env or default INFO)."""
    name = (level or os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL)).upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)


def log_exception(msg: str, exc: BaseException, level: int = logging.WARNING) -> None:
    """Log an exception with proper formatting."""
    log.log(level, f"{msg}: {exc.__class__.__name__}: {exc}")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        log.warning(f"[config] Invalid {name}, using default: {default}")
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        log.warning(f"[config] Invalid {name}, using default: {default}")
        return default


@dataclass
class Settings:
    """
    Runtime configuration for Kubedeck.

    Attributes:
        kubeconfig: Path to the kubeconfig file (None uses the client's default rules)
        context: Initial cluster context name (None or "" uses the kubeconfig's current context)
        host: Server bind host
        port: Server port
        metrics_interval: Seconds between two metrics samples of a stream
        namespaces: Fixed namespace list reported by get_all_ns instead of querying the API
        uvicorn_log_level: Uvicorn server log level
    """
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    metrics_interval: float = DEFAULT_METRICS_INTERVAL_SECONDS
    namespaces: List[str] = field(default_factory=list)
    uvicorn_log_level: str = DEFAULT_UVICORN_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            kubeconfig=os.getenv(ENV_KUBECONFIG) or None,
            context=os.getenv(ENV_CONTEXT) or None,
            host=os.getenv(ENV_HOST, DEFAULT_HOST),
            port=_env_int(ENV_PORT, DEFAULT_PORT),
            metrics_interval=_env_float(ENV_METRICS_INTERVAL, DEFAULT_METRICS_INTERVAL_SECONDS),
            namespaces=parse_namespace_list(os.getenv(ENV_NAMESPACES)),
            uvicorn_log_level=os.getenv(ENV_UVICORN_LEVEL, DEFAULT_UVICORN_LOG_LEVEL),
        )
