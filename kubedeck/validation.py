"""
Validation of command arguments and server configuration.

Command arguments that are missing raise MissingArgumentError, which the
dispatcher reports as an error envelope for that command. Bad configuration
raises ConfigurationError, which the CLI turns into exit status 2.

Key Functions:
- require_arg / optional_arg: Read a command's argument map
- validate_port, validate_host: Server bind address
- validate_metrics_interval: Delay between metrics samples
- parse_namespace_list: KUBEDECK_NAMESPACES / --namespaces value

Example:
    ```python
    ns = require_arg(envelope.args, "ns", envelope.command)
    namespaces = parse_namespace_list("default,prod")
    ```
"""

import re
from typing import List, Mapping, Optional

from .exceptions import ConfigurationError, MissingArgumentError

_NAMESPACE_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def require_arg(args: Mapping[str, str], key: str, command: str) -> str:
    """
    Return a required argument from a command's argument map.

    Args:
        args: The command's argument map
        key: Argument key to look up (e.g. "ns", "pod", "deployment")
        command: Name of the command, used in the error message

    Returns:
        str: The argument value

    Raises:
        MissingArgumentError: If the key is absent or its value is None

    Example:
        ```python
        ns = require_arg({"ns": "default"}, "ns", "get_resource")
        ```
    """
    value = args.get(key)
    if value is None:
        raise MissingArgumentError(command, key)
    return value


def optional_arg(args: Mapping[str, str], key: str) -> Optional[str]:
    """Return an argument value, or None when it is missing or blank."""
    value = args.get(key)
    if value is None or not str(value).strip():
        return None
    return value


def validate_port(port: int) -> int:
    """
    Check the port the UI server listens on.

    Args:
        port: TCP port from --port or KUBEDECK_PORT

    Returns:
        int: The same port

    Raises:
        ConfigurationError: If the value is not an int in 1..65535
    """
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise ConfigurationError(f"Invalid port {port!r}: expected an integer from 1 to 65535")
    return port


def validate_host(host: str) -> str:
    """
    Check the address the UI server binds to.

    Args:
        host: Hostname or IP from --host or KUBEDECK_HOST

    Returns:
        str: The host without surrounding whitespace

    Raises:
        ConfigurationError: If the host is blank or longer than a DNS name may be
    """
    host = (host or "").strip()
    if not host:
        raise ConfigurationError("Invalid host: value is empty")
    if len(host) > 253:
        raise ConfigurationError(f"Invalid host: {len(host)} characters exceeds the 253 allowed")
    return host


def validate_metrics_interval(interval: float) -> float:
    """
    Check the delay between two samples of a metrics stream.

    Every running stream queries the metrics API once per interval, so
    sub-second values are refused.

    Args:
        interval: Seconds from --metrics-interval or KUBEDECK_METRICS_INTERVAL

    Returns:
        float: The interval as a float

    Raises:
        ConfigurationError: If the value is not a number or is below one second
    """
    if isinstance(interval, bool) or not isinstance(interval, (int, float)):
        raise ConfigurationError(f"Invalid metrics interval {interval!r}: expected a number of seconds")
    if interval < 1.0:
        raise ConfigurationError(f"Invalid metrics interval {interval}: must be at least 1 second")
    return float(interval)


def parse_namespace_list(raw: Optional[str]) -> List[str]:
    """
    Parse a newline or comma separated list of namespace names.

    Blank entries are skipped. Every remaining entry must be a valid
    Kubernetes namespace name.

    Raises:
        ConfigurationError: If an entry is not a valid namespace name
    """
    if not raw:
        return []
    names = []
    for entry in re.split(r"[\n,]", raw):
        entry = entry.strip()
        if not entry:
            continue
        if len(entry) > 63 or not _NAMESPACE_RE.match(entry):
            raise ConfigurationError(f"Invalid namespace name: '{entry}'")
        names.append(entry)
    return names
