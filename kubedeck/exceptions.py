"""
Custom exceptions for Kubedeck.

Exception Hierarchy:
- KubedeckError: Base exception for all Kubedeck-specific errors
  - ClusterUnavailableError: No reachable cluster for the selected context
  - MissingArgumentError: A command was dispatched without a required argument
  - UnknownResourceKindError: The resource kind is not one Kubedeck knows
  - UnknownCommandError: The command name has no handler
  - ResourceBodyError: A resource body could not be parsed into an object
  - MetricsUnavailableError: Raised when metrics server is not available
  - ConfigurationError: Raised when there's a configuration issue

Example:
    ```python
    try:
        kind = ResourceKind.parse("gizmo")
    except UnknownResourceKindError as e:
        print(f"Lookup failed: {e}")
    ```
"""


class KubedeckError(Exception):
    """Base exception for Kubedeck errors."""
    pass


class ClusterUnavailableError(KubedeckError):
    """Raised when unable to connect to the selected cluster."""
    pass


class MissingArgumentError(KubedeckError):
    """Raised when a command lacks a required argument key."""

    def __init__(self, command: str, key: str):
        super().__init__(f"Command '{command}' requires argument '{key}'")
        self.command = command
        self.key = key


class UnknownResourceKindError(KubedeckError):
    """Raised when a resource kind string does not name a supported kind."""

    def __init__(self, kind: str):
        super().__init__(f"Unknown resource kind: '{kind}'")
        self.kind = kind


class UnknownCommandError(KubedeckError):
    """Raised when no handler is registered for a command name."""

    def __init__(self, command: str):
        super().__init__(f"Unknown command: '{command}'")
        self.command = command


class ResourceBodyError(KubedeckError):
    """Raised when a resource body is malformed."""
    pass


class MetricsUnavailableError(KubedeckError):
    """Raised when metrics server is not available."""
    pass


class ConfigurationError(KubedeckError):
    """Raised when there's a configuration issue."""
    pass
