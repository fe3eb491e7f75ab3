"""
Constants and configuration defaults for Kubedeck.

Constants are organized by category:
- Polling: metrics cadence and log window sizes
- Event channels: names of the channels the UI listens on
- Named signals: payload-free notifications
- Logging: default log levels
- Server defaults: default host and port configurations
- Kubernetes API: metrics API group and version constants
- Environment: names of the KUBEDECK_* variables
"""

# Polling
DEFAULT_METRICS_INTERVAL_SECONDS = 5.0
LOG_TAIL_LINES = 1
LOG_FETCH_LINES = 100
SHELL_POLL_TIMEOUT_SECONDS = 1
DEFAULT_SHELL_COMMAND = "/bin/sh"

# Event channels
CHANNEL_COMMAND_RESULT = "app::command_result"
CHANNEL_ERROR = "app::error"
CHANNEL_METRICS = "app::metrics"
CHANNEL_EVENT = "app::event"
CHANNEL_LOGS = "dashboard::logs"
CHANNEL_SHELL = "dashboard::shell"

# Named signals
SIGNAL_NO_CLUSTER_FOUND = "no_cluster_found"
SIGNAL_CLUSTER_FOUND = "cluster_found"

# Logging
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_UVICORN_LOG_LEVEL = "info"
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"

# Server defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

# Kubernetes API
METRICS_API_GROUP = "metrics.k8s.io"
METRICS_API_VERSION = "v1beta1"
RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"

# Environment
ENV_KUBECONFIG = "KUBEDECK_KUBECONFIG"
ENV_CONTEXT = "KUBEDECK_CONTEXT"
ENV_HOST = "KUBEDECK_HOST"
ENV_PORT = "KUBEDECK_PORT"
ENV_LOG_LEVEL = "KUBEDECK_LOG_LEVEL"
ENV_UVICORN_LEVEL = "KUBEDECK_UVICORN_LEVEL"
ENV_METRICS_INTERVAL = "KUBEDECK_METRICS_INTERVAL"
ENV_NAMESPACES = "KUBEDECK_NAMESPACES"
