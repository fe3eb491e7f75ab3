"""
Metrics sample construction.

The metrics API reports usage per container. A MetricSample carries the
usage of the pod's first container as the metrics API formats it (e.g.
"1250000n" CPU, "25Mi" memory), stamped with the time it was taken.

Example:
    ```python
    raw = kube.pod_metrics("default", "web-1")
    sample = pod_metrics_to_sample(raw, "web-1")
    ```
"""

import time
from typing import Any, Dict, Optional

from .exceptions import MetricsUnavailableError
from .models import MetricSample


def now_millis() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def pod_metrics_to_sample(raw: Optional[Dict[str, Any]], pod: str, ts: Optional[int] = None) -> MetricSample:
    """
    Convert a metrics.k8s.io PodMetrics object into a MetricSample.

    Raises:
        MetricsUnavailableError: If the pod has no metrics or no container usage
    """
    if not raw:
        raise MetricsUnavailableError(f"No metrics available for pod '{pod}'")
    containers = raw.get('containers') or []
    if not containers:
        raise MetricsUnavailableError(f"No container metrics reported for pod '{pod}'")
    usage = containers[0].get('usage') or {}
    return MetricSample(
        pod=pod,
        cpu=str(usage.get('cpu', '0')),
        memory=str(usage.get('memory', '0')),
        ts=ts if ts is not None else now_millis(),
    )
