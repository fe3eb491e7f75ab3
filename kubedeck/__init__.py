"""
Kubedeck - Background orchestration core for a Kubernetes desktop client.

Kubedeck turns command envelopes coming from a UI layer into calls against the
Kubernetes API and pushes the results back through a uniform event sink. Long
running work (log tails, metrics polling, interactive shells) runs on its own
asyncio task and can be stopped per category at any time.

Key Features:
- Resource listing for the common workload, config and cluster kinds
- Create, edit and delete of raw YAML/JSON resource bodies
- Live log tailing and bounded log fetches
- CPU/memory metrics streaming per pod or per deployment
- Interactive shell relay into a pod
- Category-wide stream cancellation (logs, shell, metrics)
- WebSocket transport for the UI

Example:
    Basic usage:
    ```bash
    kubedeck serve
    ```

    Against a specific context:
    ```bash
    kubedeck serve --context staging --port 8765
    ```
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
