"""
Resource kinds Kubedeck can list, read, create, edit and delete.

Each kind maps to the Kubernetes API group class that serves it and to the
suffix the official client uses in its method names, e.g. ``config_map`` in
``CoreV1Api.list_namespaced_config_map``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from .exceptions import UnknownResourceKindError


class ResourceKind(str, Enum):
    NAMESPACE = "namespace"
    DEPLOYMENT = "deployment"
    POD = "pod"
    NODE = "node"
    SERVICE = "service"
    CONFIGMAP = "configmap"
    SECRET = "secret"
    CRONJOB = "cronjob"
    JOB = "job"
    DAEMONSET = "daemonset"
    STATEFULSET = "statefulset"
    REPLICASET = "replicaset"
    PERSISTENTVOLUME = "persistentvolume"
    PERSISTENTVOLUMECLAIM = "persistentvolumeclaim"

    @classmethod
    def parse(cls, raw: str) -> "ResourceKind":
        """Resolve a kind from UI or manifest spelling ("Pod", " configmap ", "svc", "pods")."""
        key = (raw or "").strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            if key.endswith('s'):
                try:
                    return cls(key[:-1])
                except ValueError:
                    pass
            raise UnknownResourceKindError(raw)


_ALIASES = {
    'ns': 'namespace',
    'deploy': 'deployment',
    'po': 'pod',
    'no': 'node',
    'svc': 'service',
    'cm': 'configmap',
    'cj': 'cronjob',
    'ds': 'daemonset',
    'sts': 'statefulset',
    'rs': 'replicaset',
    'pv': 'persistentvolume',
    'pvc': 'persistentvolumeclaim',
}


@dataclass(frozen=True)
class KindSpec:
    """API group ("core", "apps", "batch"), client method suffix and scope of a kind."""
    api: str
    resource: str
    namespaced: bool = True

    @property
    def title(self) -> str:
        """API kind name, e.g. "ConfigMap" for ``config_map``."""
        return ''.join(part.capitalize() for part in self.resource.split('_'))

    def method(self, verb: str) -> str:
        if self.namespaced:
            return f"{verb}_namespaced_{self.resource}"
        return f"{verb}_{self.resource}"


KIND_SPECS: Dict[ResourceKind, KindSpec] = {
    ResourceKind.NAMESPACE: KindSpec("core", "namespace", namespaced=False),
    ResourceKind.NODE: KindSpec("core", "node", namespaced=False),
    ResourceKind.PERSISTENTVOLUME: KindSpec("core", "persistent_volume", namespaced=False),
    ResourceKind.POD: KindSpec("core", "pod"),
    ResourceKind.SERVICE: KindSpec("core", "service"),
    ResourceKind.CONFIGMAP: KindSpec("core", "config_map"),
    ResourceKind.SECRET: KindSpec("core", "secret"),
    ResourceKind.PERSISTENTVOLUMECLAIM: KindSpec("core", "persistent_volume_claim"),
    ResourceKind.DEPLOYMENT: KindSpec("apps", "deployment"),
    ResourceKind.DAEMONSET: KindSpec("apps", "daemon_set"),
    ResourceKind.STATEFULSET: KindSpec("apps", "stateful_set"),
    ResourceKind.REPLICASET: KindSpec("apps", "replica_set"),
    ResourceKind.CRONJOB: KindSpec("batch", "cron_job"),
    ResourceKind.JOB: KindSpec("batch", "job"),
}
