"""
Pod data processing utilities.

Works on pods in their serialized JSON shape (camelCase keys) as returned
by ClusterClient.

Key Functions:
- pod_name: Name of a serialized object
- extract_container_env_vars: Extract and format environment variables
- pod_env_view: Environment variables of every container in a pod
- merge_unique: Union of object lists, de-duplicated by uid

Example:
    ```python
    pod = kube.read(ResourceKind.POD, "web-1", "default")
    for container in pod_env_view(pod):
        print(container['name'], len(container['env']))
    ```
"""

from typing import Any, Dict, Iterable, List


def pod_name(obj: Dict[str, Any]) -> str:
    return (obj.get('metadata') or {}).get('name', '')


def extract_container_env_vars(container_spec: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Extract environment variables from a container spec, describing references instead of resolving them."""
    env_list = []
    for ev in container_spec.get('env') or []:
        val_display = None
        if ev.get('value') is not None:
            val_display = ev['value']
        elif ev.get('valueFrom'):
            src = ev['valueFrom']
            if src.get('secretKeyRef'):
                ref = src['secretKeyRef']
                val_display = f"*** (secret {ref.get('name')}/{ref.get('key')})"
            elif src.get('configMapKeyRef'):
                ref = src['configMapKeyRef']
                val_display = f"configmap:{ref.get('name')}/{ref.get('key')}"
            elif src.get('fieldRef'):
                val_display = f"fieldRef:{src['fieldRef'].get('fieldPath')}"
            elif src.get('resourceFieldRef'):
                val_display = f"resourceField:{src['resourceFieldRef'].get('resource')}"
            else:
                val_display = '(valueFrom)'
        env_list.append({'name': ev.get('name'), 'value': val_display})

    for src in container_spec.get('envFrom') or []:
        if src.get('configMapRef'):
            env_list.append({'name': f"{src.get('prefix', '')}*", 'value': f"configmap:{src['configMapRef'].get('name')}"})
        elif src.get('secretRef'):
            env_list.append({'name': f"{src.get('prefix', '')}*", 'value': f"*** (secret {src['secretRef'].get('name')})"})

    return env_list


def pod_env_view(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Environment variables per container, init containers included."""
    spec = pod.get('spec') or {}
    view = []
    for key in ('initContainers', 'containers'):
        for c in spec.get(key) or []:
            view.append({
                'name': c.get('name'),
                'init': key == 'initContainers',
                'env': extract_container_env_vars(c),
            })
    return view


def merge_unique(groups: Iterable[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Concatenate object lists, keeping the first occurrence of each uid (or name when uid is missing)."""
    seen = set()
    merged = []
    for group in groups:
        for obj in group:
            meta = obj.get('metadata') or {}
            key = meta.get('uid') or (meta.get('namespace'), meta.get('name'))
            if key in seen:
                continue
            seen.add(key)
            merged.append(obj)
    return merged
