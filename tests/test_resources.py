"""
Unit tests for resource dispatch.

Tests cover:
- Fetch plans: one list call per kind, composite kinds emitting several envelopes
- Sibling steps surviving a failed step
- Unknown kinds
- Deployment pod resolution (union of matchLabels)
- Create, edit, delete and restart reporting
- Resource definitions as YAML
"""

import json

import pytest
import yaml
from kubernetes.client import ApiException

from conftest import make_obj
from kubedeck.constants import CHANNEL_COMMAND_RESULT, CHANNEL_ERROR
from kubedeck.exceptions import ResourceBodyError
from kubedeck.kinds import ResourceKind
from kubedeck.resources import FETCH_PLAN, ResourceDispatcher, parse_body, pods_for_deployment


@pytest.fixture
def dispatcher(emitter):
    return ResourceDispatcher(emitter)


def _data(envelope):
    return json.loads(envelope['data'])


# =============================================================================
# Fetch
# =============================================================================


class TestFetch:
    """Tests for ResourceDispatcher.fetch."""

    @pytest.mark.asyncio
    async def test_single_list_call_echoes_command(self, dispatcher, kube, sink):
        """A simple kind lists once and echoes the command name."""
        kube.add(ResourceKind.POD, make_obj("a"), make_obj("b"), make_obj("c"))

        count = await dispatcher.fetch(kube, "default", "pod", "get_resource")

        assert count == 1
        assert kube.count('list') == 1
        results = sink.on(CHANNEL_COMMAND_RESULT)
        assert len(results) == 1
        assert results[0]['command'] == "get_resource"
        data = _data(results[0])
        assert data['kind'] == "PodList"
        assert [p['metadata']['name'] for p in data['items']] == ["a", "b", "c"]
        assert sink.on(CHANNEL_ERROR) == []

    @pytest.mark.asyncio
    async def test_namespace_filter_applies(self, dispatcher, kube, sink):
        """Only objects of the requested namespace are returned."""
        kube.add(ResourceKind.SERVICE, make_obj("web", "default"), make_obj("db", "prod"))

        await dispatcher.fetch(kube, "prod", "service", "get_resource")

        items = _data(sink.on(CHANNEL_COMMAND_RESULT)[0])['items']
        assert [s['metadata']['name'] for s in items] == ["db"]

    @pytest.mark.asyncio
    async def test_node_emits_nodes_then_node_metrics(self, dispatcher, kube, sink):
        """Fetching nodes yields the node list followed by the node metrics list."""
        kube.add(ResourceKind.NODE, make_obj("node-1", None))
        kube.node_metric_items = [{'metadata': {'name': 'node-1'}, 'usage': {'cpu': '100m', 'memory': '1Gi'}}]

        count = await dispatcher.fetch(kube, None, ResourceKind.NODE, "get_resource")

        assert count == 2
        kinds = [_data(e)['kind'] for e in sink.on(CHANNEL_COMMAND_RESULT)]
        assert kinds == ["NodeList", "NodeMetricsList"]
        assert kube.count('list') == 1
        assert kube.count('node_metrics') == 1

    @pytest.mark.asyncio
    async def test_configmap_emits_configmaps_then_secrets(self, dispatcher, kube, sink):
        """Fetching configmaps also lists secrets, in a second envelope."""
        kube.add(ResourceKind.CONFIGMAP, make_obj("settings"))
        kube.add(ResourceKind.SECRET, make_obj("token"))

        await dispatcher.fetch(kube, "default", "configmap", "get_resource")

        results = sink.on(CHANNEL_COMMAND_RESULT)
        assert [_data(e)['kind'] for e in results] == ["ConfigMapList", "SecretList"]
        assert all(e['command'] == "get_resource" for e in results)

    @pytest.mark.asyncio
    async def test_failed_step_does_not_stop_sibling(self, dispatcher, kube, sink):
        """A failure listing configmaps still lets the secret list through."""
        kube.add(ResourceKind.SECRET, make_obj("token"))
        kube.failures['list:configmap'] = ApiException(status=403, reason="Forbidden")

        count = await dispatcher.fetch(kube, "default", "configmap", "get_resource")

        assert count == 1
        errors = sink.on(CHANNEL_ERROR)
        assert len(errors) == 1
        assert errors[0]['command'] == "get_resource"
        assert "403" in errors[0]['data']
        assert _data(sink.on(CHANNEL_COMMAND_RESULT)[0])['kind'] == "SecretList"

    @pytest.mark.asyncio
    async def test_unknown_kind_reports_error(self, dispatcher, kube, sink):
        """An unknown kind emits one error and makes no API call."""
        count = await dispatcher.fetch(kube, "default", "gizmo", "get_resource")

        assert count == 0
        assert kube.calls == []
        errors = sink.on(CHANNEL_ERROR)
        assert len(errors) == 1
        assert "gizmo" in errors[0]['data']

    def test_every_kind_has_a_plan(self):
        """Every resource kind resolves to at least one list step."""
        for kind in ResourceKind:
            assert FETCH_PLAN[kind]

    @pytest.mark.asyncio
    async def test_fetch_with_metrics_attaches_usage(self, dispatcher, kube, sink):
        """Pods carry their per-container usage; pods without metrics get None."""
        kube.add(ResourceKind.POD, make_obj("a"), make_obj("b"))
        kube.metrics['a'] = {'metadata': {'name': 'a', 'namespace': 'default'}, 'containers': [{'name': 'main', 'usage': {'cpu': '5m'}}]}

        await dispatcher.fetch_with_metrics(kube, "default", "pod", "get_resource_with_metrics")

        items = _data(sink.on(CHANNEL_COMMAND_RESULT)[0])['items']
        assert items[0]['usage'] == {'main': {'cpu': '5m'}}
        assert items[1]['usage'] is None

    @pytest.mark.asyncio
    async def test_fetch_with_metrics_matches_namespace(self, dispatcher, kube, sink):
        """Same-named pods in different namespaces each get their own usage."""
        kube.add(ResourceKind.POD, make_obj("redis-0", namespace="a"), make_obj("redis-0", namespace="b"))
        kube.metrics['a/redis-0'] = {'metadata': {'name': 'redis-0', 'namespace': 'a'},
                                     'containers': [{'name': 'redis', 'usage': {'cpu': '1m', 'memory': '1Mi'}}]}
        kube.metrics['b/redis-0'] = {'metadata': {'name': 'redis-0', 'namespace': 'b'},
                                     'containers': [{'name': 'redis', 'usage': {'cpu': '999m', 'memory': '999Mi'}}]}

        await dispatcher.fetch_with_metrics(kube, None, "pod", "get_resource_with_metrics")

        items = _data(sink.on(CHANNEL_COMMAND_RESULT)[0])['items']
        usage = {i['metadata']['namespace']: i['usage'] for i in items}
        assert usage == {
            'a': {'redis': {'cpu': '1m', 'memory': '1Mi'}},
            'b': {'redis': {'cpu': '999m', 'memory': '999Mi'}},
        }

    @pytest.mark.asyncio
    async def test_fetch_with_metrics_nodes(self, dispatcher, kube, sink):
        kube.add(ResourceKind.NODE, make_obj("node-1", namespace=None))
        kube.node_metric_items = [{'metadata': {'name': 'node-1'}, 'usage': {'cpu': '100m', 'memory': '1Gi'}}]

        await dispatcher.fetch_with_metrics(kube, None, "node", "get_resource_with_metrics")

        items = _data(sink.on(CHANNEL_COMMAND_RESULT)[0])['items']
        assert items[0]['usage'] == {'cpu': '100m', 'memory': '1Gi'}


class TestNamespaces:
    """Tests for get_all_namespaces."""

    @pytest.mark.asyncio
    async def test_lists_namespaces_from_api(self, dispatcher, kube, sink):
        kube.add(ResourceKind.NAMESPACE, make_obj("default", None), make_obj("prod", None))

        await dispatcher.get_all_namespaces(kube, "get_all_ns")

        data = json.loads(sink.on(CHANNEL_COMMAND_RESULT)[0]['data'])
        assert [n['name'] for n in data] == ["default", "prod"]

    @pytest.mark.asyncio
    async def test_configured_namespaces_skip_api(self, emitter, kube, sink):
        dispatcher = ResourceDispatcher(emitter, namespaces=["team-a"])

        await dispatcher.get_all_namespaces(kube, "get_all_ns")

        assert kube.calls == []
        data = json.loads(sink.on(CHANNEL_COMMAND_RESULT)[0]['data'])
        assert data == [{'name': 'team-a', 'creation_ts': None}]


# =============================================================================
# Deployment pods
# =============================================================================


class TestPodsForDeployment:
    """Tests for pods_for_deployment."""

    def test_union_of_match_labels(self, kube):
        """A pod carrying any one of the selector's labels is included, once."""
        kube.add(ResourceKind.DEPLOYMENT, make_obj(
            "web", spec={'selector': {'matchLabels': {'app': 'foo', 'tier': 'web'}}}))
        kube.add(
            ResourceKind.POD,
            make_obj("both", labels={'app': 'foo', 'tier': 'web'}),
            make_obj("app-only", labels={'app': 'foo'}),
            make_obj("tier-only", labels={'tier': 'web'}),
            make_obj("other", labels={'app': 'bar'}),
        )

        pods = pods_for_deployment(kube, "default", "web")

        names = sorted(p['metadata']['name'] for p in pods)
        assert names == ["app-only", "both", "tier-only"]
        assert kube.count('list_pods') == 2

    def test_missing_deployment_raises(self, kube):
        with pytest.raises(ApiException):
            pods_for_deployment(kube, "default", "ghost")


# =============================================================================
# Mutations
# =============================================================================


VALID_CONFIGMAP = """
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
data:
  key: value
"""


class TestParseBody:
    """Tests for parse_body."""

    def test_accepts_yaml_and_json(self):
        assert parse_body(VALID_CONFIGMAP)['kind'] == "ConfigMap"
        assert parse_body('{"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "p"}}')['kind'] == "Pod"

    @pytest.mark.parametrize("text", ["", "   ", "<invalid>", "- a\n- b", "kind: Pod\nmetadata: {name: p}",
                                      "apiVersion: v1\nkind: Pod\nmetadata: {}"])
    def test_rejects_malformed_bodies(self, text):
        with pytest.raises(ResourceBodyError):
            parse_body(text)


class TestMutations:
    """Tests for create, delete, edit and restart."""

    @pytest.mark.asyncio
    async def test_create_success(self, dispatcher, kube, sink):
        result = await dispatcher.create_resource(kube, VALID_CONFIGMAP, "configmap", "default", "apply_resource")

        assert result.ok
        assert kube.count('create') == 1
        results = sink.on(CHANNEL_COMMAND_RESULT)
        assert len(results) == 1
        assert "ConfigMap/settings" in results[0]['data']
        assert sink.on(CHANNEL_ERROR) == []

    @pytest.mark.asyncio
    async def test_create_invalid_body_reports_one_error(self, dispatcher, kube, sink):
        result = await dispatcher.create_resource(kube, "<invalid>", None, None, "apply_resource")

        assert not result.ok
        assert kube.count('create') == 0
        assert len(sink.on(CHANNEL_ERROR)) == 1
        assert sink.on(CHANNEL_COMMAND_RESULT) == []

    @pytest.mark.asyncio
    async def test_create_kind_mismatch(self, dispatcher, kube, sink):
        result = await dispatcher.create_resource(kube, VALID_CONFIGMAP, "deployment", "default", "apply_resource")

        assert not result.ok
        assert kube.count('create') == 0
        assert "expected deployment" in sink.on(CHANNEL_ERROR)[0]['data']

    @pytest.mark.asyncio
    async def test_create_api_conflict(self, dispatcher, kube, sink):
        kube.failures['create'] = ApiException(status=409, reason="Conflict")

        await dispatcher.create_resource(kube, VALID_CONFIGMAP, "", "default", "apply_resource")

        assert "409 Conflict" in sink.on(CHANNEL_ERROR)[0]['data']

    @pytest.mark.asyncio
    async def test_delete(self, dispatcher, kube, sink):
        kube.add(ResourceKind.POD, make_obj("web-1"))

        result = await dispatcher.delete_resource(kube, "default", "web-1", "pod", "delete_resource")

        assert result.ok
        assert kube.objects[ResourceKind.POD] == []
        assert sink.on(CHANNEL_COMMAND_RESULT)[0]['data'] == "Deleted pod/web-1"

    @pytest.mark.asyncio
    async def test_delete_missing_object(self, dispatcher, kube, sink):
        result = await dispatcher.delete_resource(kube, "default", "ghost", "pod", "delete_resource")

        assert not result.ok
        assert "404" in sink.on(CHANNEL_ERROR)[0]['data']

    @pytest.mark.asyncio
    async def test_edit_reports_success(self, dispatcher, kube, sink):
        kube.add(ResourceKind.CONFIGMAP, make_obj("settings", data={'key': 'old'}))

        result = await dispatcher.apply_edit(kube, "default", VALID_CONFIGMAP, "settings", "configmap")

        assert result.ok
        assert result.message == "Success"
        assert kube.objects[ResourceKind.CONFIGMAP][0]['data'] == {'key': 'value'}

    @pytest.mark.asyncio
    async def test_restart_deployment(self, dispatcher, kube, sink):
        kube.add(ResourceKind.DEPLOYMENT, make_obj("web"))

        await dispatcher.restart_deployment(kube, "default", "web", "restart_deployments")

        assert kube.count('restart_deployment') == 1
        assert sink.on(CHANNEL_COMMAND_RESULT)[0] == {'command': "restart_deployments", 'data': "success"}

    @pytest.mark.asyncio
    async def test_restart_missing_deployment(self, dispatcher, kube, sink):
        await dispatcher.restart_deployment(kube, "default", "ghost", "restart_deployments")

        assert sink.on(CHANNEL_COMMAND_RESULT) == []
        assert sink.on(CHANNEL_ERROR)[0]['command'] == "restart_deployments"


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    """Tests for definitions, deployments and environment views."""

    @pytest.mark.asyncio
    async def test_definition_is_yaml_without_managed_fields(self, dispatcher, kube):
        obj = make_obj("web", kind="Deployment", apiVersion="apps/v1")
        obj['metadata']['managedFields'] = [{'manager': 'kubectl'}]
        kube.add(ResourceKind.DEPLOYMENT, obj)

        text = await dispatcher.get_resource_definition(kube, "default", "web", "deployment")

        parsed = yaml.safe_load(text)
        assert parsed['kind'] == "Deployment"
        assert 'managedFields' not in parsed['metadata']

    @pytest.mark.asyncio
    async def test_environment_variables(self, dispatcher, kube, sink):
        kube.add(ResourceKind.POD, make_obj("web-1", spec={'containers': [{
            'name': 'app',
            'env': [
                {'name': 'MODE', 'value': 'prod'},
                {'name': 'TOKEN', 'valueFrom': {'secretKeyRef': {'name': 'creds', 'key': 'token'}}},
            ],
        }]}))

        await dispatcher.get_environment_variables(kube, "default", "web-1", "get_environment_variables_for_pod")

        view = json.loads(sink.on(CHANNEL_COMMAND_RESULT)[0]['data'])
        env = view[0]['env']
        assert view[0]['name'] == "app"
        assert env[0] == {'name': 'MODE', 'value': 'prod'}
        assert env[1]['value'].startswith("***")
