import pytest
import yaml

from devworkspace_che import defaults
from devworkspace_che.model import ManagerRecord, RoutingMode
from devworkspace_che.registry import ManagerRegistry
from devworkspace_che.solver import (
    CheRouterGetter,
    find_che_manager,
    is_gateway_workspace_config,
    map_gateway_workspace_config,
)
from workspace_routing import (
    ObjectKey,
    ReconcileResult,
    RoutingInvalid,
    RoutingNotReady,
    RoutingNotSupported,
)
from workspace_routing.model import WORKSPACE_ID_LABEL
from workspace_routing.store import InMemoryObjectStore, ObjectConflict, object_key

from factories import Cluster


def _routing(cluster, key=ObjectKey("ws", "routing")):
    return cluster.store.get("WorkspaceRouting", key.namespace, key.name)


def test_creates_services_and_gateway_configs(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()

    assert cluster.routings.reconcile(routing_key) == ReconcileResult()

    services = cluster.store.list("Service", namespace="ws")
    assert [s["metadata"]["name"] for s in services] == ["wsid-m1", "wsid-m2"]
    m1 = services[0]
    assert m1["metadata"]["labels"] == {WORKSPACE_ID_LABEL: "wsid"}
    assert m1["metadata"]["annotations"] == {
        defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAME: "che",
        defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAMESPACE: "ns1",
    }
    assert m1["spec"]["selector"] == {WORKSPACE_ID_LABEL: "wsid"}
    assert [p["port"] for p in m1["spec"]["ports"]] == [9999]
    # the endpoint without exposure does not get a port
    assert [p["port"] for p in services[1]["spec"]["ports"]] == [8080]

    configs = cluster.store.list("ConfigMap", namespace="ns1")
    assert sorted(c["metadata"]["name"] for c in configs) == ["che", "wsid"]

    workspace_config = cluster.store.get("ConfigMap", "ns1", "wsid")
    labels = workspace_config["metadata"]["labels"]
    assert labels[defaults.LABEL_COMPONENT] == "gateway-config"
    assert labels[defaults.LABEL_NAME] == "che"
    assert labels[WORKSPACE_ID_LABEL] == "wsid"
    annotations = workspace_config["metadata"]["annotations"]
    assert annotations[defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAME] == "routing"
    assert annotations[defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAMESPACE] == "ws"

    routes = yaml.safe_load(workspace_config["data"]["wsid.yml"])
    assert list(routes["http"]["routers"]) == ["wsid-m1-9999"]
    router = routes["http"]["routers"]["wsid-m1-9999"]
    assert router["rule"] == "PathPrefix(`/wsid/m1/9999`)"
    assert router["priority"] == 100
    assert routes["http"]["services"]["wsid-m1-9999"]["loadBalancer"]["servers"] == [
        {"url": "http://wsid-m1.ws.svc:9999"}
    ]
    assert routes["http"]["middlewares"]["wsid-m1-9999"] == {
        "stripPrefix": {"prefixes": ["/wsid/m1/9999"]}
    }

    manager_config = cluster.store.get("ConfigMap", "ns1", "che")
    assert manager_config["data"]["wsid.yml"] == workspace_config["data"]["wsid.yml"]
    assert defaults.GATEWAY_STATIC_CONFIG_KEY in manager_config["data"]


def test_exposed_endpoints_are_reported(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()

    cluster.routings.reconcile(routing_key)

    status = _routing(cluster)["status"]
    assert status["phase"] == "Ready"
    assert status["exposedEndpoints"] == {
        "m1": [
            {"name": "e1", "url": "https://over.the.rainbow/wsid/m1/9999/1/"},
            {"name": "e2", "url": "https://over.the.rainbow/wsid/m1/9999/2.js"},
            {"name": "e3", "url": "http://over.the.rainbow/wsid/m1/9999/"},
        ],
        "m2": [],
    }


def test_second_reconcile_changes_nothing(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)
    before = {
        (c["kind"], c["metadata"]["name"]): c["metadata"]["resourceVersion"]
        for c in cluster.store.list("ConfigMap") + cluster.store.list("Service")
    }

    cluster.routings.reconcile(routing_key)

    after = {
        (c["kind"], c["metadata"]["name"]): c["metadata"]["resourceVersion"]
        for c in cluster.store.list("ConfigMap") + cluster.store.list("Service")
    }
    assert after == before


def test_gateway_keeps_merged_workspace_fragments(cluster):
    manager_key = cluster.establish()
    cluster.routings.reconcile(cluster.add_routing())

    cluster.managers.reconcile(manager_key)

    assert "wsid.yml" in cluster.store.get("ConfigMap", "ns1", "che")["data"]
    assert cluster.registry.get(manager_key).established is True


def test_no_manager_is_not_ready(cluster):
    routing_key = cluster.add_routing()

    assert cluster.routings.reconcile(routing_key) == ReconcileResult(requeue_after=1.0)
    assert _routing(cluster)["status"]["phase"] == "Preparing"
    assert cluster.store.list("Service") == []
    assert cluster.store.list("ConfigMap") == []


def test_unknown_named_manager_retries_later(cluster):
    cluster.establish()
    routing_key = cluster.add_routing(manager=ObjectKey("ns1", "nope"))

    assert cluster.routings.reconcile(routing_key) == ReconcileResult(requeue_after=10.0)
    assert _routing(cluster)["status"]["phase"] == "Preparing"


def test_unestablished_gateway_is_not_ready(cluster):
    manager_key = cluster.add_manager()
    cluster.managers.reconcile(manager_key)
    routing_key = cluster.add_routing()

    assert cluster.routings.reconcile(routing_key) == ReconcileResult(requeue_after=1.0)
    status = _routing(cluster)["status"]
    assert status["phase"] == "Preparing"
    assert "exposedEndpoints" not in status

    cluster.managers.reconcile(manager_key)
    cluster.routings.reconcile(routing_key)
    assert _routing(cluster)["status"]["phase"] == "Ready"


def test_ambiguous_manager_fails(cluster):
    cluster.establish()
    cluster.establish(name="che2")
    routing_key = cluster.add_routing()

    assert cluster.routings.reconcile(routing_key) == ReconcileResult()
    status = _routing(cluster)["status"]
    assert status["phase"] == "Failed"
    assert "2 Che managers" in status["message"]


def test_named_manager_is_picked_among_many(cluster):
    cluster.establish()
    cluster.establish(name="che2", host="second.host")
    routing_key = cluster.add_routing(manager=ObjectKey("ns1", "che2"))

    cluster.routings.reconcile(routing_key)

    status = _routing(cluster)["status"]
    assert status["exposedEndpoints"]["m1"][2]["url"] == "http://second.host/wsid/m1/9999/"
    assert "wsid.yml" in cluster.store.get("ConfigMap", "ns1", "che2")["data"]
    assert "wsid.yml" not in cluster.store.get("ConfigMap", "ns1", "che")["data"]


def test_multihost_manager_fails_routing(cluster):
    manager_key = cluster.add_manager(routing="multihost")
    cluster.managers.reconcile(manager_key)
    routing_key = cluster.add_routing()

    cluster.routings.reconcile(routing_key)

    status = _routing(cluster)["status"]
    assert status["phase"] == "Failed"
    assert status["message"] == "multihost mode is not supported at the moment"


def test_finalize_removes_workspace_routes(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)
    assert cluster.store.get("WorkspaceRouting", "ws", "routing")["metadata"]["finalizers"]

    cluster.store.delete("WorkspaceRouting", "ws", "routing")
    cluster.routings.reconcile(routing_key)

    configs = cluster.store.list("ConfigMap", namespace="ns1")
    assert [c["metadata"]["name"] for c in configs] == ["che"]
    assert "wsid.yml" not in configs[0]["data"]
    assert cluster.store.list("Service", namespace="ws") == []
    assert cluster.store.list("WorkspaceRouting") == []


def test_finalize_without_known_manager_still_cleans_up(cluster):
    manager_key = cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)
    cluster.registry.delete(manager_key)

    cluster.store.delete("WorkspaceRouting", "ws", "routing")
    cluster.routings.reconcile(routing_key)

    assert [c["metadata"]["name"] for c in cluster.store.list("ConfigMap")] == ["che"]
    assert "wsid.yml" not in cluster.store.get("ConfigMap", "ns1", "che")["data"]


def test_find_che_manager():
    registry = ManagerRegistry()
    with pytest.raises(RoutingNotReady) as exc:
        find_che_manager(registry, ObjectKey("", ""))
    assert exc.value.retry == 1.0

    only = ManagerRecord("ns1", "che", "host", RoutingMode.SINGLE_HOST, True)
    registry.put(only.key, only)
    assert find_che_manager(registry, ObjectKey("", "")) == only
    assert find_che_manager(registry, ObjectKey("ns1", "che")) == only

    with pytest.raises(RoutingNotReady) as exc:
        find_che_manager(registry, ObjectKey("ns1", "other"))
    assert exc.value.retry == 10.0

    other = ManagerRecord("ns2", "che", "host2")
    registry.put(other.key, other)
    with pytest.raises(RoutingInvalid):
        find_che_manager(registry, ObjectKey("", ""))


def test_gateway_workspace_config_detection():
    config = {
        "kind": "ConfigMap",
        "metadata": {
            "name": "wsid",
            "namespace": "ns1",
            "labels": {WORKSPACE_ID_LABEL: "wsid"},
            "annotations": {
                defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAME: "routing",
                defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAMESPACE: "ws",
            },
        },
    }
    assert is_gateway_workspace_config(config) == (True, ObjectKey("ws", "routing"))
    assert map_gateway_workspace_config(config) == [ObjectKey("ws", "routing")]

    renamed = {**config, "metadata": {**config["metadata"], "name": "other"}}
    assert is_gateway_workspace_config(renamed)[0] is False

    unannotated = {**config, "metadata": {**config["metadata"], "annotations": {}}}
    assert map_gateway_workspace_config(unannotated) == []


def test_getter_negotiates_che_class_only():
    getter = CheRouterGetter(ManagerRegistry())
    store = InMemoryObjectStore()

    assert getter.has_solver("che")
    assert not getter.has_solver("basic")
    with pytest.raises(RoutingNotSupported) as exc:
        getter.get_solver(store, "basic")
    assert "basic" in str(exc.value)


def test_config_map_changes_map_back_to_routing(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)

    workspace_config = cluster.store.get("ConfigMap", "ns1", "wsid")

    assert "ConfigMap" in cluster.routings.watched_kinds
    assert cluster.routings.map_object("ConfigMap", workspace_config) == [routing_key]


class ConflictOnUpdate(InMemoryObjectStore):
    """Rejects the next update of one object as a concurrent modification."""

    def __init__(self, kind, key):
        super().__init__()
        self.target = (kind, key)
        self.armed = False

    def update(self, obj):
        if self.armed and (obj["kind"], object_key(obj)) == self.target:
            self.armed = False
            raise ObjectConflict(*self.target)
        return super().update(obj)


def test_finalize_retry_after_conflict_still_cleans_manager_config():
    store = ConflictOnUpdate("ConfigMap", ObjectKey("ns1", "che"))
    cluster = Cluster(store=store)
    manager_key = cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)
    # Without a resolvable manager, only the workspace config points at "che".
    cluster.registry.delete(manager_key)
    cluster.establish(name="che2")
    cluster.establish(name="che3")

    cluster.store.delete("WorkspaceRouting", "ws", "routing")
    store.armed = True
    with pytest.raises(ObjectConflict):
        cluster.routings.reconcile(routing_key)

    assert "wsid.yml" in cluster.store.get("ConfigMap", "ns1", "che")["data"]
    assert cluster.store.get("ConfigMap", "ns1", "wsid")

    cluster.routings.reconcile(routing_key)

    assert "wsid.yml" not in cluster.store.get("ConfigMap", "ns1", "che")["data"]
    assert sorted(c["metadata"]["name"] for c in cluster.store.list("ConfigMap", namespace="ns1")) == [
        "che",
        "che2",
        "che3",
    ]
    assert cluster.store.list("WorkspaceRouting") == []


def test_dropped_component_service_is_removed(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)

    routing = _routing(cluster)
    del routing["spec"]["endpoints"]["m2"]
    cluster.store.update(routing)
    cluster.routings.reconcile(routing_key)

    services = cluster.store.list("Service", namespace="ws")
    assert [s["metadata"]["name"] for s in services] == ["wsid-m1"]
    assert _routing(cluster)["status"]["phase"] == "Ready"


def test_non_boolean_secure_flag_fails_routing(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()
    routing = _routing(cluster)
    routing["spec"]["endpoints"]["m1"][2]["secure"] = "false"
    cluster.store.update(routing)

    assert cluster.routings.reconcile(routing_key) == ReconcileResult()

    status = _routing(cluster)["status"]
    assert status["phase"] == "Failed"
    assert "'secure' must be a boolean" in status["message"]
    assert cluster.store.list("Service") == []


def test_routing_with_invalid_endpoints_is_still_finalized(cluster):
    cluster.establish()
    routing_key = cluster.add_routing()
    cluster.routings.reconcile(routing_key)
    routing = _routing(cluster)
    routing["spec"]["endpoints"]["m1"][0]["secure"] = "yes"
    cluster.store.update(routing)

    cluster.store.delete("WorkspaceRouting", "ws", "routing")
    cluster.routings.reconcile(routing_key)

    assert cluster.store.list("WorkspaceRouting") == []
    assert cluster.store.list("Service", namespace="ws") == []
    assert "wsid.yml" not in cluster.store.get("ConfigMap", "ns1", "che")["data"]
