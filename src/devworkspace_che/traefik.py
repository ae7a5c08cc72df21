"""Traefik routing-table synthesis for the single-host gateway.

Every workspace gets a dynamic configuration fragment with one router per
exposed (component, port) pair.  The fragment is stored under
``<workspaceId>.yml`` in two config maps: the per-workspace one (named by the
workspace id) and the per-manager one (named by the manager).  The functions
here are pure: they compute the desired config maps from what was read and
leave persisting them, with optimistic concurrency, to the caller.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from workspace_routing.model import WORKSPACE_ID_LABEL, EndpointsByComponent, WorkspaceRouting

from . import defaults
from .endpoints import is_routed, public_url_prefix
from .model import ManagerRecord

ROUTER_PRIORITY = 100


def router_name(workspace_id: str, component: str, port: int) -> str:
    return f"{workspace_id}-{component}-{port}"


def build_workspace_routes(
    workspace_id: str, workspace_namespace: str, endpoints: EndpointsByComponent
) -> Dict[str, Any]:
    """Return the traefik dynamic configuration for one workspace."""

    routers: Dict[str, Any] = {}
    services: Dict[str, Any] = {}
    middlewares: Dict[str, Any] = {}

    for component, declared in endpoints.items():
        backend = defaults.workspace_service_name(workspace_id, component)
        for endpoint in declared:
            if not is_routed(endpoint):
                continue
            name = router_name(workspace_id, component, endpoint.target_port)
            if name in routers:
                continue
            prefix = public_url_prefix(workspace_id, component, endpoint.target_port)
            routers[name] = {
                "rule": f"PathPrefix(`{prefix}`)",
                "service": name,
                "middlewares": [name],
                "priority": ROUTER_PRIORITY,
            }
            services[name] = {
                "loadBalancer": {
                    "servers": [
                        {
                            "url": "http://{}.{}.svc:{}".format(
                                backend, workspace_namespace, endpoint.target_port
                            )
                        }
                    ]
                }
            }
            middlewares[name] = {"stripPrefix": {"prefixes": [prefix]}}

    return {"http": {"routers": routers, "services": services, "middlewares": middlewares}}


def render(config: Mapping[str, Any]) -> str:
    return yaml.safe_dump(dict(config), default_flow_style=False, sort_keys=True)


class GatewayConfigSynthesizer:
    """Build and merge per-workspace gateway config maps."""

    def render_workspace(self, routing: WorkspaceRouting) -> str:
        return render(
            build_workspace_routes(routing.workspace_id, routing.namespace, routing.endpoints)
        )

    def workspace_config_map(
        self,
        manager: ManagerRecord,
        routing: WorkspaceRouting,
        content: str,
        existing: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Desired per-workspace config map, based on ``existing`` if it was found."""

        workspace_id = routing.workspace_id
        metadata: Dict[str, Any] = {
            "name": defaults.gateway_workspace_config_map_name(workspace_id),
            "namespace": manager.namespace,
        }
        labels: Dict[str, str] = {}
        if existing is not None:
            current = existing.get("metadata") or {}
            labels.update(current.get("labels") or {})
            if current.get("resourceVersion"):
                metadata["resourceVersion"] = current["resourceVersion"]
        defaults.add_standard_labels(manager.name, defaults.GATEWAY_CONFIG_COMPONENT, labels)
        labels[WORKSPACE_ID_LABEL] = workspace_id
        metadata["labels"] = labels
        metadata["annotations"] = {
            defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAME: manager.name,
            defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAMESPACE: manager.namespace,
            defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAME: routing.name,
            defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAMESPACE: routing.namespace,
        }
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": metadata,
            "data": {defaults.workspace_config_key(workspace_id): content},
        }

    def merge_fragment(
        self, config_map: Mapping[str, Any], workspace_id: str, content: str
    ) -> Dict[str, Any]:
        """Return a copy of ``config_map`` carrying the workspace fragment."""

        merged = copy.deepcopy(dict(config_map))
        data = merged.setdefault("data", {}) or {}
        data[defaults.workspace_config_key(workspace_id)] = content
        merged["data"] = data
        return merged

    def remove_fragment(
        self, config_map: Mapping[str, Any], workspace_id: str
    ) -> Tuple[Dict[str, Any], bool]:
        """Return a copy without the workspace fragment and whether it was present."""

        pruned = copy.deepcopy(dict(config_map))
        data = pruned.get("data") or {}
        removed = data.pop(defaults.workspace_config_key(workspace_id), None) is not None
        pruned["data"] = data
        return pruned, removed
