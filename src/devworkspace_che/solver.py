"""Routing solver exposing workspaces through the Che gateway.

The solver keeps no state between calls.  Every invocation looks up the
owning manager in the :class:`~devworkspace_che.registry.ManagerRegistry`,
which the manager reconciler fills independently; a manager that is not
there yet turns into :class:`~workspace_routing.solvers.RoutingNotReady` so
the routing controller retries later instead of failing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from workspace_routing.controller import WorkspaceRoutingReconciler
from workspace_routing.model import (
    CONFIG_MAP_KIND,
    WORKSPACE_ID_LABEL,
    EndpointExposure,
    EndpointsByComponent,
    ExposedEndpointsByComponent,
    WorkspaceMetadata,
    WorkspaceRouting,
)
from workspace_routing.solvers import (
    RoutingInvalid,
    RoutingNotReady,
    RoutingNotSupported,
    RoutingObjects,
    RoutingSolver,
    RoutingSolverGetter,
)
from workspace_routing.store import (
    ObjectKey,
    ObjectNotFound,
    ObjectStore,
    annotations_of,
    labels_of,
    object_key,
)

from . import defaults
from .endpoints import resolve_exposed_endpoints
from .errors import UnsupportedRoutingMode
from .model import ManagerRecord, RoutingMode
from .registry import ManagerRegistry
from .traefik import GatewayConfigSynthesizer

LOG = logging.getLogger(__name__)

NO_MANAGERS_RETRY = 1.0
MISSING_MANAGER_RETRY = 10.0


def is_supported(routing_class: str) -> bool:
    return routing_class == defaults.ROUTING_CLASS


def find_che_manager(registry: ManagerRegistry, key: ObjectKey) -> ManagerRecord:
    """Resolve the manager a routing refers to.

    An unnamed key is accepted when exactly one manager is known.  An empty
    registry cannot tell "not reconciled yet" from "does not exist", so both
    are reported as not ready.
    """

    managers = registry.list()
    if not managers:
        raise RoutingNotReady(
            retry=NO_MANAGERS_RETRY, message="no Che manager has been reconciled yet"
        )

    if not key.name:
        if len(managers) > 1:
            raise RoutingInvalid(
                "the routing does not specify any Che manager in its configuration "
                f"but there are {len(managers)} Che managers in the cluster"
            )
        return next(iter(managers.values()))

    manager = managers.get(key)
    if manager is not None:
        return manager

    LOG.info("Routing requires a non-existing Che manager %s, retrying in %ss", key, MISSING_MANAGER_RETRY)
    raise RoutingNotReady(
        retry=MISSING_MANAGER_RETRY, message=f"Che manager {key} is not known yet"
    )


def manager_key_of(annotations: Mapping[str, str]) -> ObjectKey:
    return ObjectKey(
        annotations.get(defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAMESPACE, ""),
        annotations.get(defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAME, ""),
    )


def is_gateway_workspace_config(obj: Mapping[str, Any]) -> Tuple[bool, ObjectKey]:
    """Whether ``obj`` is a workspace gateway config map and which routing owns it."""

    workspace_id = labels_of(obj).get(WORKSPACE_ID_LABEL, "")
    name = (obj.get("metadata") or {}).get("name", "")
    if not workspace_id or name != defaults.gateway_workspace_config_map_name(workspace_id):
        return False, ObjectKey("", "")

    annotations = annotations_of(obj)
    routing_name = annotations.get(defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAME, "")
    if not routing_name:
        return False, ObjectKey("", "")

    routing_namespace = annotations.get(defaults.CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAMESPACE, "")
    return True, ObjectKey(routing_namespace, routing_name)


def map_gateway_workspace_config(obj: Mapping[str, Any]) -> List[ObjectKey]:
    applicable, key = is_gateway_workspace_config(obj)
    return [key] if applicable else []


class CheRoutingSolver(RoutingSolver):
    def __init__(
        self,
        store: ObjectStore,
        registry: ManagerRegistry,
        synthesizer: Optional[GatewayConfigSynthesizer] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._synthesizer = synthesizer or GatewayConfigSynthesizer()

    def finalizer_required(self, routing: WorkspaceRouting) -> bool:
        return True

    def _manager_of_routing(self, routing: WorkspaceRouting) -> ManagerRecord:
        return find_che_manager(self._registry, manager_key_of(routing.annotations))

    # ------------------------------------------------------------------
    # Spec objects
    # ------------------------------------------------------------------
    def get_spec_objects(
        self, routing: WorkspaceRouting, workspace_meta: WorkspaceMetadata
    ) -> RoutingObjects:
        manager = self._manager_of_routing(routing)
        if not manager.is_single_host():
            raise UnsupportedRoutingMode(RoutingMode.MULTI_HOST.value)
        return self._singlehost_spec_objects(manager, routing, workspace_meta)

    def _singlehost_spec_objects(
        self,
        manager: ManagerRecord,
        routing: WorkspaceRouting,
        workspace_meta: WorkspaceMetadata,
    ) -> RoutingObjects:
        try:
            manager_config = self._store.get(
                CONFIG_MAP_KIND, manager.namespace, defaults.gateway_config_map_name(manager.name)
            )
        except ObjectNotFound:
            raise RoutingNotReady(
                retry=NO_MANAGERS_RETRY,
                message=f"gateway configuration of Che manager {manager.key} does not exist yet",
            ) from None

        workspace_id = workspace_meta.workspace_id
        try:
            existing = self._store.get(
                CONFIG_MAP_KIND,
                manager.namespace,
                defaults.gateway_workspace_config_map_name(workspace_id),
            )
        except ObjectNotFound:
            existing = None

        content = self._synthesizer.render_workspace(routing)
        workspace_config = self._synthesizer.workspace_config_map(
            manager, routing, content, existing=existing
        )
        merged_manager_config = self._synthesizer.merge_fragment(
            manager_config, workspace_id, content
        )

        return RoutingObjects(
            services=self._services(manager, routing, workspace_meta),
            pod_additions=None,
            config_maps=[workspace_config, merged_manager_config],
        )

    def _services(
        self,
        manager: ManagerRecord,
        routing: WorkspaceRouting,
        workspace_meta: WorkspaceMetadata,
    ) -> List[Dict[str, Any]]:
        services = []
        for component, declared in routing.endpoints.items():
            ports: Dict[int, Dict[str, Any]] = {}
            for endpoint in declared:
                if endpoint.exposure is EndpointExposure.NONE:
                    continue
                ports.setdefault(
                    endpoint.target_port,
                    {
                        "name": f"{component}-{endpoint.target_port}",
                        "port": endpoint.target_port,
                        "targetPort": endpoint.target_port,
                        "protocol": "TCP",
                    },
                )
            if not ports:
                continue
            services.append(
                {
                    "apiVersion": "v1",
                    "kind": "Service",
                    "metadata": {
                        "name": defaults.workspace_service_name(workspace_meta.workspace_id, component),
                        "namespace": workspace_meta.namespace,
                        "labels": {WORKSPACE_ID_LABEL: workspace_meta.workspace_id},
                        "annotations": {
                            defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAME: manager.name,
                            defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAMESPACE: manager.namespace,
                        },
                    },
                    "spec": {
                        "selector": dict(workspace_meta.pod_selector),
                        "ports": list(ports.values()),
                    },
                }
            )
        return services

    # ------------------------------------------------------------------
    # Exposed endpoints
    # ------------------------------------------------------------------
    def get_exposed_endpoints(
        self, endpoints: EndpointsByComponent, routing_objects: RoutingObjects
    ) -> Tuple[ExposedEndpointsByComponent, bool]:
        if not routing_objects.services:
            return {}, True

        service = routing_objects.services[0]
        workspace_id = labels_of(service).get(WORKSPACE_ID_LABEL, "")
        manager = find_che_manager(self._registry, manager_key_of(annotations_of(service)))

        if not manager.is_single_host():
            raise UnsupportedRoutingMode(RoutingMode.MULTI_HOST.value)

        if not manager.established:
            LOG.debug("Gateway of Che manager %s is not established yet", manager.key)
            return {}, False

        return resolve_exposed_endpoints(manager.host, workspace_id, endpoints), True

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    def finalize(self, routing: WorkspaceRouting) -> None:
        manager: Optional[ManagerRecord] = None
        try:
            manager = self._manager_of_routing(routing)
        except (RoutingNotReady, RoutingInvalid) as exc:
            LOG.info("Finalizing %s without a known Che manager: %s", routing.key, exc)

        workspace_id = routing.workspace_id
        workspace_configs: List[Dict[str, Any]] = []
        manager_keys: List[ObjectKey] = []
        for config in self._store.list(
            CONFIG_MAP_KIND,
            namespace=manager.namespace if manager else None,
            labels={WORKSPACE_ID_LABEL: workspace_id},
        ):
            applicable, routing_key = is_gateway_workspace_config(config)
            if not applicable or routing_key != routing.key:
                continue
            workspace_configs.append(config)
            manager_key = manager_key_of(annotations_of(config))
            if manager_key.name and manager_key not in manager_keys:
                manager_keys.append(manager_key)

        if manager is not None and manager.key not in manager_keys:
            manager_keys.append(manager.key)

        # Workspace configs go last: they record which manager configs carry the fragment.
        for manager_key in manager_keys:
            try:
                config = self._store.get(
                    CONFIG_MAP_KIND,
                    manager_key.namespace,
                    defaults.gateway_config_map_name(manager_key.name),
                )
            except ObjectNotFound:
                continue
            self._remove_fragment(config, workspace_id, delete_if_empty=False)

        for config in workspace_configs:
            self._remove_fragment(config, workspace_id, delete_if_empty=True)

    def _remove_fragment(
        self, config: Mapping[str, Any], workspace_id: str, delete_if_empty: bool
    ) -> None:
        pruned, removed = self._synthesizer.remove_fragment(config, workspace_id)
        key = object_key(config)
        if delete_if_empty and not pruned.get("data"):
            try:
                self._store.delete(CONFIG_MAP_KIND, key.namespace, key.name)
            except ObjectNotFound:
                return
            LOG.info("Deleted workspace gateway config %s", key)
            return
        if removed:
            self._store.update(pruned)
            LOG.info("Removed workspace routes from gateway config %s", key)


class CheRouterGetter(RoutingSolverGetter):
    """Negotiates the Che solver with the routing controller."""

    def __init__(
        self,
        registry: ManagerRegistry,
        synthesizer: Optional[GatewayConfigSynthesizer] = None,
    ) -> None:
        self._registry = registry
        self._synthesizer = synthesizer or GatewayConfigSynthesizer()

    def has_solver(self, routing_class: str) -> bool:
        return is_supported(routing_class)

    def get_solver(self, store: ObjectStore, routing_class: str) -> RoutingSolver:
        if not is_supported(routing_class):
            raise RoutingNotSupported(routing_class)
        return CheRoutingSolver(store, self._registry, self._synthesizer)

    def setup_controller_manager(self, controller: WorkspaceRoutingReconciler) -> None:
        # Workspace gateway configs are also touched by the manager's gateway
        # lifecycle, so changes to them re-enqueue the owning routing.
        controller.watches(CONFIG_MAP_KIND, map_gateway_workspace_config)
