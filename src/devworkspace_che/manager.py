"""Reconciler for ``CheManager`` objects.

Each reconcile is a function of the current cluster state only:

* a manager that no longer exists is dropped from the registry;
* a manager being deleted is finalized, which is refused while workspace
  gateway configs still point at it;
* any other manager gets its gateway objects asserted (single host) or
  removed (multi host), its status updated and its record published to the
  registry for routing solvers.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from workspace_routing.controller import ReconcileResult
from workspace_routing.model import CONFIG_MAP_KIND
from workspace_routing.store import ObjectKey, ObjectNotFound, ObjectStore, annotations_of

from . import defaults
from .errors import ManagerFinalizeError
from .gateway import CheGateway
from .model import CheManager, GatewayPhase, ManagerRecord
from .registry import ManagerRegistry
from .solver import is_gateway_workspace_config, manager_key_of

LOG = logging.getLogger(__name__)


def map_workspace_config_to_manager(obj: Mapping[str, Any]) -> List[ObjectKey]:
    """Wake the owning manager when a workspace gateway config changes or goes away."""

    applicable, _ = is_gateway_workspace_config(obj)
    if not applicable:
        return []
    key = manager_key_of(annotations_of(obj))
    return [key] if key.name else []


class CheManagerReconciler:
    def __init__(
        self,
        store: ObjectStore,
        registry: ManagerRegistry,
        gateway: Optional[CheGateway] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._gateway = gateway or CheGateway(store)

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        try:
            obj = self._store.get(defaults.CHE_MANAGER_KIND, key.namespace, key.name)
        except ObjectNotFound:
            if self._registry.delete(key) is not None:
                LOG.info("Che manager %s no longer exists, forgetting it", key)
            return ReconcileResult()

        try:
            manager = CheManager.from_object(obj)
        except ValueError as exc:
            return self._reject(key, obj, exc)

        if manager.deletion_timestamp:
            return self._finalize(manager, obj)

        if defaults.FINALIZER_NAME not in manager.finalizers:
            obj = copy.deepcopy(obj)
            obj["metadata"].setdefault("finalizers", []).append(defaults.FINALIZER_NAME)
            obj = self._store.update(obj)
            manager = CheManager.from_object(obj)

        if manager.is_single_host():
            in_sync = self._gateway.sync(manager)
            phase = GatewayPhase.ESTABLISHED if in_sync else GatewayPhase.INITIALIZING
        else:
            self._gateway.delete(manager)
            phase = GatewayPhase.INACTIVE

        self._update_status(obj, phase, manager.host)
        self._registry.put(
            key, ManagerRecord.from_manager(manager, established=phase is GatewayPhase.ESTABLISHED)
        )
        LOG.debug("Che manager %s reconciled, gateway %s", key, phase.value)

        if phase is GatewayPhase.INITIALIZING:
            return ReconcileResult(requeue_after=self._gateway.settings.requeue_initializing)
        return ReconcileResult()

    def _reject(self, key: ObjectKey, obj: Dict[str, Any], exc: ValueError) -> ReconcileResult:
        """Handle a manager whose routing mode is unknown.

        The manager is not published and nothing is retried until its spec
        changes. Deleting it is gated like a single-host manager.
        """

        spec = obj.get("spec") or {}
        manager = CheManager.from_object({**obj, "spec": {**spec, "routing": None}})
        if manager.deletion_timestamp:
            return self._finalize(manager, obj)

        LOG.warning("Che manager %s is invalid: %s", key, exc)
        self._registry.delete(key)
        self._update_status(obj, GatewayPhase.INACTIVE, manager.host, message=str(exc))
        return ReconcileResult()

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    def _finalize(self, manager: CheManager, obj: Dict[str, Any]) -> ReconcileResult:
        if defaults.FINALIZER_NAME not in manager.finalizers:
            self._registry.delete(manager.key)
            return ReconcileResult()

        try:
            if manager.is_single_host():
                self._singlehost_finalize(manager)
            else:
                self._multihost_finalize(manager)
        except ManagerFinalizeError as exc:
            LOG.info("Che manager %s cannot be finalized yet: %s", manager.key, exc)
            phase = GatewayPhase.from_status(manager.status)
            self._update_status(obj, phase, manager.host, message=str(exc))
            raise

        self._gateway.delete(manager)
        obj = copy.deepcopy(obj)
        obj["metadata"]["finalizers"] = [
            f for f in obj["metadata"].get("finalizers", []) if f != defaults.FINALIZER_NAME
        ]
        self._store.update(obj)
        self._registry.delete(manager.key)
        LOG.info("Che manager %s finalized", manager.key)
        return ReconcileResult()

    def _singlehost_finalize(self, manager: CheManager) -> None:
        # Workspaces still routed through this manager are detected by their
        # gateway configs in the manager namespace.
        configs = self._store.list(
            CONFIG_MAP_KIND,
            namespace=manager.namespace,
            labels=defaults.labels_for_component(manager.name, defaults.GATEWAY_CONFIG_COMPONENT),
        )
        workspace_count = 0
        for config in configs:
            annotations = annotations_of(config)
            if (
                annotations.get(defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAME) == manager.name
                and annotations.get(defaults.CONFIG_ANNOTATION_CHE_MANAGER_NAMESPACE)
                == manager.namespace
            ):
                workspace_count += 1

        if workspace_count > 0:
            raise ManagerFinalizeError(
                f"there are {workspace_count} workspaces associated with this Che manager"
            )

    def _multihost_finalize(self, manager: CheManager) -> None:
        raise ManagerFinalizeError("multihost mode is not supported at the moment")

    def _update_status(
        self,
        obj: Dict[str, Any],
        phase: GatewayPhase,
        host: str,
        message: str = "",
    ) -> None:
        status: Dict[str, Any] = {"gatewayPhase": phase.value, "gatewayHost": host}
        if message:
            status["message"] = message
        if obj.get("status") == status:
            return
        obj = copy.deepcopy(obj)
        obj["status"] = status
        self._store.update_status(obj)
