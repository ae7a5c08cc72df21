"""Reconciler driving routing solvers for ``WorkspaceRouting`` objects.

This is a deliberately small subset of the generic workspace routing
controller: it resolves a solver for the routing class, persists whatever the
solver computes and reports the exposed endpoints on the routing status.  All
retry decisions are expressed through :class:`ReconcileResult` or by letting
an exception escape, so the runtime can schedule the next attempt.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .model import (
    SERVICE_KIND,
    WORKSPACE_ID_LABEL,
    WORKSPACE_ROUTING_KIND,
    ExposedEndpointsByComponent,
    WorkspaceRouting,
)
from .registry import SolverRegistry
from .solvers import RoutingError, RoutingNotReady, RoutingObjects, RoutingSolver
from .store import ObjectKey, ObjectNotFound, ObjectStore, object_key

LOG = logging.getLogger(__name__)

ROUTING_FINALIZER = "workspacerouting.controller.devfile.io"

# Delay before asking the solver again when endpoints are not resolved yet.
ENDPOINTS_NOT_READY_RETRY = 1.0

MapFunc = Callable[[Mapping[str, Any]], List[ObjectKey]]

_PAYLOAD_FIELDS = ("spec", "data")


@dataclass(frozen=True)
class ReconcileResult:
    requeue_after: Optional[float] = None


class RoutingPhase(str, Enum):
    PREPARING = "Preparing"
    READY = "Ready"
    FAILED = "Failed"


def _same_content(current: Mapping[str, Any], desired: Mapping[str, Any]) -> bool:
    cur_meta = current.get("metadata") or {}
    des_meta = desired.get("metadata") or {}
    for field in ("labels", "annotations"):
        if (cur_meta.get(field) or {}) != (des_meta.get(field) or {}):
            return False
    return all(current.get(f) == desired.get(f) for f in _PAYLOAD_FIELDS)


class WorkspaceRoutingReconciler:
    """Level-triggered reconciler for workspace routings."""

    def __init__(self, store: ObjectStore, solvers: SolverRegistry) -> None:
        self._store = store
        self._solvers = solvers
        self._watches: List[Tuple[str, MapFunc]] = []

    # ------------------------------------------------------------------
    # Watch registration
    # ------------------------------------------------------------------
    def watches(self, kind: str, map_func: MapFunc) -> None:
        """Re-enqueue routings returned by ``map_func`` when a ``kind`` object changes."""

        if (kind, map_func) not in self._watches:
            self._watches.append((kind, map_func))

    @property
    def watched_kinds(self) -> List[str]:
        return list(dict.fromkeys(kind for kind, _ in self._watches))

    def map_object(self, kind: str, obj: Mapping[str, Any]) -> List[ObjectKey]:
        keys: List[ObjectKey] = []
        for watched_kind, map_func in self._watches:
            if watched_kind == kind:
                keys.extend(k for k in map_func(obj) if k not in keys)
        return keys

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        try:
            obj = self._store.get(WORKSPACE_ROUTING_KIND, key.namespace, key.name)
        except ObjectNotFound:
            LOG.debug("WorkspaceRouting %s no longer exists", key)
            return ReconcileResult()

        try:
            routing = WorkspaceRouting.from_object(obj)
        except (KeyError, TypeError, ValueError) as exc:
            return self._reject(key, obj, exc)

        if not self._solvers.has_solver(routing.routing_class):
            LOG.debug(
                "Ignoring WorkspaceRouting %s with unsupported class %r",
                key,
                routing.routing_class,
            )
            return ReconcileResult()

        solver = self._solvers.get_solver(self._store, routing.routing_class)

        if routing.deletion_timestamp:
            return self._finalize(solver, routing, obj)

        if solver.finalizer_required(routing) and ROUTING_FINALIZER not in routing.finalizers:
            obj = copy.deepcopy(obj)
            obj["metadata"].setdefault("finalizers", []).append(ROUTING_FINALIZER)
            obj = self._store.update(obj)

        try:
            objects = solver.get_spec_objects(routing, routing.workspace_metadata())
            self._persist(objects)
            self._prune_services(routing, objects)
            exposed, ready = solver.get_exposed_endpoints(routing.endpoints, objects)
        except RoutingNotReady as exc:
            LOG.info("WorkspaceRouting %s not ready, retrying in %ss: %s", key, exc.retry, exc)
            self._update_status(obj, RoutingPhase.PREPARING, message=str(exc))
            return ReconcileResult(requeue_after=exc.retry)
        except RoutingError as exc:
            LOG.warning("WorkspaceRouting %s failed: %s", key, exc)
            self._update_status(obj, RoutingPhase.FAILED, message=str(exc))
            return ReconcileResult()

        if not ready:
            LOG.debug("Exposed endpoints of %s are not resolved yet", key)
            self._update_status(obj, RoutingPhase.PREPARING, message="Waiting for endpoints")
            return ReconcileResult(requeue_after=ENDPOINTS_NOT_READY_RETRY)

        self._update_status(obj, RoutingPhase.READY, exposed=exposed)
        return ReconcileResult()

    def _reject(self, key: ObjectKey, obj: Dict[str, Any], exc: Exception) -> ReconcileResult:
        """Handle a routing whose endpoints cannot be parsed.

        Nothing is retried: the routing stays failed until its spec changes.
        A routing being deleted is still finalized, since that does not need
        its endpoints.
        """

        spec = obj.get("spec") or {}
        routing_class = str(spec.get("routingClass") or "")
        if not self._solvers.has_solver(routing_class):
            return ReconcileResult()

        if (obj.get("metadata") or {}).get("deletionTimestamp"):
            stripped = {**obj, "spec": {k: v for k, v in spec.items() if k != "endpoints"}}
            routing = WorkspaceRouting.from_object(stripped)
            solver = self._solvers.get_solver(self._store, routing_class)
            return self._finalize(solver, routing, obj)

        LOG.warning("WorkspaceRouting %s has invalid endpoints: %s", key, exc)
        self._update_status(obj, RoutingPhase.FAILED, message=f"Invalid endpoints: {exc}")
        return ReconcileResult()

    def _finalize(
        self, solver: RoutingSolver, routing: WorkspaceRouting, obj: Dict[str, Any]
    ) -> ReconcileResult:
        if ROUTING_FINALIZER not in routing.finalizers:
            return ReconcileResult()

        solver.finalize(routing)

        for service in self._store.list(
            SERVICE_KIND,
            namespace=routing.namespace,
            labels={WORKSPACE_ID_LABEL: routing.workspace_id},
        ):
            svc_key = object_key(service)
            try:
                self._store.delete(SERVICE_KIND, svc_key.namespace, svc_key.name)
            except ObjectNotFound:
                pass

        obj = copy.deepcopy(obj)
        obj["metadata"]["finalizers"] = [
            f for f in obj["metadata"].get("finalizers", []) if f != ROUTING_FINALIZER
        ]
        self._store.update(obj)
        LOG.info("Finalized WorkspaceRouting %s", routing.key)
        return ReconcileResult()

    def _persist(self, objects: RoutingObjects) -> None:
        for desired in objects.all_objects():
            kind = desired["kind"]
            key = object_key(desired)
            try:
                current = self._store.get(kind, key.namespace, key.name)
            except ObjectNotFound:
                created = copy.deepcopy(desired)
                created["metadata"].pop("resourceVersion", None)
                self._store.create(created)
                LOG.debug("Created %s %s", kind, key)
                continue

            expected = desired["metadata"].get("resourceVersion")
            if not expected and _same_content(current, desired):
                continue
            if expected == current["metadata"].get("resourceVersion") and _same_content(
                current, desired
            ):
                continue

            updated = copy.deepcopy(current)
            updated["metadata"]["labels"] = dict(desired["metadata"].get("labels") or {})
            updated["metadata"]["annotations"] = dict(
                desired["metadata"].get("annotations") or {}
            )
            for field in _PAYLOAD_FIELDS:
                if field in desired:
                    updated[field] = copy.deepcopy(desired[field])
            if expected:
                updated["metadata"]["resourceVersion"] = expected
            self._store.update(updated)
            LOG.debug("Updated %s %s", kind, key)

    def _prune_services(self, routing: WorkspaceRouting, objects: RoutingObjects) -> None:
        """Delete workspace services the solver no longer asks for."""

        desired = {object_key(service) for service in objects.services}
        for service in self._store.list(
            SERVICE_KIND,
            namespace=routing.namespace,
            labels={WORKSPACE_ID_LABEL: routing.workspace_id},
        ):
            svc_key = object_key(service)
            if svc_key in desired:
                continue
            try:
                self._store.delete(SERVICE_KIND, svc_key.namespace, svc_key.name)
            except ObjectNotFound:
                continue
            LOG.info("Deleted stale Service %s of %s", svc_key, routing.key)

    def _update_status(
        self,
        obj: Dict[str, Any],
        phase: RoutingPhase,
        message: str = "",
        exposed: Optional[ExposedEndpointsByComponent] = None,
    ) -> None:
        status: Dict[str, Any] = {"phase": phase.value}
        if message:
            status["message"] = message
        if exposed is not None:
            status["exposedEndpoints"] = {
                component: [e.to_dict() for e in endpoints]
                for component, endpoints in exposed.items()
            }
        if obj.get("status") == status:
            return
        obj = copy.deepcopy(obj)
        obj["status"] = status
        self._store.update_status(obj)
