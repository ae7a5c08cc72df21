"""kopf handlers driving the Che manager and workspace routing reconcilers.

The reconcilers stay synchronous and framework-free; this module only turns
cluster events into reconcile calls and reconcile outcomes into kopf retry
decisions.  Shared state lives in an :class:`OperatorContext` handed to every
handler through kopf's ``memo``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

import kopf

from devworkspace_che import (
    CheGateway,
    CheManagerReconciler,
    CheRouterGetter,
    GatewaySettings,
    ManagerRegistry,
)
from devworkspace_che import defaults
from devworkspace_che.errors import ManagerFinalizeError
from devworkspace_che.manager import map_workspace_config_to_manager
from workspace_routing import (
    ObjectKey,
    ObjectStore,
    ReconcileResult,
    RoutingError,
    SolverRegistry,
    WorkspaceRoutingReconciler,
)
from workspace_routing.model import CONFIG_MAP_KIND, WORKSPACE_ROUTING_KIND
from workspace_routing.store import ObjectConflict, ObjectNotFound

LOG = logging.getLogger(__name__)

CHE_MANAGERS = ("che.eclipse.org", "v1alpha1", "chemanagers")
WORKSPACE_ROUTINGS = ("controller.devfile.io", "v1alpha1", "workspaceroutings")

# kopf keeps its own bookkeeping in annotations, because the reconcilers
# replace the whole status.
KOPF_PREFIX = "che.routing.controller.devfile.io"


@dataclass
class OperatorContext:
    store: ObjectStore
    registry: ManagerRegistry
    managers: CheManagerReconciler
    routings: WorkspaceRoutingReconciler
    retry_delay: float = 5.0


def build_context(
    store: ObjectStore,
    settings: Optional[GatewaySettings] = None,
    retry_delay: float = 5.0,
) -> OperatorContext:
    """Wire both reconcilers around one shared manager registry."""

    registry = ManagerRegistry()
    gateway = CheGateway(store, settings or GatewaySettings())
    managers = CheManagerReconciler(store, registry, gateway)

    solvers = SolverRegistry()
    solvers.register(defaults.ROUTING_CLASS, CheRouterGetter(registry))
    routings = WorkspaceRoutingReconciler(store, solvers)
    solvers.setup_controller_manager(routings)

    return OperatorContext(
        store=store,
        registry=registry,
        managers=managers,
        routings=routings,
        retry_delay=retry_delay,
    )


def operator_settings(workers: int) -> kopf.OperatorSettings:
    settings = kopf.OperatorSettings()
    settings.posting.level = logging.WARNING
    settings.execution.max_workers = workers
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=KOPF_PREFIX)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=KOPF_PREFIX, key="last-handled-configuration"
    )
    return settings


def drive(
    reconcile: Callable[[ObjectKey], ReconcileResult], key: ObjectKey, retry_delay: float
) -> None:
    """Run one reconcile and translate its outcome for kopf.

    A requested requeue, a concurrent modification or a refused finalize is a
    :class:`kopf.TemporaryError`; a routing error reaching this far is permanent.
    """

    try:
        result = reconcile(key)
    except (ObjectConflict, ManagerFinalizeError) as exc:
        raise kopf.TemporaryError(str(exc), delay=retry_delay) from exc
    except RoutingError as exc:
        raise kopf.PermanentError(str(exc)) from exc

    if result.requeue_after is not None:
        raise kopf.TemporaryError(f"{key} is not settled yet", delay=result.requeue_after)


def _touch(store: ObjectStore, kind: str, key: ObjectKey) -> None:
    stamp = datetime.now(timezone.utc).isoformat()
    try:
        store.annotate(
            kind, key.namespace, key.name, {defaults.RECONCILE_TRIGGER_ANNOTATION: stamp}
        )
    except ObjectNotFound:
        LOG.debug("%s %s is gone, nothing to trigger", kind, key)
        return
    LOG.debug("Triggered reconcile of %s %s", kind, key)


@kopf.on.resume(*CHE_MANAGERS)
@kopf.on.create(*CHE_MANAGERS)
@kopf.on.update(*CHE_MANAGERS)
def reconcile_che_manager(name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    context: OperatorContext = memo.context
    drive(context.managers.reconcile, ObjectKey(namespace, name), context.retry_delay)


@kopf.on.delete(*CHE_MANAGERS, optional=True)
def finalize_che_manager(name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    context: OperatorContext = memo.context
    drive(context.managers.reconcile, ObjectKey(namespace, name), context.retry_delay)


@kopf.on.resume(*WORKSPACE_ROUTINGS)
@kopf.on.create(*WORKSPACE_ROUTINGS)
@kopf.on.update(*WORKSPACE_ROUTINGS)
def reconcile_workspace_routing(name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    context: OperatorContext = memo.context
    drive(context.routings.reconcile, ObjectKey(namespace, name), context.retry_delay)


@kopf.on.delete(*WORKSPACE_ROUTINGS, optional=True)
def finalize_workspace_routing(name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    context: OperatorContext = memo.context
    drive(context.routings.reconcile, ObjectKey(namespace, name), context.retry_delay)


@kopf.on.event(
    "", "v1", "configmaps", labels={defaults.LABEL_COMPONENT: defaults.GATEWAY_CONFIG_COMPONENT}
)
def on_gateway_config_event(
    event: Mapping[str, Any], body: Mapping[str, Any], memo: kopf.Memo, **_: Any
) -> None:
    """Wake the routing and the manager a workspace gateway config belongs to."""

    # The initial listing is covered by the resume handlers.
    if event.get("type") not in ("ADDED", "MODIFIED", "DELETED"):
        return

    context: OperatorContext = memo.context
    config = dict(body)
    for key in context.routings.map_object(CONFIG_MAP_KIND, config):
        _touch(context.store, WORKSPACE_ROUTING_KIND, key)
    for key in map_workspace_config_to_manager(config):
        _touch(context.store, defaults.CHE_MANAGER_KIND, key)
