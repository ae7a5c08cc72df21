"""Routing solver plugin contract.

A solver turns a :class:`~workspace_routing.model.WorkspaceRouting` into the
cluster objects exposing the workspace endpoints.  Solvers report problems
through the exception taxonomy below; the reconciler maps each class onto a
retry policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .model import (
    EndpointsByComponent,
    ExposedEndpointsByComponent,
    WorkspaceMetadata,
    WorkspaceRouting,
)
from .store import ObjectStore

if TYPE_CHECKING:  # pragma: no cover
    from .controller import WorkspaceRoutingReconciler


class RoutingError(Exception):
    """Base class for solver failures that carry a retry policy."""


class RoutingNotSupported(RoutingError):
    """The routing class is not handled by any solver.  Terminal."""

    def __init__(self, routing_class: str = "") -> None:
        super().__init__(f"routing class {routing_class!r} is not supported")
        self.routing_class = routing_class


class RoutingNotReady(RoutingError):
    """A dependency is not visible yet; retry after ``retry`` seconds."""

    def __init__(self, retry: float = 1.0, message: str = "routing not ready") -> None:
        super().__init__(message)
        self.retry = retry


class RoutingInvalid(RoutingError):
    """The routing request is ambiguous or self-contradictory.  Terminal."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class RoutingObjects:
    """Objects a solver wants persisted for a routing."""

    services: List[Dict[str, Any]] = field(default_factory=list)
    pod_additions: Optional[Dict[str, Any]] = None
    config_maps: List[Dict[str, Any]] = field(default_factory=list)

    def all_objects(self) -> List[Dict[str, Any]]:
        return [*self.services, *self.config_maps]


class RoutingSolver(ABC):
    @abstractmethod
    def finalizer_required(self, routing: WorkspaceRouting) -> bool:
        """Whether :meth:`finalize` must run before the routing goes away."""

    @abstractmethod
    def finalize(self, routing: WorkspaceRouting) -> None:
        """Release everything the solver created for ``routing``."""

    @abstractmethod
    def get_spec_objects(
        self, routing: WorkspaceRouting, workspace_meta: WorkspaceMetadata
    ) -> RoutingObjects:
        """Compute the objects that should exist for ``routing``."""

    @abstractmethod
    def get_exposed_endpoints(
        self, endpoints: EndpointsByComponent, routing_objects: RoutingObjects
    ) -> Tuple[ExposedEndpointsByComponent, bool]:
        """Return the public URLs per component and whether they are ready."""


class RoutingSolverGetter(ABC):
    """Negotiates a solver for a routing class."""

    @abstractmethod
    def has_solver(self, routing_class: str) -> bool:
        """Return ``True`` if this getter can solve ``routing_class``."""

    @abstractmethod
    def get_solver(self, store: ObjectStore, routing_class: str) -> RoutingSolver:
        """Return a solver or raise :class:`RoutingNotSupported`."""

    def setup_controller_manager(self, controller: "WorkspaceRoutingReconciler") -> None:
        """Hook for registering additional watches on the routing controller."""
