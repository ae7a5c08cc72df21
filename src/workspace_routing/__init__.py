"""Minimal workspace routing controller framework.

The upstream devworkspace tooling ships a generic routing controller that
delegates the actual exposure of workspace endpoints to pluggable *solvers*.
This package implements the subset of that framework the Che routing solver
needs: the solver contract and its error taxonomy, the routing request types,
the object store abstraction and the reconciler that drives a solver.
"""

from .controller import ROUTING_FINALIZER, ReconcileResult, WorkspaceRoutingReconciler  # noqa: F401
from .registry import SolverRegistry  # noqa: F401
from .solvers import (  # noqa: F401
    RoutingError,
    RoutingInvalid,
    RoutingNotReady,
    RoutingNotSupported,
    RoutingObjects,
    RoutingSolver,
    RoutingSolverGetter,
)
from .store import InMemoryObjectStore, ObjectKey, ObjectStore  # noqa: F401

__all__ = [
    "InMemoryObjectStore",
    "ObjectKey",
    "ObjectStore",
    "ROUTING_FINALIZER",
    "ReconcileResult",
    "RoutingError",
    "RoutingInvalid",
    "RoutingNotReady",
    "RoutingNotSupported",
    "RoutingObjects",
    "RoutingSolver",
    "RoutingSolverGetter",
    "SolverRegistry",
    "WorkspaceRoutingReconciler",
]
