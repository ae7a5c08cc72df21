"""Registry of routing solver getters keyed by name."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional

from .solvers import RoutingNotSupported, RoutingSolver, RoutingSolverGetter
from .store import ObjectStore

if TYPE_CHECKING:  # pragma: no cover
    from .controller import WorkspaceRoutingReconciler

LOG = logging.getLogger(__name__)


class SolverRegistry:
    """Dispatch routing classes to the registered solver getters."""

    def __init__(self) -> None:
        self._getters: Dict[str, RoutingSolverGetter] = {}

    def register(self, name: str, getter: RoutingSolverGetter) -> None:
        if name in self._getters:
            raise ValueError(f"solver '{name}' already registered")
        self._getters[name] = getter
        LOG.debug("Registered routing solver getter '%s'", name)

    def _getter_for(self, routing_class: str) -> Optional[RoutingSolverGetter]:
        return next(
            (g for g in self._getters.values() if g.has_solver(routing_class)), None
        )

    def has_solver(self, routing_class: str) -> bool:
        return self._getter_for(routing_class) is not None

    def get_solver(self, store: ObjectStore, routing_class: str) -> RoutingSolver:
        getter = self._getter_for(routing_class)
        if getter is None:
            raise RoutingNotSupported(routing_class)
        return getter.get_solver(store, routing_class)

    def setup_controller_manager(self, controller: "WorkspaceRoutingReconciler") -> None:
        for getter in self._getters.values():
            getter.setup_controller_manager(controller)
