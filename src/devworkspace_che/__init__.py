"""Che single-host gateway routing for DevWorkspaces.

Two controllers cooperate through a shared :class:`ManagerRegistry`: the
:class:`CheManagerReconciler` maintains the traefik gateway of each Che
manager, and the :class:`CheRoutingSolver` publishes the routes of every
workspace using the ``che`` routing class into that gateway.
"""

from .gateway import CheGateway, GatewaySettings  # noqa: F401
from .manager import CheManagerReconciler  # noqa: F401
from .model import CheManager, GatewayPhase, ManagerRecord, RoutingMode  # noqa: F401
from .registry import ManagerRegistry  # noqa: F401
from .solver import CheRouterGetter, CheRoutingSolver  # noqa: F401

__all__ = [
    "CheGateway",
    "CheManager",
    "CheManagerReconciler",
    "CheRouterGetter",
    "CheRoutingSolver",
    "GatewayPhase",
    "GatewaySettings",
    "ManagerRecord",
    "ManagerRegistry",
    "RoutingMode",
]
