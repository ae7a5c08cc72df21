"""Che manager data structures.

:class:`CheManager` is a parsed view of the cluster object, while
:class:`ManagerRecord` is the immutable summary shared between the manager
reconciler and the routing solver through the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from workspace_routing.store import ObjectKey


class RoutingMode(str, Enum):
    SINGLE_HOST = "singlehost"
    MULTI_HOST = "multihost"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RoutingMode":
        """Parse a manager routing mode; an empty value means single host.

        Unknown modes raise :class:`ValueError`.
        """

        if not value:
            return cls.SINGLE_HOST
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"unknown routing mode {value!r}") from None


class GatewayPhase(str, Enum):
    INITIALIZING = "Initializing"
    ESTABLISHED = "Established"
    INACTIVE = "Inactive"

    @classmethod
    def from_status(cls, status: Mapping[str, Any]) -> "GatewayPhase":
        """Phase recorded in a manager status, ``Inactive`` when unset or unknown."""

        try:
            return cls(status.get("gatewayPhase") or cls.INACTIVE.value)
        except ValueError:
            return cls.INACTIVE


@dataclass
class CheManager:
    name: str
    namespace: str
    host: str = ""
    routing: RoutingMode = RoutingMode.SINGLE_HOST
    uid: Optional[str] = None
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[str] = None
    status: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> "CheManager":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            host=str(spec.get("host") or ""),
            routing=RoutingMode.parse(spec.get("routing")),
            uid=metadata.get("uid"),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            status=dict(obj.get("status") or {}),
        )

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def is_single_host(self) -> bool:
        return self.routing is RoutingMode.SINGLE_HOST


@dataclass(frozen=True)
class ManagerRecord:
    """Last reconciled state of a manager, as seen by routing solvers."""

    namespace: str
    name: str
    host: str
    routing_mode: RoutingMode = RoutingMode.SINGLE_HOST
    established: bool = False

    @classmethod
    def from_manager(cls, manager: CheManager, established: bool) -> "ManagerRecord":
        return cls(
            namespace=manager.namespace,
            name=manager.name,
            host=manager.host,
            routing_mode=manager.routing,
            established=established,
        )

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def is_single_host(self) -> bool:
        return self.routing_mode is RoutingMode.SINGLE_HOST
