"""Workspace routing request primitives consumed by routing solvers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .store import ObjectKey

WORKSPACE_ROUTING_KIND = "WorkspaceRouting"
SERVICE_KIND = "Service"
CONFIG_MAP_KIND = "ConfigMap"

WORKSPACE_ID_LABEL = "controller.devfile.io/workspace_id"


class EndpointExposure(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    NONE = "none"


@dataclass(frozen=True)
class Endpoint:
    """A single endpoint declared by a workspace component.

    Attributes
    ----------
    name:
        Endpoint name, unique within the workspace.
    target_port:
        The container port serving the endpoint.
    exposure:
        Who may reach the endpoint.  Only ``public`` endpoints are routed
        through a gateway.
    protocol:
        Declared protocol (``http``, ``https``, ``ws``, ``wss``, ``tcp`` ...).
        An empty value means ``http``.
    path:
        Optional path appended to the public URL.
    secure:
        Request a TLS-protected URL even for a plain protocol.
    """

    name: str
    target_port: int
    exposure: EndpointExposure = EndpointExposure.PUBLIC
    protocol: str = ""
    path: str = ""
    secure: bool = False
    attributes: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Endpoint":
        secure = data.get("secure", False)
        if not isinstance(secure, bool):
            raise ValueError(f"endpoint {data.get('name')!r}: 'secure' must be a boolean, got {secure!r}")
        return cls(
            name=str(data["name"]),
            target_port=int(data["targetPort"]),
            exposure=EndpointExposure(data.get("exposure") or EndpointExposure.PUBLIC.value),
            protocol=str(data.get("protocol") or ""),
            path=str(data.get("path") or ""),
            secure=secure,
            attributes=dict(data.get("attributes") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "targetPort": self.target_port,
            "exposure": self.exposure.value,
        }
        if self.protocol:
            data["protocol"] = self.protocol
        if self.path:
            data["path"] = self.path
        if self.secure:
            data["secure"] = True
        if self.attributes:
            data["attributes"] = dict(self.attributes)
        return data


@dataclass(frozen=True)
class ExposedEndpoint:
    name: str
    url: str
    attributes: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "url": self.url}
        if self.attributes:
            data["attributes"] = dict(self.attributes)
        return data


EndpointsByComponent = Mapping[str, Sequence[Endpoint]]
ExposedEndpointsByComponent = Dict[str, List[ExposedEndpoint]]


@dataclass(frozen=True)
class WorkspaceMetadata:
    workspace_id: str
    namespace: str
    pod_selector: Mapping[str, str] = field(default_factory=dict)


@dataclass
class WorkspaceRouting:
    """Read-only view of a ``WorkspaceRouting`` object."""

    name: str
    namespace: str
    routing_class: str
    workspace_id: str
    endpoints: Dict[str, List[Endpoint]] = field(default_factory=dict)
    pod_selector: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[str] = None

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> "WorkspaceRouting":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        endpoints = {
            str(component): [Endpoint.from_dict(e) for e in declared or []]
            for component, declared in (spec.get("endpoints") or {}).items()
        }
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            routing_class=str(spec.get("routingClass") or ""),
            workspace_id=str(spec.get("workspaceId") or ""),
            endpoints=endpoints,
            pod_selector=dict(spec.get("podSelector") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
        )

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def workspace_metadata(self) -> WorkspaceMetadata:
        return WorkspaceMetadata(
            workspace_id=self.workspace_id,
            namespace=self.namespace,
            pod_selector=dict(self.pod_selector),
        )
