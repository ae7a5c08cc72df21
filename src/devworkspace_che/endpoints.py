"""Public URL resolution for endpoints served through the single-host gateway."""

from __future__ import annotations

from typing import List

from workspace_routing.model import (
    Endpoint,
    EndpointExposure,
    EndpointsByComponent,
    ExposedEndpoint,
    ExposedEndpointsByComponent,
)

EXPOSABLE_SCHEMES = ("http", "https", "ws", "wss")

_SECURE_VARIANTS = {"http": "https", "ws": "wss"}


def determine_endpoint_scheme(endpoint: Endpoint) -> str:
    scheme = endpoint.protocol.lower() or "http"
    if endpoint.secure:
        scheme = _SECURE_VARIANTS.get(scheme, scheme)
    return scheme


def is_routed(endpoint: Endpoint) -> bool:
    """Only public http(s)/ws(s) endpoints can be served through the gateway."""

    return (
        endpoint.exposure is EndpointExposure.PUBLIC
        and determine_endpoint_scheme(endpoint) in EXPOSABLE_SCHEMES
    )


def public_url_prefix(workspace_id: str, component: str, port: int) -> str:
    return f"/{workspace_id}/{component}/{port}"


def endpoint_url(host: str, workspace_id: str, component: str, endpoint: Endpoint) -> str:
    base = "{}://{}{}".format(
        determine_endpoint_scheme(endpoint),
        host.rstrip("/"),
        public_url_prefix(workspace_id, component, endpoint.target_port),
    )
    path = endpoint.path
    if not path:
        return base + "/"
    if path.startswith("/"):
        return base + path
    return f"{base}/{path}"


def resolve_exposed_endpoints(
    host: str, workspace_id: str, endpoints: EndpointsByComponent
) -> ExposedEndpointsByComponent:
    """Compute the public URL of every routed endpoint, keeping declaration order."""

    exposed: ExposedEndpointsByComponent = {}
    for component, declared in endpoints.items():
        resolved: List[ExposedEndpoint] = [
            ExposedEndpoint(
                name=endpoint.name,
                url=endpoint_url(host, workspace_id, component, endpoint),
                attributes=dict(endpoint.attributes),
            )
            for endpoint in declared
            if is_routed(endpoint)
        ]
        exposed[component] = resolved
    return exposed
