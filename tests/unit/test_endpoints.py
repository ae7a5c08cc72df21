import pytest

from devworkspace_che.endpoints import (
    determine_endpoint_scheme,
    endpoint_url,
    is_routed,
    resolve_exposed_endpoints,
)
from workspace_routing.model import Endpoint, EndpointExposure


def test_secure_upgrades_plain_schemes():
    assert determine_endpoint_scheme(Endpoint("e", 80)) == "http"
    assert determine_endpoint_scheme(Endpoint("e", 80, secure=True)) == "https"
    assert determine_endpoint_scheme(Endpoint("e", 80, protocol="ws", secure=True)) == "wss"
    assert determine_endpoint_scheme(Endpoint("e", 80, protocol="tcp", secure=True)) == "tcp"


def test_only_public_web_endpoints_are_routed():
    assert is_routed(Endpoint("e", 80, protocol="wss"))
    assert not is_routed(Endpoint("e", 80, protocol="tcp"))
    assert not is_routed(Endpoint("e", 80, exposure=EndpointExposure.INTERNAL))
    assert not is_routed(Endpoint("e", 80, exposure=EndpointExposure.NONE))


def test_url_path_joining():
    def url(path):
        return endpoint_url("host.example", "ws1", "comp", Endpoint("e", 3000, path=path))

    assert url("") == "http://host.example/ws1/comp/3000/"
    assert url("/api") == "http://host.example/ws1/comp/3000/api"
    assert url("index.html") == "http://host.example/ws1/comp/3000/index.html"


def test_every_component_is_present_in_exposed_map():
    exposed = resolve_exposed_endpoints(
        "host.example",
        "ws1",
        {
            "web": [
                Endpoint("ui", 3000, attributes={"type": "main"}),
                Endpoint("debug", 5005, protocol="tcp"),
            ],
            "db": [Endpoint("pg", 5432, exposure=EndpointExposure.INTERNAL)],
        },
    )

    assert list(exposed) == ["web", "db"]
    assert exposed["db"] == []
    assert [e.name for e in exposed["web"]] == ["ui"]
    assert exposed["web"][0].to_dict() == {
        "name": "ui",
        "url": "http://host.example/ws1/web/3000/",
        "attributes": {"type": "main"},
    }


def test_secure_flag_must_be_a_real_boolean():
    data = {"name": "e", "targetPort": 80}

    assert Endpoint.from_dict(data).secure is False
    assert Endpoint.from_dict({**data, "secure": True}).secure is True
    with pytest.raises(ValueError, match="'secure' must be a boolean"):
        Endpoint.from_dict({**data, "secure": "false"})
    with pytest.raises(ValueError):
        Endpoint.from_dict({**data, "secure": 1})
