import yaml

from devworkspace_che import defaults
from devworkspace_che.traefik import (
    GatewayConfigSynthesizer,
    build_workspace_routes,
    render,
)
from workspace_routing.model import Endpoint, EndpointExposure


def test_routes_are_built_per_component_port():
    routes = build_workspace_routes(
        "ws1",
        "user-ns",
        {
            "web": [Endpoint("a", 3000), Endpoint("b", 3000, path="/x"), Endpoint("c", 4000)],
            "db": [Endpoint("pg", 5432, exposure=EndpointExposure.INTERNAL)],
        },
    )

    http = routes["http"]
    assert sorted(http["routers"]) == ["ws1-web-3000", "ws1-web-4000"]
    assert http["routers"]["ws1-web-4000"] == {
        "rule": "PathPrefix(`/ws1/web/4000`)",
        "service": "ws1-web-4000",
        "middlewares": ["ws1-web-4000"],
        "priority": 100,
    }
    assert http["services"]["ws1-web-3000"]["loadBalancer"]["servers"][0]["url"] == (
        "http://ws1-web.user-ns.svc:3000"
    )
    assert http["middlewares"]["ws1-web-3000"] == {"stripPrefix": {"prefixes": ["/ws1/web/3000"]}}


def test_render_is_stable_yaml():
    config = build_workspace_routes("ws1", "ns", {"web": [Endpoint("a", 3000)]})
    text = render(config)

    assert yaml.safe_load(text) == config
    assert render(config) == text


def test_fragment_merge_and_removal():
    synthesizer = GatewayConfigSynthesizer()
    config_map = {
        "kind": "ConfigMap",
        "metadata": {"name": "che", "namespace": "ns1"},
        "data": {defaults.GATEWAY_STATIC_CONFIG_KEY: "static"},
    }

    merged = synthesizer.merge_fragment(config_map, "ws1", "routes")
    assert merged["data"] == {defaults.GATEWAY_STATIC_CONFIG_KEY: "static", "ws1.yml": "routes"}
    assert "ws1.yml" not in config_map["data"]

    pruned, removed = synthesizer.remove_fragment(merged, "ws1")
    assert removed is True
    assert pruned["data"] == {defaults.GATEWAY_STATIC_CONFIG_KEY: "static"}

    _, removed = synthesizer.remove_fragment(pruned, "ws1")
    assert removed is False

