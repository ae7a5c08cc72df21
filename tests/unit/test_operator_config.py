from pathlib import Path

import pytest

from che_operator.config import load_config
from che_operator.options import load_gateway_settings
from devworkspace_che import GatewaySettings


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "operator.yaml"
    config_path.write_text(
        """
operator:
  workers: 4
  namespace: che
  kubeconfig: /home/me/.kube/config
  retry_delay: 2.5
"""
    )

    cfg = load_config(config_path).operator

    assert cfg.workers == 4
    assert cfg.namespace == "che"
    assert cfg.kubeconfig == Path("/home/me/.kube/config")
    assert cfg.retry_delay == pytest.approx(2.5)


def test_load_config_defaults(tmp_path: Path):
    config_path = tmp_path / "operator.yaml"
    config_path.write_text("operator: {}\n")

    cfg = load_config(config_path).operator

    assert cfg.workers == 2
    assert cfg.namespace is None
    assert cfg.retry_delay == pytest.approx(5.0)
    assert cfg.kubeconfig is None
    assert load_config(None).operator == cfg


@pytest.mark.parametrize(
    "content",
    [
        "- just\n- a list\n",
        "operator: []\n",
        "operator:\n  workers: 0\n",
        "operator:\n  retry_delay: 0\n",
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, content):
    config_path = tmp_path / "operator.yaml"
    config_path.write_text(content)

    with pytest.raises(ValueError):
        load_config(config_path)


def test_gateway_settings_defaults():
    assert load_gateway_settings() == GatewaySettings()


def test_gateway_settings_from_ini(tmp_path: Path):
    ini = tmp_path / "gateway.conf"
    ini.write_text(
        "[gateway]\n"
        "traefik_image = registry.local/traefik:v2\n"
        "service_port = 8000\n"
        "requeue_initializing = 1.5\n"
    )

    settings = load_gateway_settings(ini)

    assert settings.traefik_image == "registry.local/traefik:v2"
    assert settings.configurer_image == GatewaySettings().configurer_image
    assert settings.service_port == 8000
    assert settings.requeue_initializing == pytest.approx(1.5)
