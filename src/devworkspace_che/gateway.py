"""Objects making up the single-host gateway of a Che manager.

The gateway is a traefik deployment reading its static configuration from the
manager config map and its dynamic routing tables from every config map
labelled as gateway config, gathered by a sidecar.  :class:`CheGateway`
asserts the desired state of all those objects and reports whether anything
had to change, which the manager reconciler uses as the readiness signal.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import yaml

from workspace_routing.store import ObjectNotFound, ObjectStore

from . import defaults
from .model import CheManager

LOG = logging.getLogger(__name__)

GATEWAY_CONTAINER_PORT = 8080
GATEWAY_PING_PORT = 8090
DYNAMIC_CONFIG_DIR = "/dynamic-config"
STATIC_CONFIG_DIR = "/etc/traefik"

# Deletion order: dependents before what they reference.
_GATEWAY_KINDS = ("Service", "Deployment", "ConfigMap", "RoleBinding", "Role", "ServiceAccount")

_PAYLOAD_FIELDS = ("spec", "data", "rules", "roleRef", "subjects")


@dataclass(frozen=True)
class GatewaySettings:
    traefik_image: str = "docker.io/traefik:v2.2.8"
    configurer_image: str = "quay.io/che-incubator/configbump:0.1.4"
    service_port: int = 80
    requeue_initializing: float = 5.0


def _is_subset(desired: Any, current: Any) -> bool:
    """Whether every value set in ``desired`` is present in ``current``.

    Fields the server fills in (defaults, cluster IPs, ...) are ignored.
    """

    if isinstance(desired, Mapping):
        if not isinstance(current, Mapping):
            return False
        return all(k in current and _is_subset(v, current[k]) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(current, list) or len(desired) != len(current):
            return False
        return all(_is_subset(d, c) for d, c in zip(desired, current))
    return desired == current


def _merge(current: Any, desired: Any) -> Any:
    if isinstance(current, Mapping) and isinstance(desired, Mapping):
        merged = dict(current)
        for k, v in desired.items():
            merged[k] = _merge(current.get(k), v)
        return merged
    return copy.deepcopy(desired)


class CheGateway:
    """Sync or remove the gateway objects of a manager."""

    def __init__(self, store: ObjectStore, settings: GatewaySettings = GatewaySettings()) -> None:
        self._store = store
        self._settings = settings

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    # ------------------------------------------------------------------
    # Desired state
    # ------------------------------------------------------------------
    def _metadata(self, manager: CheManager, component: str) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "name": manager.name,
            "namespace": manager.namespace,
            "labels": defaults.labels_for_component(manager.name, component),
        }
        if manager.uid:
            metadata["ownerReferences"] = [
                {
                    "apiVersion": defaults.CHE_MANAGER_API_VERSION,
                    "kind": defaults.CHE_MANAGER_KIND,
                    "name": manager.name,
                    "uid": manager.uid,
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ]
        return metadata

    def static_config(self) -> str:
        config = {
            "entrypoints": {
                "http": {
                    "address": f":{GATEWAY_CONTAINER_PORT}",
                    "forwardedHeaders": {"insecure": True},
                },
                "sink": {"address": f":{GATEWAY_PING_PORT}"},
            },
            "ping": {"entryPoint": "sink"},
            "providers": {"file": {"directory": DYNAMIC_CONFIG_DIR, "watch": True}},
        }
        return yaml.safe_dump(config, default_flow_style=False, sort_keys=True)

    def desired_objects(self, manager: CheManager) -> List[Dict[str, Any]]:
        name = manager.name
        deployment_labels = defaults.labels_for_component(name, "deployment")
        config_selector = ",".join(
            f"{k}={v}"
            for k, v in sorted(
                {
                    defaults.LABEL_PART_OF: defaults.PART_OF_VALUE,
                    defaults.LABEL_COMPONENT: defaults.GATEWAY_CONFIG_COMPONENT,
                }.items()
            )
        )
        return [
            {
                "apiVersion": "v1",
                "kind": "ServiceAccount",
                "metadata": self._metadata(manager, "gateway-security"),
            },
            {
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "Role",
                "metadata": self._metadata(manager, "gateway-security"),
                "rules": [
                    {
                        "apiGroups": [""],
                        "resources": ["configmaps"],
                        "verbs": ["get", "list", "watch"],
                    }
                ],
            },
            {
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "RoleBinding",
                "metadata": self._metadata(manager, "gateway-security"),
                "roleRef": {
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": "Role",
                    "name": name,
                },
                "subjects": [{"kind": "ServiceAccount", "name": name, "namespace": manager.namespace}],
            },
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": self._metadata(manager, defaults.GATEWAY_CONFIG_COMPONENT),
                "data": {defaults.GATEWAY_STATIC_CONFIG_KEY: self.static_config()},
            },
            {
                "apiVersion": "apps/v1",
                "kind": "Deployment",
                "metadata": self._metadata(manager, "deployment"),
                "spec": {
                    "replicas": 1,
                    "selector": {"matchLabels": deployment_labels},
                    "template": {
                        "metadata": {"labels": deployment_labels},
                        "spec": {
                            "serviceAccountName": name,
                            "containers": [
                                {
                                    "name": "gateway",
                                    "image": self._settings.traefik_image,
                                    "ports": [
                                        {"name": "http", "containerPort": GATEWAY_CONTAINER_PORT},
                                        {"name": "ping", "containerPort": GATEWAY_PING_PORT},
                                    ],
                                    "volumeMounts": [
                                        {"name": "static-config", "mountPath": STATIC_CONFIG_DIR},
                                        {"name": "dynamic-config", "mountPath": DYNAMIC_CONFIG_DIR},
                                    ],
                                },
                                {
                                    "name": "configbump",
                                    "image": self._settings.configurer_image,
                                    "env": [
                                        {"name": "CONFIG_BUMP_DEST_DIR", "value": DYNAMIC_CONFIG_DIR},
                                        {"name": "CONFIG_BUMP_LABELS", "value": config_selector},
                                        {
                                            "name": "CONFIG_BUMP_NAMESPACE",
                                            "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}},
                                        },
                                    ],
                                    "volumeMounts": [
                                        {"name": "dynamic-config", "mountPath": DYNAMIC_CONFIG_DIR},
                                    ],
                                },
                            ],
                            "volumes": [
                                {"name": "static-config", "configMap": {"name": name}},
                                {"name": "dynamic-config", "emptyDir": {}},
                            ],
                        },
                    },
                },
            },
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": self._metadata(manager, "gateway"),
                "spec": {
                    "selector": deployment_labels,
                    "ports": [
                        {
                            "name": "gateway-http",
                            "port": self._settings.service_port,
                            "targetPort": GATEWAY_CONTAINER_PORT,
                            "protocol": "TCP",
                        }
                    ],
                },
            },
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def sync(self, manager: CheManager) -> bool:
        """Assert the gateway objects; return ``True`` if nothing had to change."""

        in_sync = True
        for desired in self.desired_objects(manager):
            if self._sync_object(desired):
                in_sync = False
        return in_sync

    def _sync_object(self, desired: Dict[str, Any]) -> bool:
        kind = desired["kind"]
        metadata = desired["metadata"]
        try:
            current = self._store.get(kind, metadata["namespace"], metadata["name"])
        except ObjectNotFound:
            self._store.create(desired)
            LOG.info("Created gateway %s %s/%s", kind, metadata["namespace"], metadata["name"])
            return True

        payload = {f: desired[f] for f in _PAYLOAD_FIELDS if f in desired}
        labels_ok = _is_subset(metadata["labels"], (current.get("metadata") or {}).get("labels") or {})
        if labels_ok and _is_subset(payload, current):
            return False

        updated = copy.deepcopy(current)
        updated["metadata"]["labels"] = defaults.add_standard_labels(
            metadata["labels"][defaults.LABEL_NAME],
            metadata["labels"][defaults.LABEL_COMPONENT],
            dict(updated["metadata"].get("labels") or {}),
        )
        for field, value in payload.items():
            updated[field] = _merge(updated.get(field), value)
        self._store.update(updated)
        LOG.info("Updated gateway %s %s/%s", kind, metadata["namespace"], metadata["name"])
        return True

    def delete(self, manager: CheManager) -> None:
        for kind in _GATEWAY_KINDS:
            try:
                self._store.delete(kind, manager.namespace, manager.name)
            except ObjectNotFound:
                continue
            LOG.info("Deleted gateway %s %s/%s", kind, manager.namespace, manager.name)
