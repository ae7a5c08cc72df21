"""Well-known names, labels and annotations shared by both controllers."""

from __future__ import annotations

from typing import Dict, MutableMapping

CHE_MANAGER_KIND = "CheManager"
CHE_MANAGER_API_VERSION = "che.eclipse.org/v1alpha1"

FINALIZER_NAME = "chemanager.che.eclipse.org"

ROUTING_CLASS = "che"

_ANNOTATION_PREFIX = "che.routing.controller.devfile.io/"

# Links routing-produced objects back to their owning manager.
CONFIG_ANNOTATION_CHE_MANAGER_NAME = _ANNOTATION_PREFIX + "cheManagerName"
CONFIG_ANNOTATION_CHE_MANAGER_NAMESPACE = _ANNOTATION_PREFIX + "cheManagerNamespace"

# Links a workspace gateway config back to the routing that produced it.
CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAME = _ANNOTATION_PREFIX + "workspaceRoutingName"
CONFIG_ANNOTATION_WORKSPACE_ROUTING_NAMESPACE = _ANNOTATION_PREFIX + "workspaceRoutingNamespace"

# Stamped on a routing or manager to make the operator reconcile it again.
RECONCILE_TRIGGER_ANNOTATION = _ANNOTATION_PREFIX + "reconcileTrigger"

LABEL_NAME = "app.kubernetes.io/name"
LABEL_PART_OF = "app.kubernetes.io/part-of"
LABEL_COMPONENT = "app.kubernetes.io/component"
PART_OF_VALUE = "che.eclipse.org"

GATEWAY_CONFIG_COMPONENT = "gateway-config"
GATEWAY_STATIC_CONFIG_KEY = "traefik.yml"


def add_standard_labels(
    app_name: str, component: str, labels: MutableMapping[str, str]
) -> MutableMapping[str, str]:
    """Overwrite the canonical labels in ``labels``, keeping any others."""

    labels[LABEL_NAME] = app_name
    labels[LABEL_PART_OF] = PART_OF_VALUE
    labels[LABEL_COMPONENT] = component
    return labels


def labels_from_names(app_name: str, component: str) -> Dict[str, str]:
    return dict(add_standard_labels(app_name, component, {}))


def labels_for_component(manager_name: str, component: str) -> Dict[str, str]:
    return labels_from_names(manager_name, component)


def gateway_config_map_name(manager_name: str) -> str:
    return manager_name


def gateway_workspace_config_map_name(workspace_id: str) -> str:
    return workspace_id


def workspace_service_name(workspace_id: str, component: str) -> str:
    return f"{workspace_id}-{component}"


def workspace_config_key(workspace_id: str) -> str:
    return f"{workspace_id}.yml"
