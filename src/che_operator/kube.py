"""Object store backed by the Kubernetes API through the dynamic client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ConflictError, NotFoundError

from devworkspace_che.defaults import CHE_MANAGER_API_VERSION, CHE_MANAGER_KIND
from workspace_routing.model import CONFIG_MAP_KIND, SERVICE_KIND, WORKSPACE_ROUTING_KIND
from workspace_routing.store import (
    ObjectAlreadyExists,
    ObjectConflict,
    ObjectKey,
    ObjectNotFound,
    ObjectStore,
    object_key,
)

LOG = logging.getLogger(__name__)

API_VERSIONS: Dict[str, str] = {
    CHE_MANAGER_KIND: CHE_MANAGER_API_VERSION,
    WORKSPACE_ROUTING_KIND: "controller.devfile.io/v1alpha1",
    SERVICE_KIND: "v1",
    CONFIG_MAP_KIND: "v1",
    "ServiceAccount": "v1",
    "Role": "rbac.authorization.k8s.io/v1",
    "RoleBinding": "rbac.authorization.k8s.io/v1",
    "Deployment": "apps/v1",
}


def load_api_client(kubeconfig: Optional[str] = None) -> client.ApiClient:
    if kubeconfig:
        config.load_kube_config(config_file=str(kubeconfig))
    else:
        try:
            config.load_incluster_config()
            LOG.info("Loaded in-cluster Kubernetes configuration")
        except ConfigException:
            config.load_kube_config()
            LOG.info("Loaded Kubernetes configuration from kubeconfig")
    return client.ApiClient()


def _selector(labels: Optional[Mapping[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubernetesObjectStore(ObjectStore):
    def __init__(self, api_client: client.ApiClient) -> None:
        self._client = DynamicClient(api_client)
        self._resources: Dict[str, Any] = {}

    def _resource(self, kind: str):
        resource = self._resources.get(kind)
        if resource is None:
            try:
                api_version = API_VERSIONS[kind]
            except KeyError:
                raise ValueError(f"unsupported kind '{kind}'") from None
            resource = self._client.resources.get(api_version=api_version, kind=kind)
            self._resources[kind] = resource
        return resource

    @staticmethod
    def _body(obj: Mapping[str, Any]) -> Dict[str, Any]:
        body = dict(obj)
        body.setdefault("apiVersion", API_VERSIONS[body["kind"]])
        return body

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self._resource(kind).get(name=name, namespace=namespace).to_dict()
        except NotFoundError:
            raise ObjectNotFound(kind, ObjectKey(namespace, name)) from None

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        result = self._resource(kind).get(namespace=namespace, label_selector=_selector(labels))
        items = []
        for item in result.to_dict().get("items") or []:
            # List items come back without their type meta.
            item.setdefault("kind", kind)
            item.setdefault("apiVersion", API_VERSIONS[kind])
            items.append(item)
        return items

    def create(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        body = self._body(obj)
        key = object_key(body)
        try:
            return self._resource(body["kind"]).create(body=body, namespace=key.namespace).to_dict()
        except ConflictError:
            raise ObjectAlreadyExists(body["kind"], key) from None

    def update(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        body = self._body(obj)
        key = object_key(body)
        try:
            return self._resource(body["kind"]).replace(body=body, namespace=key.namespace).to_dict()
        except NotFoundError:
            raise ObjectNotFound(body["kind"], key) from None
        except ConflictError:
            raise ObjectConflict(body["kind"], key) from None

    def update_status(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        body = self._body(obj)
        key = object_key(body)
        resource = self._resource(body["kind"])
        try:
            return resource.status.replace(body=body, namespace=key.namespace).to_dict()
        except NotFoundError:
            raise ObjectNotFound(body["kind"], key) from None
        except ConflictError:
            raise ObjectConflict(body["kind"], key) from None

    def delete(self, kind: str, namespace: str, name: str) -> None:
        try:
            self._resource(kind).delete(name=name, namespace=namespace)
        except NotFoundError:
            raise ObjectNotFound(kind, ObjectKey(namespace, name)) from None

    def annotate(
        self, kind: str, namespace: str, name: str, annotations: Mapping[str, str]
    ) -> Dict[str, Any]:
        try:
            return self._resource(kind).patch(
                body={"metadata": {"annotations": dict(annotations)}},
                name=name,
                namespace=namespace,
                content_type="application/merge-patch+json",
            ).to_dict()
        except NotFoundError:
            raise ObjectNotFound(kind, ObjectKey(namespace, name)) from None
