"""Cluster object store contract and an in-memory implementation.

Objects are handled as Kubernetes-shaped mappings (``apiVersion``, ``kind``,
``metadata`` plus a payload such as ``spec``, ``data`` or ``status``).  The
store is the only place where reconcilers touch shared cluster state, so it
carries the two behaviours the controllers rely on for convergence:

* optimistic concurrency: an update carrying a stale ``resourceVersion`` is
  rejected with :class:`ObjectConflict`;
* finalizer-gated deletion: deleting an object that still has finalizers only
  stamps ``metadata.deletionTimestamp``; the object disappears once the last
  finalizer is removed by an update.
"""

from __future__ import annotations

import copy
import itertools
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple


class ObjectKey(NamedTuple):
    """Namespace/name pair identifying a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class StoreError(Exception):
    """Base class for object store failures."""


class ObjectNotFound(StoreError):
    def __init__(self, kind: str, key: ObjectKey) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class ObjectAlreadyExists(StoreError):
    def __init__(self, kind: str, key: ObjectKey) -> None:
        super().__init__(f"{kind} {key} already exists")
        self.kind = kind
        self.key = key


class ObjectConflict(StoreError):
    """Raised when an update is based on an outdated ``resourceVersion``."""

    def __init__(self, kind: str, key: ObjectKey) -> None:
        super().__init__(f"{kind} {key} was modified concurrently")
        self.kind = kind
        self.key = key


def object_key(obj: Mapping[str, Any]) -> ObjectKey:
    metadata = obj.get("metadata") or {}
    return ObjectKey(metadata.get("namespace") or "", metadata.get("name") or "")


def labels_of(obj: Mapping[str, Any]) -> Dict[str, str]:
    return dict((obj.get("metadata") or {}).get("labels") or {})


def annotations_of(obj: Mapping[str, Any]) -> Dict[str, str]:
    return dict((obj.get("metadata") or {}).get("annotations") or {})


def matches_labels(obj: Mapping[str, Any], selector: Optional[Mapping[str, str]]) -> bool:
    if not selector:
        return True
    labels = labels_of(obj)
    return all(labels.get(k) == v for k, v in selector.items())


class ObjectStore(ABC):
    """Synchronous access to cluster objects."""

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        """Return the object or raise :class:`ObjectNotFound`."""

    @abstractmethod
    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """List objects of ``kind``, optionally restricted to a namespace and label selector."""

    @abstractmethod
    def create(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        """Create ``obj`` and return the stored representation."""

    @abstractmethod
    def update(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        """Replace the object, honouring ``metadata.resourceVersion`` when set."""

    @abstractmethod
    def update_status(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        """Replace only the ``status`` of the object."""

    @abstractmethod
    def delete(self, kind: str, namespace: str, name: str) -> None:
        """Delete the object or raise :class:`ObjectNotFound`."""

    @abstractmethod
    def annotate(
        self, kind: str, namespace: str, name: str, annotations: Mapping[str, str]
    ) -> Dict[str, Any]:
        """Merge ``annotations`` into the object without a version check."""


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class InMemoryObjectStore(ObjectStore):
    """Thread-safe object store used by tests and offline tooling."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._versions = itertools.count(1)

    def _index(self, kind: str, key: ObjectKey) -> Tuple[str, str, str]:
        return kind, key.namespace, key.name

    def _bump(self, obj: Dict[str, Any]) -> None:
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def _stored(self, obj: Mapping[str, Any]) -> Tuple[Tuple[str, str, str], Dict[str, Any]]:
        kind = obj["kind"]
        key = object_key(obj)
        index = self._index(kind, key)
        current = self._objects.get(index)
        if current is None:
            raise ObjectNotFound(kind, key)
        expected = (obj.get("metadata") or {}).get("resourceVersion")
        if expected and expected != current["metadata"]["resourceVersion"]:
            raise ObjectConflict(kind, key)
        return index, current

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        key = ObjectKey(namespace, name)
        with self._lock:
            obj = self._objects.get(self._index(kind, key))
            if obj is None:
                raise ObjectNotFound(kind, key)
            return copy.deepcopy(obj)

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            found = [
                copy.deepcopy(obj)
                for (obj_kind, obj_ns, _), obj in sorted(self._objects.items())
                if obj_kind == kind
                and (namespace is None or obj_ns == namespace)
                and matches_labels(obj, labels)
            ]
        return found

    def create(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(dict(obj))
        metadata = stored.setdefault("metadata", {})
        kind = stored["kind"]
        key = object_key(stored)
        with self._lock:
            index = self._index(kind, key)
            if index in self._objects:
                raise ObjectAlreadyExists(kind, key)
            metadata.pop("deletionTimestamp", None)
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = _now()
            self._bump(stored)
            self._objects[index] = stored
            return copy.deepcopy(stored)

    def update(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            index, current = self._stored(obj)
            updated = copy.deepcopy(dict(obj))
            metadata = updated.setdefault("metadata", {})
            for field in ("uid", "creationTimestamp", "deletionTimestamp"):
                if field in current["metadata"]:
                    metadata[field] = current["metadata"][field]
                else:
                    metadata.pop(field, None)
            if "status" in current:
                updated["status"] = copy.deepcopy(current["status"])
            else:
                updated.pop("status", None)
            self._bump(updated)
            if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
                del self._objects[index]
            else:
                self._objects[index] = updated
            return copy.deepcopy(updated)

    def update_status(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            _, current = self._stored(obj)
            current["status"] = copy.deepcopy(obj.get("status") or {})
            self._bump(current)
            return copy.deepcopy(current)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        key = ObjectKey(namespace, name)
        with self._lock:
            index = self._index(kind, key)
            current = self._objects.get(index)
            if current is None:
                raise ObjectNotFound(kind, key)
            metadata = current["metadata"]
            if metadata.get("finalizers"):
                if not metadata.get("deletionTimestamp"):
                    metadata["deletionTimestamp"] = _now()
                    self._bump(current)
                return
            del self._objects[index]

    def annotate(
        self, kind: str, namespace: str, name: str, annotations: Mapping[str, str]
    ) -> Dict[str, Any]:
        key = ObjectKey(namespace, name)
        with self._lock:
            current = self._objects.get(self._index(kind, key))
            if current is None:
                raise ObjectNotFound(kind, key)
            current["metadata"].setdefault("annotations", {}).update(annotations)
            self._bump(current)
            return copy.deepcopy(current)
