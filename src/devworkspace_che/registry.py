"""Process-wide cache of reconciled Che managers."""

from __future__ import annotations

from threading import Lock
from typing import Dict, Optional

from workspace_routing.store import ObjectKey

from .model import ManagerRecord


class ManagerRegistry:
    """Concurrency-safe mapping from manager key to its last reconciled record.

    The registry is written only by the manager reconciler and read by routing
    solvers.  It is a cache: it may lag behind the cluster by one reconcile
    cycle and is rebuilt from scratch by reconciling every manager after a
    restart.  Records are immutable, so snapshots returned by :meth:`list`
    never alias live storage.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: Dict[ObjectKey, ManagerRecord] = {}

    def put(self, key: ObjectKey, record: ManagerRecord) -> None:
        with self._lock:
            self._records[key] = record

    def get(self, key: ObjectKey) -> Optional[ManagerRecord]:
        with self._lock:
            return self._records.get(key)

    def delete(self, key: ObjectKey) -> Optional[ManagerRecord]:
        with self._lock:
            return self._records.pop(key, None)

    def list(self) -> Dict[ObjectKey, ManagerRecord]:
        with self._lock:
            return dict(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records
