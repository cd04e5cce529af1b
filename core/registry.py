"""In-memory routing table from deployment name to its running container.

The registry also owns the image/port counter, so an index is only ever
consumed by a deployment that was actually published.
"""
import threading
from typing import Dict, List, Optional

from loguru import logger

from .metrics import REGISTERED_DEPLOYMENTS_GAUGE
from .schemas import DeploymentRecord


def _key(name: str) -> str:
    # host names are case-insensitive, so route names are too
    return name.lower()


class DeploymentRegistry:
    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[str, DeploymentRecord] = {}
        self._next_index = 0

    @property
    def next_index(self) -> int:
        with self._lock:
            return self._next_index

    def register(self, record: DeploymentRecord) -> Optional[DeploymentRecord]:
        """Publish ``record``, replacing any entry with the same name.

        Returns the replaced record, if there was one. The counter moves past
        ``record.index`` and never goes backwards.
        """
        with self._lock:
            previous = self._entries.get(_key(record.name))
            self._entries[_key(record.name)] = record
            self._next_index = max(self._next_index, record.index + 1)
            REGISTERED_DEPLOYMENTS_GAUGE.set(len(self._entries))

        if previous is not None:
            logger.debug(
                f"Deployment {record.name} moved from index {previous.index} to {record.index}"
            )
        return previous

    def lookup(self, name: str) -> Optional[DeploymentRecord]:
        with self._lock:
            return self._entries.get(_key(name))

    def names(self) -> List[str]:
        with self._lock:
            return sorted(r.name for r in self._entries.values())

    def snapshot(self) -> Dict[str, DeploymentRecord]:
        with self._lock:
            return {r.name: r for r in self._entries.values()}

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return _key(name) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
