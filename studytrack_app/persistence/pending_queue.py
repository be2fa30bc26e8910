from __future__ import annotations

import logging
import threading

from studytrack_app.core.records import PendingMutation
from studytrack_app.persistence.local_cache import KEY_PENDING, LocalCache

LOGGER = logging.getLogger(__name__)


class PendingQueue:
    def __init__(self, cache: LocalCache) -> None:
        self.cache = cache
        self._lock = threading.Lock()
        self._items: list[PendingMutation] = self._load()

    def _load(self) -> list[PendingMutation]:
        raw = self.cache.get(KEY_PENDING, [])
        if not isinstance(raw, list):
            LOGGER.warning("pending queue blob is not a list; starting empty")
            return []
        items: list[PendingMutation] = []
        seen: set[str] = set()
        for entry in raw:
            mutation = PendingMutation.from_dict(entry)
            if mutation is None:
                LOGGER.warning("pending queue entry dropped: %r", entry)
                continue
            if mutation.mutation_id in seen:
                continue
            seen.add(mutation.mutation_id)
            items.append(mutation)
        return items

    def _persist(self) -> None:
        self.cache.set(KEY_PENDING, [item.to_dict() for item in self._items])

    def enqueue(self, mutation: PendingMutation) -> bool:
        with self._lock:
            if any(item.mutation_id == mutation.mutation_id for item in self._items):
                LOGGER.debug("pending dedupe hit mutation_id=%s", mutation.mutation_id)
                return False
            self._items.append(mutation)
            self._persist()
            return True

    def peek(self) -> PendingMutation | None:
        with self._lock:
            return self._items[0] if self._items else None

    def remove(self, mutation_id: str) -> bool:
        with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if item.mutation_id != mutation_id]
            if len(self._items) == before:
                return False
            self._persist()
            return True

    def items(self) -> list[PendingMutation]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
