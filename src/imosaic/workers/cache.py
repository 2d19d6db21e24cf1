"""Bounded in-memory cache of decoded source pixels."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

KeyT = TypeVar("KeyT", bound=Hashable)
ValueT = TypeVar("ValueT")

LOGGER = logging.getLogger(__name__)


class ImageCache(Generic[KeyT, ValueT]):
    """Least-recently-used cache with a fixed entry capacity."""

    def __init__(self, capacity: int, loader: Callable[[KeyT], ValueT]) -> None:
        if capacity < 1:
            raise ValueError("Image cache capacity must be >= 1.")
        self.capacity = capacity
        self._loader = loader
        self._entries: OrderedDict[KeyT, ValueT] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_or_load(self, key: KeyT) -> ValueT:
        """Return a cached value, loading and possibly evicting on a miss."""
        if key in self._entries:
            self.hits += 1
            self._entries.move_to_end(key)
            return self._entries[key]
        self.misses += 1
        value = self._loader(key)
        self._entries[key] = value
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            LOGGER.debug("Evicted source %s from image cache.", evicted)
        return value

    def clear(self) -> None:
        self._entries.clear()
