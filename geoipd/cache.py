"""
Adaptive replacement cache (ARC) for decoded lookup records

Resident lists:
- t1 (seen once recently), t2 (seen at least twice) as OrderedDicts in LRU
  order (first item = LRU, last item = MRU).
Ghost lists:
- b1 (evicted from t1), b2 (evicted from t2), keys only.

p is the target size of t1, nudged up by hits in b1 and down by hits in b2.
"""

import threading
from collections import OrderedDict
from typing import Any, Hashable, List

from .errors import ConfigError


def validate_capacity(capacity) -> None:
    if not isinstance(capacity, int) or capacity < 1:
        raise ConfigError(f"cache capacity must be a positive integer, got {capacity!r}")


class ARCCache:
    """Thread-safe fixed-size ARC cache"""

    def __init__(self, capacity: int):
        validate_capacity(capacity)
        self.capacity = capacity
        self._p = 0
        self._t1: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._t2: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._b1: "OrderedDict[Hashable, None]" = OrderedDict()
        self._b2: "OrderedDict[Hashable, None]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value for key, promoting it to the frequent list"""
        with self._lock:
            if key in self._t1:
                value = self._t1.pop(key)
                self._t2[key] = value
                self.hits += 1
                return value
            if key in self._t2:
                self._t2.move_to_end(key)
                self.hits += 1
                return self._t2[key]
            self.misses += 1
            return default

    def peek(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value without touching recency or stats"""
        with self._lock:
            if key in self._t1:
                return self._t1[key]
            return self._t2.get(key, default)

    def add(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._t1:
                del self._t1[key]
                self._t2[key] = value
                return

            if key in self._t2:
                self._t2[key] = value
                self._t2.move_to_end(key)
                return

            if key in self._b1:
                b1_len, b2_len = len(self._b1), len(self._b2)
                delta = b2_len // b1_len if b2_len > b1_len else 1
                self._p = min(self._p + delta, self.capacity)
                if len(self._t1) + len(self._t2) >= self.capacity:
                    self._replace(False)
                # _replace may already have trimmed key off the ghost list
                self._b1.pop(key, None)
                self._t2[key] = value
                return

            if key in self._b2:
                b1_len, b2_len = len(self._b1), len(self._b2)
                delta = b1_len // b2_len if b1_len > b2_len else 1
                self._p = max(self._p - delta, 0)
                if len(self._t1) + len(self._t2) >= self.capacity:
                    self._replace(True)
                self._b2.pop(key, None)
                self._t2[key] = value
                return

            if len(self._t1) + len(self._t2) >= self.capacity:
                self._replace(False)

            # Keep ghost lists bounded
            if len(self._b1) > self.capacity - self._p:
                self._b1.popitem(last=False)
            if len(self._b2) > self._p:
                self._b2.popitem(last=False)

            self._t1[key] = value

    def _replace(self, b2_contains_key: bool) -> None:
        t1_len = len(self._t1)
        if t1_len > 0 and (t1_len > self._p or (t1_len == self._p and b2_contains_key)):
            key, _ = self._t1.popitem(last=False)
            self._b1[key] = None
            if len(self._b1) > self.capacity:
                self._b1.popitem(last=False)
        elif self._t2:
            key, _ = self._t2.popitem(last=False)
            self._b2[key] = None
            if len(self._b2) > self.capacity:
                self._b2.popitem(last=False)

    def remove(self, key: Hashable) -> bool:
        with self._lock:
            found = False
            for od in (self._t1, self._t2, self._b1, self._b2):
                if key in od:
                    del od[key]
                    found = True
            return found

    def purge(self) -> None:
        """Drop every resident and ghost entry"""
        with self._lock:
            self._t1.clear()
            self._t2.clear()
            self._b1.clear()
            self._b2.clear()
            self._p = 0

    def keys(self) -> List[Hashable]:
        """Resident keys, least recently used first (t1 then t2)"""
        with self._lock:
            return list(self._t1) + list(self._t2)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._t1 or key in self._t2

    def __len__(self) -> int:
        with self._lock:
            return len(self._t1) + len(self._t2)
