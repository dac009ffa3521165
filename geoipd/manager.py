"""
Database manager

Owns the current (handle, cache) snapshot. Lookups pin the snapshot they
read from; installs swap in a new snapshot with an empty cache under a short
lock and close the old handle once its last reader has released it.
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from .cache import ARCCache, validate_capacity
from .errors import DecodeError, NotReadyError, RefreshError
from .metrics import prometheus_metrics
from .pipeline import Installed, UpdatePipeline
from .schemas.record import Record
from .validation import normalize_address

logger = logging.getLogger("geoipd.manager")

_MISSING = object()


class RefreshOutcome(str, Enum):
    INSTALLED = "installed"
    NO_CHANGE = "no_change"


class _Snapshot:
    __slots__ = ("handle", "cache", "version", "checksum", "readers", "retired", "closed")

    def __init__(self, handle, cache: ARCCache, version: int, checksum: Optional[str] = None):
        self.handle = handle
        self.checksum = checksum
        self.cache = cache
        self.version = version
        self.readers = 0
        self.retired = False
        self.closed = False


class DatabaseManager:
    def __init__(self, pipeline: UpdatePipeline, cache_size: int = 1024, license_key: str = ""):
        validate_capacity(cache_size)
        self.pipeline = pipeline
        self.cache_size = cache_size
        self._license_key = license_key
        self._current: Optional[_Snapshot] = None
        self._version = 0
        self._closed = False
        # Guards the snapshot pointer and reader counts only
        self._lock = threading.Lock()
        # Serializes refreshes; never held by lookups
        self._refresh_lock = threading.Lock()
        self.last_refresh: Dict[str, Any] = {"outcome": None, "at": None, "error": None}

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._current is not None

    @property
    def serving_checksum(self) -> Optional[str]:
        """Archive checksum of the data the current handle serves, None if unknown"""
        with self._lock:
            return self._current.checksum if self._current else None

    @property
    def version(self) -> int:
        """Number of the currently installed snapshot (0 before the first install)"""
        with self._lock:
            return self._current.version if self._current else 0

    def lookup(self, address) -> Record:
        key = str(normalize_address(address))
        snap = self._acquire()
        try:
            cached = snap.cache.get(key, _MISSING)
            if cached is not _MISSING:
                prometheus_metrics.increment_cache("hit")
                prometheus_metrics.increment_lookups("ok")
                return cached
            prometheus_metrics.increment_cache("miss")

            try:
                record = snap.handle.lookup(key)
            except Exception as e:
                prometheus_metrics.increment_lookups("decode_error")
                raise DecodeError(str(e)) from e

            snap.cache.add(key, record)
            prometheus_metrics.increment_lookups("ok")
            return record
        finally:
            self._release(snap)

    def _acquire(self) -> _Snapshot:
        with self._lock:
            snap = self._current
            if snap is None:
                prometheus_metrics.increment_lookups("not_ready")
                raise NotReadyError()
            snap.readers += 1
            return snap

    def _release(self, snap: _Snapshot) -> None:
        with self._lock:
            snap.readers -= 1
            close_now = snap.retired and snap.readers == 0 and not snap.closed
            if close_now:
                snap.closed = True
        if close_now:
            self._close_handle(snap)

    def install_new_handle(self, handle, checksum: Optional[str] = None) -> None:
        """Make handle current with an empty cache and retire the previous snapshot.

        checksum is the archive checksum of the data the handle was opened over.
        """
        cache = ARCCache(self.cache_size)
        with self._lock:
            if self._closed:
                old = None
                rejected = True
            else:
                rejected = False
                self._version += 1
                old = self._current
                self._current = _Snapshot(handle, cache, self._version, checksum)
                if old is not None:
                    old.retired = True
                    if old.readers == 0:
                        old.closed = True
                    else:
                        old = None  # last reader closes it
            version = self._version

        if rejected:
            logger.warning("manager closed, discarding new database handle",
                           extra={"component": "manager", "event": "install_rejected"})
            handle.close()
            return

        if old is not None:
            self._close_handle(old)

        prometheus_metrics.increment_installs()
        prometheus_metrics.set_database_loaded(True)
        logger.info("database handle installed", extra={"component": "manager", "event": "installed",
                                                        "version": version})

    def refresh(self) -> RefreshOutcome:
        """Run the update pipeline and install its handle on success.

        Raises RefreshError on failure; whatever was serving keeps serving.
        """
        with self._refresh_lock:
            started = time.time()
            try:
                result = self.pipeline.refresh(self._license_key, current_checksum=self.serving_checksum)
            except RefreshError as e:
                self.last_refresh = {"outcome": "error", "at": time.time(), "error": str(e)}
                prometheus_metrics.increment_refreshes("error")
                logger.error("database refresh failed: %s", e,
                             extra={"component": "manager", "event": "refresh_failed",
                                    "error_type": type(e).__name__})
                raise

            if isinstance(result, Installed):
                self.install_new_handle(result.handle, result.checksum)
                outcome = RefreshOutcome.INSTALLED
            else:
                outcome = RefreshOutcome.NO_CHANGE

            now = time.time()
            self.last_refresh = {"outcome": outcome.value, "at": now, "error": None}
            prometheus_metrics.increment_refreshes(outcome.value)
            prometheus_metrics.set_last_refresh(now)
            logger.info("database refresh finished", extra={
                "component": "manager", "event": "refreshed", "outcome": outcome.value,
                "duration_ms": round((now - started) * 1000, 2)})
            return outcome

    def cached_addresses(self) -> List[str]:
        with self._lock:
            snap = self._current
        return snap.cache.keys() if snap else []

    def status(self) -> Dict[str, Any]:
        with self._lock:
            snap = self._current
            version = snap.version if snap else 0
        return {
            "ready": snap is not None,
            "version": version,
            "checksum": snap.checksum if snap else None,
            "cache_size": len(snap.cache) if snap else 0,
            "cache_capacity": self.cache_size,
            "last_refresh": dict(self.last_refresh),
        }

    def close(self) -> None:
        """Stop serving; lookups raise NotReadyError from here on"""
        with self._lock:
            self._closed = True
            old = self._current
            self._current = None
            if old is not None:
                old.retired = True
                if old.readers == 0:
                    old.closed = True
                else:
                    old = None
        if old is not None:
            self._close_handle(old)
        prometheus_metrics.set_database_loaded(False)

    def _close_handle(self, snap: _Snapshot) -> None:
        try:
            snap.handle.close()
        except Exception as e:
            logger.warning("failed to close previous database: %s", e,
                           extra={"component": "manager", "event": "close_failed", "version": snap.version})
        else:
            logger.debug("retired database handle closed",
                         extra={"component": "manager", "event": "closed", "version": snap.version})
