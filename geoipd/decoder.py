"""
MaxMind database decoder seam

Wraps maxminddb so the rest of the service only sees open_database(path)
returning a handle with lookup(address) -> Record and close().
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Union

import maxminddb

from .errors import OpenError
from .schemas.record import Record

logger = logging.getLogger("geoipd.decoder")


class DatabaseHandle:
    """Open reader over one installed database file"""

    def __init__(self, reader, path: Union[str, Path]):
        self._reader = reader
        self.path = str(path)
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def build_epoch(self) -> Optional[int]:
        try:
            return self._reader.metadata().build_epoch
        except (AttributeError, ValueError):
            return None

    def lookup(self, address: str) -> Record:
        return Record.from_raw(self._reader.get(address))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._reader.close()
        logger.debug("database handle closed", extra={"component": "decoder", "path": self.path})


def open_database(path: Union[str, Path]) -> DatabaseHandle:
    try:
        reader = maxminddb.open_database(str(path))
    except (maxminddb.InvalidDatabaseError, OSError, ValueError) as e:
        raise OpenError(f"failed to open GeoIP database {path}: {e}") from e
    return DatabaseHandle(reader, path)
