"""geoipd: GeoIP lookup service over a periodically refreshed MaxMind database."""

from .cache import ARCCache
from .manager import DatabaseManager, RefreshOutcome
from .pipeline import DatabaseFiles, Installed, NoChangeNeeded, UpdatePipeline
from .scheduler import RefreshScheduler
from .schemas.record import Record

__all__ = [
    "ARCCache",
    "DatabaseManager",
    "RefreshOutcome",
    "DatabaseFiles",
    "Installed",
    "NoChangeNeeded",
    "UpdatePipeline",
    "RefreshScheduler",
    "Record",
]
