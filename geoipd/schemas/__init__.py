from .record import Country, City, Location, Record
from .lookup import LookupRequest, LookupData, Envelope

__all__ = ["Country", "City", "Location", "Record", "LookupRequest", "LookupData", "Envelope"]
