from typing import Any, Optional
from pydantic import BaseModel, Field

from .record import Location

STATUS_OK = "ok"
STATUS_ERROR = "error"


class LookupRequest(BaseModel):
    ip: str = Field(..., description="IPv4 or IPv6 address to look up")


class LookupData(BaseModel):
    ip: str = Field(..., description="Normalized address")
    country: Optional[str] = Field(None, description="ISO country code, null when unknown")
    city: Optional[str] = None
    location: Optional[Location] = None


class Envelope(BaseModel):
    status: str
    data: Any = None
