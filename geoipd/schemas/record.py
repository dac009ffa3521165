from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class Country(BaseModel):
    model_config = ConfigDict(frozen=True)

    iso_code: Optional[str] = Field(None, description="ISO 3166-1 alpha-2 code")
    name: Optional[str] = Field(None, description="English country name")


class City(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = Field(None, description="English city name")


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    time_zone: Optional[str] = None


class Record(BaseModel):
    """Decoded lookup result. A block is None when the database has no such block."""

    model_config = ConfigDict(frozen=True)

    country: Optional[Country] = None
    city: Optional[City] = None
    location: Optional[Location] = None

    @classmethod
    def empty(cls) -> "Record":
        """Record for an address the database has no data for"""
        return cls()

    @property
    def found(self) -> bool:
        return any(block is not None for block in (self.country, self.city, self.location))

    @property
    def country_code(self) -> Optional[str]:
        return self.country.iso_code if self.country else None

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "Record":
        """Build a record from a raw maxminddb result dict"""
        if not raw:
            return cls.empty()

        country = None
        raw_country = raw.get("country")
        if raw_country is not None:
            country = Country(
                iso_code=raw_country.get("iso_code"),
                name=(raw_country.get("names") or {}).get("en"),
            )

        city = None
        raw_city = raw.get("city")
        if raw_city is not None:
            city = City(name=(raw_city.get("names") or {}).get("en"))

        location = None
        raw_location = raw.get("location")
        if raw_location is not None:
            location = Location(
                latitude=raw_location.get("latitude"),
                longitude=raw_location.get("longitude"),
                time_zone=raw_location.get("time_zone"),
            )

        return cls(country=country, city=city, location=location)
