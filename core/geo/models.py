#!/usr/bin/env python3
"""
Geo Models - Coordinates and geocoding results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Coordinates:
    """Latitude/longitude pair in decimal degrees."""
    lat: float
    lng: float


@dataclass
class CachedLocation:
    """A location cache entry keyed by normalized postal code."""
    postal_code: str
    coordinates: Coordinates
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    geocoded_at: Optional[datetime] = None


@dataclass
class GeocodeResult:
    """Single geocoding provider response."""
    lat: float
    lng: float
    formatted_address: str = ""
    components: Dict[str, Any] = field(default_factory=dict)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)

    @property
    def city(self) -> Optional[str]:
        c = self.components
        return c.get('city') or c.get('town') or c.get('village') or c.get('neighbourhood') or None

    @property
    def region(self) -> Optional[str]:
        c = self.components
        return c.get('state') or c.get('province') or None
