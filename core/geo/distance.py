#!/usr/bin/env python3
"""
Distance Calculations - great-circle distance between postal codes.

Coordinate-based distance is attempted first. When either side cannot be
resolved the deterministic postal prefix heuristic is used, so callers
always get a number.
"""
import logging
import math
from typing import Dict, Optional

from core.geo.models import Coordinates
from core.geo.resolver import GeoResolver, normalize_postal_code

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Postal prefix heuristic (Canadian FSA / province letters)
SAME_AREA_KM = 1.5
SAME_REGION_KM = 8.0
DIFFERENT_REGION_KM = 50.0


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometers on a spherical earth."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    # Guard against rounding pushing h slightly outside [0, 1]
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def estimate_distance_from_postal_codes(postal_a: str, postal_b: str) -> float:
    """
    Coarse distance estimate from shared postal prefix.

    - same 3-character area prefix: 1.5 km
    - same 1-character region prefix: 8 km
    - otherwise (including empty codes): 50 km
    """
    code_a = normalize_postal_code(postal_a)
    code_b = normalize_postal_code(postal_b)

    if not code_a or not code_b:
        return DIFFERENT_REGION_KM

    if len(code_a) >= 3 and len(code_b) >= 3 and code_a[:3] == code_b[:3]:
        return SAME_AREA_KM
    if code_a[0] == code_b[0]:
        return SAME_REGION_KM
    return DIFFERENT_REGION_KM


class DistanceCalculator:
    """Postal code distance with coordinate lookup and heuristic fallback."""

    def __init__(self, resolver: Optional[GeoResolver] = None):
        self.resolver = resolver
        self._coords: Dict[str, Optional[Coordinates]] = {}

    def begin_run(self) -> None:
        """Drop memoized coordinates and reset the resolver's per-run state."""
        self._coords.clear()
        if self.resolver is not None:
            self.resolver.begin_run()

    def coordinates(self, postal_code: str) -> Optional[Coordinates]:
        code = normalize_postal_code(postal_code)
        if not code or self.resolver is None:
            return None
        if code not in self._coords:
            self._coords[code] = self.resolver.resolve(code)
        return self._coords[code]

    def distance(self, postal_a: str, postal_b: str) -> float:
        """Distance in km between two postal codes. Never raises."""
        try:
            coords_a = self.coordinates(postal_a)
            coords_b = self.coordinates(postal_b) if coords_a is not None else None
            if coords_a is not None and coords_b is not None:
                return haversine_km(coords_a, coords_b)
        except Exception as e:
            logger.warning(f"Error calculating postal code distance: {e}")

        return estimate_distance_from_postal_codes(postal_a, postal_b)
