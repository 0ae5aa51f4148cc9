"""Geo Module - postal code resolution and distance.

Public API:
- GeoResolver: cache-first postal code resolution with provider fallback
- DistanceCalculator: postal code distance with heuristic fallback
- OpenCageClient: HTTP geocoding provider
"""

from core.geo.models import Coordinates, CachedLocation, GeocodeResult
from core.geo.distance import DistanceCalculator, haversine_km, estimate_distance_from_postal_codes
from core.geo.resolver import GeoResolver, normalize_postal_code
from core.geo.opencage_client import OpenCageClient

__all__ = [
    'Coordinates', 'CachedLocation', 'GeocodeResult',
    'DistanceCalculator', 'haversine_km', 'estimate_distance_from_postal_codes',
    'GeoResolver', 'normalize_postal_code',
    'OpenCageClient',
]
