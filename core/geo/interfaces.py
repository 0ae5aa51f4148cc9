"""
Geocoding Provider Interface - Abstract base for geocoding backends.
"""
from abc import ABC, abstractmethod
from typing import Optional

from core.geo.models import GeocodeResult


class GeocodingProvider(ABC):
    """
    Abstract Interface for geocoding providers (OpenCage, Nominatim, etc.).
    """

    @abstractmethod
    def query(self, postal_code: str, country_code: str, timeout_seconds: Optional[float] = None) -> GeocodeResult:
        """
        Geocode a postal code within a country.

        ``timeout_seconds``, when given, bounds the whole call including
        retries.

        Raises:
            GeocodingError: on timeouts, non-2xx responses, malformed bodies
                or empty result sets
        """
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass
