"""OpenCage geocoding client with connection reuse and retry logic."""

import time
import logging
from typing import Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
    retry_if_exception,
    before_sleep_log,
    RetryError,
)

from core.exceptions import GeocodingError
from core.geo.interfaces import GeocodingProvider
from core.geo.models import GeocodeResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.opencagedata.com/geocode/v1/json"


def _is_retryable_error(exc: Exception) -> bool:
    """
    Determine if an exception is retryable.

    Only retries on:
    - Timeouts
    - Server errors (5xx)
    - Connection errors without a response

    Does NOT retry on client errors (4xx) or malformed payloads.
    """
    if isinstance(exc, requests.Timeout):
        return True

    if isinstance(exc, requests.HTTPError):
        response = getattr(exc, 'response', None)
        if response is not None:
            return response.status_code >= 500
        return True

    if isinstance(exc, requests.RequestException):
        response = getattr(exc, 'response', None)
        if response is not None and 400 <= response.status_code < 500:
            return False
        return True

    return False


def format_postal_query(postal_code: str, country_code: str) -> str:
    """Format a normalized postal code for the provider query.

    Canadian codes are sent as ``A1A 1A1``.
    """
    if country_code.lower() == "ca" and len(postal_code) == 6:
        return f"{postal_code[:3]} {postal_code[3:]}"
    return postal_code


class OpenCageClient(GeocodingProvider):
    """
    Client for the OpenCage forward geocoding API.

    Responsibilities:
    - Own a requests.Session for connection reuse
    - Retry transient failures (timeouts, 5xx)
    - Translate every failure mode into GeocodingError
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        request_timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        user_agent: str = "CircleMatchingApp/1.0"
    ):
        self.api_key = api_key
        self.base_url = base_url or DEFAULT_BASE_URL
        self.request_timeout_seconds = request_timeout_seconds
        self.max_attempts = max(1, max_attempts)

        self.session = requests.Session()
        self.session.headers.update({'User-Agent': user_agent})

        logger.info(
            f"OpenCageClient initialized: base_url={self.base_url}, "
            f"timeout={request_timeout_seconds}s, max_attempts={self.max_attempts}"
        )

    def _retrying(self, timeout_seconds: Optional[float]):
        """Retry policy; a time budget also stops retries once it is spent."""
        stop = stop_after_attempt(self.max_attempts)
        if timeout_seconds is not None:
            stop = stop | stop_after_delay(timeout_seconds)
        return retry(
            stop=stop,
            wait=wait_fixed(1),
            retry=retry_if_exception(_is_retryable_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _get(self, params: dict, deadline: Optional[float] = None) -> dict:
        timeout = self.request_timeout_seconds
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise requests.Timeout("Geocoding time budget exhausted")
            timeout = min(timeout, remaining)

        response = self.session.get(
            self.base_url,
            params=params,
            timeout=timeout
        )
        response.raise_for_status()
        return response.json()

    def query(self, postal_code: str, country_code: str, timeout_seconds: Optional[float] = None) -> GeocodeResult:
        """Geocode a postal code, restricted to ``country_code``.

        ``timeout_seconds`` bounds the whole call including retries.
        """
        query_text = format_postal_query(postal_code, country_code)
        params = {
            'q': query_text,
            'key': self.api_key,
            'countrycode': country_code.lower(),
            'limit': 1,
            'no_annotations': 1,
        }

        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        try:
            data = self._retrying(timeout_seconds)(self._get)(params, deadline)
        except (requests.RequestException, RetryError) as e:
            raise GeocodingError(f"OpenCage request failed for {postal_code}: {e}") from e
        except ValueError as e:
            # response.json() on a non-JSON body
            raise GeocodingError(f"OpenCage returned malformed body for {postal_code}") from e

        return self._parse(postal_code, data)

    @staticmethod
    def _parse(postal_code: str, data) -> GeocodeResult:
        if not isinstance(data, dict):
            raise GeocodingError(f"OpenCage returned malformed body for {postal_code}")

        results = data.get('results') or []
        if not results:
            raise GeocodingError(f"No geocoding results found for postal code: {postal_code}")

        first = results[0]
        try:
            geometry = first['geometry']
            lat = float(geometry['lat'])
            lng = float(geometry['lng'])
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"OpenCage result for {postal_code} has no usable geometry") from e

        return GeocodeResult(
            lat=lat,
            lng=lng,
            formatted_address=first.get('formatted', '') or '',
            components=first.get('components') or {},
        )

    def close(self):
        """Close the session and release resources."""
        self.session.close()
        logger.info("OpenCageClient session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
