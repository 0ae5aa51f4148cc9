#!/usr/bin/env python3
"""
GeoResolver - postal code to coordinates.

Resolution order:
1. Location cache lookup by normalized postal code
2. Geocoding provider call, restricted to the configured country
3. Validation of the provider result against the requested country/code
4. Best-effort cache upsert of accepted results

Any failure returns None so callers can fall back to the postal prefix
heuristic. Provider calls are serialized and separated by a fixed minimum
interval to respect the provider quota. A call still running when the
run budget runs out is abandoned and treated as a failure.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional, Set

from core.exceptions import GeocodingError, RepositoryError
from core.geo.interfaces import GeocodingProvider
from core.geo.models import CachedLocation, Coordinates, GeocodeResult

logger = logging.getLogger(__name__)


def normalize_postal_code(postal_code: Optional[str]) -> str:
    """Uppercase and strip all whitespace."""
    if not postal_code:
        return ""
    return "".join(postal_code.split()).upper()


class GeoResolver:
    """
    Cache-first postal code resolver with a rate-limited provider fallback.

    The resolver is shared by every distance computation in a run, so it
    also remembers codes that failed during the current run and does not
    query the provider for them again until ``begin_run()`` is called.
    """

    def __init__(
        self,
        repo,
        provider: Optional[GeocodingProvider] = None,
        country_code: str = "ca",
        rate_limit_interval_seconds: float = 1.1,
        operation_timeout_seconds: Optional[float] = None,
        cache_ttl_days: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            repo: Repository exposing get_cached_location / upsert_cached_location
            provider: Geocoding provider, or None for cache-only resolution
            country_code: ISO country code results must belong to
            rate_limit_interval_seconds: Minimum delay between provider calls
            operation_timeout_seconds: Total provider budget per run (None = unbounded)
            cache_ttl_days: Treat older cache entries as misses (None = never expire)
        """
        self.repo = repo
        self.provider = provider
        self.country_code = country_code.lower()
        self.rate_limit_interval_seconds = max(0.0, rate_limit_interval_seconds)
        self.operation_timeout_seconds = operation_timeout_seconds
        self.cache_ttl_days = cache_ttl_days
        self._clock = clock
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(timezone.utc))

        self._provider_lock = threading.Lock()
        self._last_call_at: Optional[float] = None
        self._budget_started_at = self._clock()
        self._failed_codes: Set[str] = set()
        self._budget_exhausted_logged = False
        self._executor: Optional[ThreadPoolExecutor] = None

        self.provider_calls = 0
        self.cache_hits = 0

        if self.provider is None:
            logger.warning("No geocoding provider configured; resolving from cache only")

    def begin_run(self) -> None:
        """Reset the per-run timeout budget and failure memo."""
        self._budget_started_at = self._clock()
        self._failed_codes.clear()
        self._budget_exhausted_logged = False
        self.provider_calls = 0
        self.cache_hits = 0

    def resolve(self, postal_code: Optional[str]) -> Optional[Coordinates]:
        """Resolve a postal code to coordinates, or None when unavailable."""
        location = self.lookup(postal_code)
        return location.coordinates if location else None

    def lookup(self, postal_code: Optional[str]) -> Optional[CachedLocation]:
        """Resolve a postal code to a full cache entry (coordinates plus city/region)."""
        code = normalize_postal_code(postal_code)
        if not code:
            return None

        cached = self._read_cache(code)
        if cached is not None and not self._is_stale(cached):
            self.cache_hits += 1
            return cached

        result = self._geocode(code)
        if result is None:
            if cached is not None:
                # Serve the stale entry when the refresh fails
                self.cache_hits += 1
            return cached

        location = CachedLocation(
            postal_code=code,
            coordinates=result.coordinates,
            city=result.city,
            region=result.region,
            country=self.country_code.upper(),
            geocoded_at=self._now(),
        )
        self._write_cache(location)
        return location

    def cached_location(self, postal_code: Optional[str]) -> Optional[CachedLocation]:
        """Cache-only lookup; never calls the provider."""
        code = normalize_postal_code(postal_code)
        if not code:
            return None
        return self._read_cache(code)

    def warm_cache(self, postal_codes: Iterable[str]) -> Dict[str, Coordinates]:
        """
        Resolve a batch of postal codes sequentially under the rate limit.

        Returns:
            Mapping of normalized postal code -> coordinates for every code
            that resolved (from cache or provider)
        """
        unique_codes = []
        seen = set()
        for raw in postal_codes:
            code = normalize_postal_code(raw)
            if code and code not in seen:
                seen.add(code)
                unique_codes.append(code)

        results: Dict[str, Coordinates] = {}
        for code in unique_codes:
            coords = self.resolve(code)
            if coords is not None:
                results[code] = coords

        logger.info(f"Warmed location cache: resolved {len(results)}/{len(unique_codes)} postal codes")
        return results

    def _read_cache(self, code: str) -> Optional[CachedLocation]:
        try:
            return self.repo.get_cached_location(code)
        except RepositoryError as e:
            logger.warning(f"Location cache read failed for {code}: {e}")
            return None

    def _is_stale(self, cached: CachedLocation) -> bool:
        if self.cache_ttl_days is None or cached.geocoded_at is None:
            return False
        geocoded_at = cached.geocoded_at
        if geocoded_at.tzinfo is None:
            geocoded_at = geocoded_at.replace(tzinfo=timezone.utc)
        stale = self._now() - geocoded_at > timedelta(days=self.cache_ttl_days)
        if stale:
            logger.debug(f"Cached coordinates for {cached.postal_code} are stale, refreshing")
        return stale

    def _write_cache(self, location: CachedLocation) -> None:
        try:
            self.repo.upsert_cached_location(
                location.postal_code,
                location.coordinates,
                city=location.city,
                region=location.region,
                country=location.country,
            )
            logger.debug(
                f"Cached coordinates for {location.postal_code}: "
                f"{location.coordinates.lat}, {location.coordinates.lng}"
            )
        except RepositoryError as e:
            # Caching failure shouldn't break matching
            logger.error(f"Error caching coordinates for postal code {location.postal_code}: {e}")

    def _budget_remaining(self) -> Optional[float]:
        if self.operation_timeout_seconds is None:
            return None
        return self.operation_timeout_seconds - (self._clock() - self._budget_started_at)

    def _geocode(self, code: str) -> Optional[GeocodeResult]:
        if self.provider is None or code in self._failed_codes:
            return None

        with self._provider_lock:
            remaining = self._budget_remaining()
            if remaining is not None and remaining <= 0:
                if not self._budget_exhausted_logged:
                    logger.warning("Geocoding time budget exhausted; using heuristic distances for the rest of the run")
                    self._budget_exhausted_logged = True
                return None

            if self._last_call_at is not None:
                wait = self.rate_limit_interval_seconds - (self._clock() - self._last_call_at)
                if wait > 0:
                    if remaining is not None and wait >= remaining:
                        return None
                    self._sleep(wait)
                    remaining = self._budget_remaining()

            self._last_call_at = self._clock()
            self.provider_calls += 1
            try:
                result = self._query_provider(code, remaining)
                self._validate(code, result)
            except GeocodingError as e:
                logger.warning(f"Geocoding failed for {code}: {e}")
                self._failed_codes.add(code)
                return None
            except Exception as e:
                logger.error(f"Unexpected geocoding error for {code}: {e}")
                self._failed_codes.add(code)
                return None
            finally:
                self._last_call_at = self._clock()

        logger.info(f"Geocoded {code} to {result.lat}, {result.lng} ({result.formatted_address})")
        return result

    def _query_provider(self, code: str, remaining: Optional[float]) -> GeocodeResult:
        """Provider call that gives up once the remaining run budget is spent."""
        if remaining is None:
            return self.provider.query(code, self.country_code)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="geocode")
        future = self._executor.submit(self.provider.query, code, self.country_code, remaining)
        try:
            return future.result(timeout=remaining)
        except FuturesTimeoutError as e:
            future.cancel()
            raise GeocodingError(f"Geocoding {code} exceeded the remaining time budget ({remaining:.1f}s)") from e

    def close(self) -> None:
        """Stop the provider call thread without waiting for an abandoned call."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _validate(self, code: str, result: GeocodeResult) -> None:
        """Reject results outside the configured country or without a matching postcode."""
        components = result.components or {}
        result_country = str(components.get('country_code') or '').lower()
        if result_country != self.country_code:
            raise GeocodingError(
                f"Result for {code} is in country '{result_country or 'unknown'}', "
                f"expected '{self.country_code}'"
            )

        postcode = normalize_postal_code(str(components.get('postcode') or ''))
        if not postcode:
            raise GeocodingError(f"Result for {code} is not a postal code match")

        prefix_len = min(3, len(code), len(postcode))
        if postcode[:prefix_len] != code[:prefix_len]:
            raise GeocodingError(f"Result postcode {postcode} does not match requested {code}")
