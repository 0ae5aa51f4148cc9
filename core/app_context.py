import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from core.config_loader import AppConfig, GeocodingConfig
from core.exceptions import ConfigurationError
from core.geo.distance import DistanceCalculator
from core.geo.opencage_client import OpenCageClient
from core.geo.resolver import GeoResolver
from core.interfaces import CircleRepository
from core.matcher.orchestrator import MatchingOrchestrator
from core.naming import NamingService
from core.scorer import CompatibilityScorer

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    Services are built once per process and injected; every repository
    call opens its own session, so the context itself holds no DB session.
    """
    config: AppConfig
    repo: CircleRepository
    resolver: GeoResolver
    distance_calc: DistanceCalculator
    scorer: CompatibilityScorer
    naming: NamingService
    orchestrator: MatchingOrchestrator
    geocoding_client: Optional[OpenCageClient] = None

    @classmethod
    def build(
        cls,
        config: AppConfig,
        repo: Optional[CircleRepository] = None,
        session_factory: Optional[sessionmaker] = None
    ) -> "AppContext":
        """Build an AppContext from config.

        Args:
            config: Loaded application configuration
            repo: Repository to use instead of the SQL one (tests)
            session_factory: Session factory for the SQL repository

        Returns:
            Fully wired AppContext instance

        Raises:
            ConfigurationError: If geocoding is required but not configured
        """
        matching_config = config.matching

        if repo is None:
            repo = cls._build_repository(config, session_factory)

        geocoding_client = cls._build_geocoding_client(config.geocoding)
        resolver = GeoResolver(
            repo,
            provider=geocoding_client,
            country_code=config.geocoding.country_code,
            rate_limit_interval_seconds=config.geocoding.rate_limit_interval_seconds,
            operation_timeout_seconds=config.geocoding.operation_timeout_seconds,
            cache_ttl_days=config.geocoding.cache_ttl_days,
        )
        distance_calc = DistanceCalculator(resolver)
        scorer = CompatibilityScorer(
            distance_calc,
            weights=matching_config.weights,
            max_distance_km=matching_config.max_distance_km,
        )
        naming = NamingService(config.naming, resolver=resolver)
        orchestrator = MatchingOrchestrator(
            repo,
            scorer,
            naming,
            config=matching_config,
            transition_config=config.transitions,
            resolver=resolver,
        )

        return cls(
            config=config,
            repo=repo,
            resolver=resolver,
            distance_calc=distance_calc,
            scorer=scorer,
            naming=naming,
            orchestrator=orchestrator,
            geocoding_client=geocoding_client,
        )

    @staticmethod
    def _build_repository(config: AppConfig, session_factory: Optional[sessionmaker]) -> CircleRepository:
        from database import database
        from database.repository import SqlCircleRepository

        if session_factory is None:
            session_factory = database.configure(config.database.url)
        return SqlCircleRepository(
            session_factory,
            default_life_stage_confidence=config.matching.default_life_stage_confidence,
        )

    @staticmethod
    def _build_geocoding_client(geocoding: GeocodingConfig) -> Optional[OpenCageClient]:
        """Build the OpenCage client, or None when geocoding is off or has no key."""
        if not geocoding.enabled:
            logger.info("Geocoding disabled in config; using cached coordinates and postal heuristics")
            return None
        if not geocoding.api_key:
            if geocoding.required:
                raise ConfigurationError("Geocoding is required but no API key is configured")
            logger.warning("No OpenCage API key configured; distances fall back to postal heuristics")
            return None

        return OpenCageClient(
            api_key=geocoding.api_key,
            base_url=geocoding.base_url,
            request_timeout_seconds=geocoding.request_timeout_seconds,
            max_attempts=geocoding.max_attempts,
            user_agent=geocoding.user_agent,
        )

    def close(self) -> None:
        self.resolver.close()
        if self.geocoding_client is not None:
            self.geocoding_client.close()
