import yaml
import os
from typing import List, Optional, Dict
from pydantic import BaseModel, Field, ValidationError, model_validator

from core.exceptions import ConfigurationError


class DatabaseConfig(BaseModel):
    url: str


class ScheduleConfig(BaseModel):
    interval_seconds: int = 3600


class GeocodingConfig(BaseModel):
    """
    Configuration for postal code geocoding (OpenCage).

    When no api_key is configured the resolver only consults the location
    cache and callers fall back to the postal prefix heuristic.
    """
    enabled: bool = True
    required: bool = False  # Missing api_key becomes a startup error
    api_key: Optional[str] = None
    base_url: str = "https://api.opencagedata.com/geocode/v1/json"
    country_code: str = "ca"
    user_agent: str = "CircleMatchingApp/1.0"

    # Free tier allows 1 request/sec
    rate_limit_interval_seconds: float = 1.1
    request_timeout_seconds: float = 10.0
    # Budget for all provider calls within one resolver lifetime (one run)
    operation_timeout_seconds: Optional[float] = 300.0
    max_attempts: int = 3

    # None = cached coordinates never expire
    cache_ttl_days: Optional[int] = None


class ScoreWeights(BaseModel):
    """Weights for each compatibility factor."""
    proximity: float = 0.40
    life_stage: float = 0.25
    spending_pattern: float = 0.25
    frequency: float = 0.10

    @model_validator(mode="after")
    def _check_weights(self) -> "ScoreWeights":
        values = [self.proximity, self.life_stage, self.spending_pattern, self.frequency]
        if any(v < 0 for v in values):
            raise ValueError("score weights must be non-negative")
        if sum(values) <= 0:
            raise ValueError("score weights must have a positive sum")
        return self


class RebalanceConfig(BaseModel):
    """Thresholds for the rebalance pass."""
    enabled: bool = True
    dominance_threshold: float = 0.6  # dominant life-stage share below this triggers rebalancing
    core_confidence_threshold: float = 0.7  # core members need confidence above this
    relocation_threshold: float = 0.8  # a better circle must score above this


class MatchingConfig(BaseModel):
    """
    Top-level matching configuration.
    """
    enabled: bool = True

    max_distance_km: float = 5.0
    min_circle_size: int = 3
    max_circle_size: int = 8

    placement_threshold: float = 0.7
    cohesion_factor: float = 1.2  # split candidate when mean distance > max_distance_km * factor

    # Used for ordering and core-membership when the classifier left it empty
    default_life_stage_confidence: float = 0.5

    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    rebalance: RebalanceConfig = Field(default_factory=RebalanceConfig)

    # Resolve member postal codes after forming a circle so later runs hit the cache
    warm_cache_on_create: bool = True

    # Threads used to load spending patterns during discovery
    read_workers: int = 4

    @model_validator(mode="after")
    def _check_sizes(self) -> "MatchingConfig":
        if self.min_circle_size < 1:
            raise ValueError("min_circle_size must be at least 1")
        if self.max_circle_size < self.min_circle_size:
            raise ValueError("max_circle_size must be >= min_circle_size")
        if self.max_distance_km <= 0:
            raise ValueError("max_distance_km must be positive")
        return self


class NamingConfig(BaseModel):
    """Configuration for circle names and descriptions."""
    placeholder: str = "Local"
    generic_spending_categories: List[str] = Field(
        default_factory=lambda: ["convenience", "premium"]
    )
    # First postal character -> city
    prefix_city_map: Dict[str, str] = Field(default_factory=lambda: {
        "M": "Toronto",
        "K": "Ottawa",
        "V": "Vancouver",
        "T": "Calgary",
        "R": "Winnipeg",
    })


class TransitionConfig(BaseModel):
    """Configuration for the dual-membership transition window and its worker."""
    grace_hours: float = 48.0
    poll_interval_seconds: int = 60
    batch_size: int = 100
    max_attempts: int = 5


class AppConfig(BaseModel):
    database: DatabaseConfig
    geocoding: GeocodingConfig = Field(default_factory=GeocodingConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    naming: NamingConfig = Field(default_factory=NamingConfig)
    transitions: TransitionConfig = Field(default_factory=TransitionConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    lock_file: str = "matching.lock"


def load_config(config_path: str = "config.yaml") -> AppConfig:
    # If not found at relative path (e.g. running from root), try absolute or adjusted path
    if not os.path.exists(config_path):
        base_dir = os.path.dirname(os.path.abspath(__file__))
        config_path = os.path.join(base_dir, "..", "config.yaml")

    data = {}
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

    # Allow env var override for DB URL
    env_db_url = os.environ.get("DATABASE_URL")
    if env_db_url:
        data.setdefault('database', {})
        data['database']['url'] = env_db_url

    # Allow env var override for geocoding credentials
    env_api_key = os.environ.get("OPENCAGE_API_KEY")
    if env_api_key:
        if not data.get('geocoding'):
            data['geocoding'] = {}
        data['geocoding']['api_key'] = env_api_key

    env_country = os.environ.get("GEOCODING_COUNTRY")
    if env_country:
        if not data.get('geocoding'):
            data['geocoding'] = {}
        data['geocoding']['country_code'] = env_country.lower()

    if not (data.get('database') or {}).get('url'):
        raise ConfigurationError(
            "Missing database URL. Set database.url in config.yaml or DATABASE_URL."
        )

    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    geocoding = config.geocoding
    if geocoding.enabled and geocoding.required and not geocoding.api_key:
        raise ConfigurationError(
            "Geocoding is required but no API key is configured. Set OPENCAGE_API_KEY."
        )

    # Relative lock paths are anchored at the config file's directory
    if not os.path.isabs(config.lock_file):
        config.lock_file = os.path.join(os.path.dirname(os.path.abspath(config_path)), config.lock_file)

    return config
