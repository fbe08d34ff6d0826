"""
Runtime configuration for CareMatch
Values come from the environment (optionally a .env file) and are validated once.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from data_sources.error_handling import InvalidConfigurationError

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class MatchingSettings:
    """Service-level defaults for matching and demand aggregation."""
    search_radius_miles: float = 20.0
    grid_size_degrees: float = 0.01
    assumed_avg_capacity: float = 10.0
    recommendation_limit: int = 3
    nearby_limit: int = 10
    urgent_threshold: int = 2

    def __post_init__(self):
        """Validate configuration."""
        if self.search_radius_miles <= 0:
            raise InvalidConfigurationError("search_radius_miles must be > 0")
        if self.grid_size_degrees <= 0:
            raise InvalidConfigurationError("grid_size_degrees must be > 0")
        if self.assumed_avg_capacity < 0:
            raise InvalidConfigurationError("assumed_avg_capacity must be >= 0")
        if self.recommendation_limit < 1:
            raise InvalidConfigurationError("recommendation_limit must be >= 1")
        if self.nearby_limit < 1:
            raise InvalidConfigurationError("nearby_limit must be >= 1")
        if not 1 <= self.urgent_threshold <= 5:
            raise InvalidConfigurationError("urgent_threshold must be between 1 and 5")

    @classmethod
    def from_env(cls) -> "MatchingSettings":
        return cls(
            search_radius_miles=_env_float("CAREMATCH_SEARCH_RADIUS_MILES", 20.0),
            grid_size_degrees=_env_float("CAREMATCH_GRID_SIZE_DEGREES", 0.01),
            assumed_avg_capacity=_env_float("CAREMATCH_ASSUMED_AVG_CAPACITY", 10.0),
            recommendation_limit=_env_int("CAREMATCH_RECOMMENDATION_LIMIT", 3),
            nearby_limit=_env_int("CAREMATCH_NEARBY_LIMIT", 10),
            urgent_threshold=_env_int("CAREMATCH_URGENT_THRESHOLD", 2),
        )


@lru_cache(maxsize=1)
def get_settings() -> MatchingSettings:
    return MatchingSettings.from_env()
