"""
Provider Suitability Scoring
Scores one provider against one patient request

A score starts at 1.0 and is multiplied by one factor per active
consideration:

- Distance: closer providers keep more of their score (never below 30%)
- Capacity: shorter current wait keeps more of the score (never below 50%)
- Fragility: mobile and pop-up services get a boost, modelling priority for
  underserved areas
- Urgency: for urgent requests, fast providers get a bonus and slow ones a
  penalty (applied under every algorithm)

The final score is clamped to [0, 1]. Every constant lives in
ScoringConstants so the heuristics can be tuned without code changes.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from data_sources.error_handling import InvalidConfigurationError, ValidationError
from matching.models import (
    FactorBreakdown,
    PatientRequest,
    Provider,
    ProviderType,
    ScoredCandidate,
)


class Factor(Enum):
    """Considerations an algorithm can switch on."""
    DISTANCE = "distance"
    CAPACITY = "capacity"
    FRAGILITY = "fragility"


class Algorithm(Enum):
    """Matching strategies; each one activates a set of factors."""
    DISTANCE = "distance"
    CAPACITY = "capacity"
    FRAGILITY = "fragility"
    SMART = "smart"

    @property
    def factors(self) -> FrozenSet[Factor]:
        return ALGORITHM_FACTORS[self]

    def uses(self, factor: Factor) -> bool:
        return factor in ALGORITHM_FACTORS[self]

    @classmethod
    def parse(cls, value: Union[str, "Algorithm"]) -> "Algorithm":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(a.value for a in cls)
            raise ValidationError(f"Unknown algorithm {value!r}; expected one of: {allowed}")


ALGORITHM_FACTORS: Dict[Algorithm, FrozenSet[Factor]] = {
    Algorithm.DISTANCE: frozenset({Factor.DISTANCE}),
    Algorithm.CAPACITY: frozenset({Factor.CAPACITY}),
    Algorithm.FRAGILITY: frozenset({Factor.FRAGILITY}),
    Algorithm.SMART: frozenset({Factor.DISTANCE, Factor.CAPACITY, Factor.FRAGILITY}),
}


@dataclass(frozen=True)
class MatchWeights:
    """
    Relative importance of each factor under the smart algorithm.

    A factor's multiplier is raised to ``weight / default_weight``, so the
    defaults reproduce the plain multipliers, 0 switches a factor off and a
    larger weight sharpens its effect.
    """
    distance: float = 0.3
    capacity: float = 0.3
    fragility: float = 0.2
    wait_time: float = 0.2

    def __post_init__(self):
        for name in ("distance", "capacity", "fragility", "wait_time"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidConfigurationError(f"weight {name} must be a finite number, got {value!r}")
            if not 0.0 <= value <= 1.0:
                raise InvalidConfigurationError(f"weight {name} must be between 0 and 1, got {value}")

    def exponent(self, name: str) -> float:
        return getattr(self, name) / getattr(DEFAULT_WEIGHTS, name)


DEFAULT_WEIGHTS = MatchWeights()


@dataclass(frozen=True)
class ScoringConstants:
    """Named heuristic constants for provider scoring."""
    search_radius_miles: float = 20.0
    distance_floor: float = 0.3         # share of score kept at/after the radius
    distance_span: float = 0.7
    wait_ceiling_minutes: float = 120.0
    wait_floor: float = 0.5             # share of score kept at/after the ceiling
    wait_span: float = 0.5
    fragility_multiplier: float = 1.2
    fragile_provider_types: FrozenSet[ProviderType] = field(
        default_factory=lambda: frozenset({ProviderType.MOBILE, ProviderType.POP_UP})
    )
    urgency_threshold: int = 2          # urgency_level <= this counts as urgent
    fast_wait_minutes: float = 30.0
    urgency_bonus: float = 1.2
    urgency_penalty: float = 0.8
    max_score: float = 1.0

    def __post_init__(self):
        if self.search_radius_miles <= 0:
            raise InvalidConfigurationError("search_radius_miles must be > 0")
        if self.wait_ceiling_minutes <= 0:
            raise InvalidConfigurationError("wait_ceiling_minutes must be > 0")
        if not 0 < self.max_score <= 1:
            raise InvalidConfigurationError("max_score must be in (0, 1]")


DEFAULT_CONSTANTS = ScoringConstants()


def _search_radius(search_radius_miles: Optional[float], constants: ScoringConstants) -> float:
    radius = constants.search_radius_miles if search_radius_miles is None else search_radius_miles
    if isinstance(radius, bool) or not isinstance(radius, (int, float)) or not math.isfinite(radius) or radius <= 0:
        raise InvalidConfigurationError(f"search_radius_miles must be > 0, got {radius!r}")
    return radius


def distance_multiplier(distance_miles: float, constants: ScoringConstants,
                        search_radius_miles: Optional[float] = None) -> float:
    """Score share kept for a provider ``distance_miles`` away."""
    radius = _search_radius(search_radius_miles, constants)
    distance_factor = max(0.0, 1.0 - distance_miles / radius)
    return constants.distance_floor + constants.distance_span * distance_factor


def wait_multiplier(wait_time: Optional[int], constants: ScoringConstants) -> float:
    """Score share kept for a provider's current wait; 1.0 when unknown."""
    if wait_time is None:
        return 1.0
    wait_factor = max(0.0, 1.0 - wait_time / constants.wait_ceiling_minutes)
    return constants.wait_floor + constants.wait_span * wait_factor


def fragility_multiplier(provider: Provider, constants: ScoringConstants) -> float:
    if provider.provider_type in constants.fragile_provider_types:
        return constants.fragility_multiplier
    return 1.0


def urgency_multiplier(request: PatientRequest, wait_time: Optional[int],
                       constants: ScoringConstants) -> float:
    """Bonus/penalty for urgent requests based on the provider's wait."""
    if request.urgency_level > constants.urgency_threshold or wait_time is None:
        return 1.0
    if wait_time < constants.fast_wait_minutes:
        return constants.urgency_bonus
    return constants.urgency_penalty


def score_provider(request: PatientRequest,
                   provider: Provider,
                   distance_miles: float,
                   algorithm: Union[str, Algorithm] = Algorithm.SMART,
                   weights: Optional[MatchWeights] = None,
                   constants: Optional[ScoringConstants] = None,
                   search_radius_miles: Optional[float] = None) -> ScoredCandidate:
    """
    Score a single provider for a request.

    Args:
        request: Patient request being matched
        provider: Candidate provider (already radius/active filtered)
        distance_miles: Distance between the request and the provider
        algorithm: Which factors to apply
        weights: Factor weights, only honoured by the smart algorithm
        constants: Heuristic constants (defaults when omitted)
        search_radius_miles: Radius used to pre-filter the candidates

    Returns:
        ScoredCandidate with the clamped score and per-factor multipliers
    """
    algorithm = Algorithm.parse(algorithm)
    constants = constants or DEFAULT_CONSTANTS
    if algorithm is not Algorithm.SMART or weights is None:
        weights = DEFAULT_WEIGHTS
    if distance_miles is None or distance_miles < 0 or not math.isfinite(distance_miles):
        raise ValidationError(f"Invalid distance {distance_miles!r} for provider {provider.id}")
    search_radius_miles = _search_radius(search_radius_miles, constants)

    wait_time = provider.current_wait_time
    distance_m = capacity_m = fragility_m = 1.0

    if algorithm.uses(Factor.DISTANCE):
        distance_m = distance_multiplier(distance_miles, constants, search_radius_miles)
        distance_m **= weights.exponent("distance")

    if algorithm.uses(Factor.CAPACITY):
        capacity_m = wait_multiplier(wait_time, constants) ** weights.exponent("capacity")

    if algorithm.uses(Factor.FRAGILITY):
        fragility_m = fragility_multiplier(provider, constants) ** weights.exponent("fragility")

    urgency_m = urgency_multiplier(request, wait_time, constants) ** weights.exponent("wait_time")

    score = 1.0 * distance_m * capacity_m * fragility_m * urgency_m
    score = max(0.0, min(constants.max_score, score))

    return ScoredCandidate(
        provider_id=provider.id,
        provider_name=provider.name,
        distance_miles=distance_miles,
        wait_time=wait_time,
        score=score,
        factors=FactorBreakdown(
            distance=distance_m,
            capacity=capacity_m,
            fragility=fragility_m,
            wait_time=urgency_m,
        ),
    )
