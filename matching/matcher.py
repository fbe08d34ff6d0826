"""
Request-to-Provider Matching
Ranks candidate providers for a patient request and settles the best one

Candidates arrive already filtered to the search radius and to active status
(see RequestStore.find_nearby_providers); nothing here re-filters them.
Distance lookups are independent per candidate and may run in parallel; the
results are joined before sorting.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Union

from data_sources.error_handling import InvalidConfigurationError
from data_sources.telemetry import record_error, record_match_metrics
from data_sources.utils import haversine_miles, require_coordinates
from logging_config import get_logger, log_error, log_match_calculation, log_performance
from matching.models import PatientRequest, Provider, RequestStatus, ScoredCandidate
from matching.scoring import (
    DEFAULT_CONSTANTS,
    Algorithm,
    MatchWeights,
    ScoringConstants,
    score_provider,
)

if TYPE_CHECKING:
    from data_sources.request_store import RequestStore

logger = get_logger(__name__)

DistanceFn = Callable[[float, float, float, float], float]

DEFAULT_RECOMMENDATION_LIMIT = 3
DEFAULT_NEARBY_LIMIT = 10

# Candidate lists above this size get their distances computed in a pool
PARALLEL_DISTANCE_THRESHOLD = 32


@dataclass
class AutoMatchResult:
    """Outcome of a batch pass over pending requests."""
    processed: int = 0
    matched: int = 0
    failed: int = 0

    def to_dict(self):
        return {"processed": self.processed, "matched": self.matched, "failed": self.failed}


def _ranking_key(candidate: ScoredCandidate):
    # score desc, then nearest, then provider id for full determinism
    return (-candidate.score, candidate.distance_miles, candidate.provider_id)


def _distances(request: PatientRequest, providers: List[Provider],
               distance_fn: DistanceFn) -> List[float]:
    def _one(provider: Provider) -> float:
        return distance_fn(request.lat, request.lon, provider.lat, provider.lon)

    if len(providers) < PARALLEL_DISTANCE_THRESHOLD:
        return [_one(p) for p in providers]
    with ThreadPoolExecutor(max_workers=8) as executor:
        return list(executor.map(_one, providers))


def match_request_to_providers(request: PatientRequest,
                               candidate_providers: Iterable[Provider],
                               algorithm: Union[str, Algorithm] = Algorithm.SMART,
                               weights: Optional[MatchWeights] = None,
                               *,
                               search_radius_miles: Optional[float] = None,
                               top_n: Optional[int] = None,
                               distance_fn: DistanceFn = haversine_miles,
                               constants: Optional[ScoringConstants] = None) -> List[ScoredCandidate]:
    """
    Rank candidate providers for a request.

    Args:
        request: Request with a valid location
        candidate_providers: Providers pre-filtered to the radius and active
        algorithm: distance, capacity, fragility or smart
        weights: Factor weights (smart only); defaults when omitted
        search_radius_miles: Radius the candidates were filtered with
        top_n: Keep only the best N candidates (all when None)
        distance_fn: Geo-distance primitive returning miles
        constants: Scoring constants override

    Returns:
        Candidates ordered by score (desc), distance (asc), provider id (asc).
        An empty candidate list yields an empty ranking.
    """
    start_time = time.time()
    algorithm = Algorithm.parse(algorithm)
    constants = constants or DEFAULT_CONSTANTS
    radius = search_radius_miles if search_radius_miles is not None else constants.search_radius_miles
    if radius <= 0:
        raise InvalidConfigurationError(f"search_radius_miles must be > 0, got {radius}")
    if top_n is not None and top_n < 1:
        raise InvalidConfigurationError(f"top_n must be >= 1, got {top_n}")

    require_coordinates(request.lat, request.lon, label=f"request {request.id}")
    providers = list(candidate_providers)
    for provider in providers:
        require_coordinates(provider.lat, provider.lon, label=f"provider {provider.id}")

    if not providers:
        log_match_calculation(logger, request.id, algorithm.value, 0)
        return []

    distances = _distances(request, providers, distance_fn)
    ranked = [
        score_provider(request, provider, distance, algorithm, weights, constants, radius)
        for provider, distance in zip(providers, distances)
    ]
    ranked.sort(key=_ranking_key)
    if top_n is not None:
        ranked = ranked[:top_n]

    log_match_calculation(logger, request.id, algorithm.value, len(providers),
                          best_score=ranked[0].score)
    log_performance(logger, "match_request_to_providers", time.time() - start_time,
                    request_id=request.id)
    return ranked


def recommend_providers(request: PatientRequest,
                        candidate_providers: Iterable[Provider],
                        algorithm: Union[str, Algorithm] = Algorithm.SMART,
                        weights: Optional[MatchWeights] = None,
                        limit: int = DEFAULT_RECOMMENDATION_LIMIT,
                        **kwargs) -> List[ScoredCandidate]:
    """Top ``limit`` candidates for display; never writes anything back."""
    return match_request_to_providers(request, candidate_providers, algorithm, weights,
                                      top_n=limit, **kwargs)


def settle_best_match(store: "RequestStore", request: PatientRequest,
                      ranked: List[ScoredCandidate]) -> Optional[ScoredCandidate]:
    """
    Write the top candidate back onto the request.

    The write only happens while the request is still pending, so two
    concurrent settlements cannot both win. Returns the settled candidate,
    or None when there was nothing to settle or the request had moved on.
    """
    if not ranked:
        return None
    best = ranked[0]
    applied = store.update_request_if_status(
        request.id,
        RequestStatus.PENDING,
        status=RequestStatus.MATCHED,
        matched_provider_id=best.provider_id,
        match_score=best.score,
    )
    if not applied:
        logger.info(f"Request {request.id} was settled elsewhere; keeping existing match")
        return None
    logger.info(f"Request {request.id} matched to {best.provider_id} (score {best.score:.3f})")
    return best


def match_and_settle(store: "RequestStore", request_id: str,
                     algorithm: Union[str, Algorithm] = Algorithm.SMART,
                     weights: Optional[MatchWeights] = None,
                     search_radius_miles: Optional[float] = None,
                     nearby_limit: int = DEFAULT_NEARBY_LIMIT,
                     constants: Optional[ScoringConstants] = None):
    """
    Rank nearby providers for a stored request and settle the best match.

    Returns:
        Tuple of (ranked candidates, settled candidate or None)
    """
    start_time = time.time()
    algorithm = Algorithm.parse(algorithm)
    constants = constants or DEFAULT_CONSTANTS
    radius = search_radius_miles if search_radius_miles is not None else constants.search_radius_miles

    request = store.get_request(request_id)
    snapshot = store.find_nearby_providers(
        request.lat, request.lon,
        max_distance_miles=radius,
        service=request.requested_service,
        limit=nearby_limit,
    )
    ranked = match_request_to_providers(
        request, snapshot, algorithm, weights,
        search_radius_miles=radius, constants=constants,
    )
    settled = settle_best_match(store, request, ranked) if request.status is RequestStatus.PENDING else None

    record_match_metrics(
        request_id=request.id,
        algorithm=algorithm.value,
        candidate_count=len(ranked),
        best_score=ranked[0].score if ranked else None,
        settled=settled is not None,
        response_time=time.time() - start_time,
    )
    return ranked, settled


def auto_match_pending(store: "RequestStore",
                       algorithm: Union[str, Algorithm] = Algorithm.SMART,
                       weights: Optional[MatchWeights] = None,
                       **kwargs) -> AutoMatchResult:
    """
    Try to settle every pending request, most urgent and oldest first.

    A failure on one request is logged and counted; the batch carries on.
    """
    result = AutoMatchResult()
    for request in store.pending_requests():
        result.processed += 1
        try:
            _, settled = match_and_settle(store, request.id, algorithm, weights, **kwargs)
        except Exception as e:
            result.failed += 1
            log_error(logger, "auto_match", f"Error matching request {request.id}: {e}",
                      request_id=request.id)
            record_error("auto_match")
            continue
        if settled is not None:
            result.matched += 1

    logger.info(f"Auto-match processed {result.processed} requests, matched {result.matched}")
    return result
