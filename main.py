from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import time
from datetime import datetime, timezone
from typing import Optional, List
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()

from config import get_settings
from logging_config import get_logger, setup_logging
from data_sources.error_handling import (
    CareMatchError,
    NO_COVERAGE_MESSAGE,
    USER_FACING_MATCH_ERROR,
    error_status_code,
)
from data_sources.request_store import DEFAULT_AREA_RADIUS_MILES, RequestStore
from data_sources.telemetry import get_telemetry_stats, record_error, record_match_metrics
from matching.demand import DemandMetric, aggregate_demand
from matching.matcher import (
    auto_match_pending,
    match_and_settle,
    match_request_to_providers,
    recommend_providers,
)
from matching.models import Bounds, PatientRequest, Provider, RequestStatus
from matching.scoring import Algorithm, MatchWeights, ScoringConstants
from matching.statistics import request_statistics, urgent_requests

setup_logging()
logger = get_logger(__name__)

VERSION = "1.0.0"

settings = get_settings()
scoring_constants = ScoringConstants(
    search_radius_miles=settings.search_radius_miles,
    urgency_threshold=settings.urgent_threshold,
)
store = RequestStore()


##########################
# REQUEST BODIES
##########################

class PatientRequestIn(BaseModel):
    geo_lat: float = Field(..., ge=-90, le=90)
    geo_long: float = Field(..., ge=-180, le=180)
    requested_service: str
    urgency_level: int = Field(3, ge=1, le=5)
    id: Optional[str] = None

    def to_entity(self) -> PatientRequest:
        kwargs = {}
        if self.id:
            kwargs["id"] = self.id
        return PatientRequest(
            lat=self.geo_lat,
            lon=self.geo_long,
            requested_service=self.requested_service,
            urgency_level=self.urgency_level,
            **kwargs,
        )


class ProviderIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: str
    geo_lat: float = Field(..., ge=-90, le=90)
    geo_long: float = Field(..., ge=-180, le=180)
    services: List[str] = []
    capacity: Optional[int] = Field(None, gt=0)
    current_wait_time: Optional[int] = Field(None, ge=0)
    is_active: bool = True
    id: Optional[str] = None

    def to_entity(self) -> Provider:
        kwargs = {}
        if self.id:
            kwargs["id"] = self.id
        return Provider(
            name=self.name,
            provider_type=self.type,
            lat=self.geo_lat,
            lon=self.geo_long,
            services=frozenset(self.services),
            capacity=self.capacity,
            current_wait_time=self.current_wait_time,
            is_active=self.is_active,
            **kwargs,
        )


class WeightsIn(BaseModel):
    distance: float = Field(0.3, ge=0, le=1)
    capacity: float = Field(0.3, ge=0, le=1)
    fragility: float = Field(0.2, ge=0, le=1)
    waitTime: float = Field(0.2, ge=0, le=1)

    def to_weights(self) -> MatchWeights:
        return MatchWeights(
            distance=self.distance,
            capacity=self.capacity,
            fragility=self.fragility,
            wait_time=self.waitTime,
        )


class MatchIn(BaseModel):
    request: PatientRequestIn
    providers: List[ProviderIn]
    algorithm: str = "smart"
    weights: Optional[WeightsIn] = None
    searchRadiusMiles: Optional[float] = Field(None, gt=0)
    topN: Optional[int] = Field(None, ge=1)


class SettleIn(BaseModel):
    algorithm: str = "smart"
    weights: Optional[WeightsIn] = None


class StatusIn(BaseModel):
    status: str
    matchedProviderId: Optional[str] = None
    matchScore: Optional[float] = Field(None, ge=0, le=1)


class BoundsIn(BaseModel):
    north: float
    south: float
    east: float
    west: float

    def to_bounds(self) -> Bounds:
        return Bounds(north=self.north, south=self.south, east=self.east, west=self.west)


class TimeRangeIn(BaseModel):
    start: datetime
    end: datetime


class HeatmapIn(BaseModel):
    bounds: BoundsIn
    gridSize: Optional[float] = None
    metric: str = "requests"
    timeRange: Optional[TimeRangeIn] = None
    includeProviders: bool = True


def _weights(body: Optional[WeightsIn]) -> Optional[MatchWeights]:
    return body.to_weights() if body is not None else None


def _record_ranking(request_id: str, algorithm: str, ranked, start_time: float) -> None:
    # ranking-only calls; settlements are recorded by match_and_settle
    record_match_metrics(
        request_id=request_id,
        algorithm=Algorithm.parse(algorithm).value,
        candidate_count=len(ranked),
        best_score=ranked[0].score if ranked else None,
        settled=False,
        response_time=time.time() - start_time,
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


app = FastAPI(
    title="CareMatch API",
    description="Provider matching and demand aggregation for healthcare access",
    version=VERSION
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CareMatchError)
def carematch_error_handler(request: Request, exc: CareMatchError):
    status_code = error_status_code(exc)
    record_error(type(exc).__name__)
    if status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": USER_FACING_MATCH_ERROR})
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    record_error("unexpected")
    logger.exception(f"{request.url.path} failed unexpectedly: {exc}")
    return JSONResponse(status_code=500, content={"detail": USER_FACING_MATCH_ERROR})


@app.get("/")
def root():
    """Health check endpoint."""
    return {
        "service": "CareMatch API",
        "status": "running",
        "version": VERSION,
        "algorithms": {a.value: sorted(f.value for f in a.factors) for a in Algorithm},
        "metrics": [m.value for m in DemandMetric],
        "endpoints": {
            "match": "POST /match",
            "heatmap": "POST /heatmap",
            "docs": "/docs"
        }
    }


@app.get("/health")
def health_check():
    """Detailed health check with configuration summary."""
    return {
        "status": "healthy",
        "version": VERSION,
        "settings": {
            "search_radius_miles": settings.search_radius_miles,
            "grid_size_degrees": settings.grid_size_degrees,
            "assumed_avg_capacity": settings.assumed_avg_capacity,
            "recommendation_limit": settings.recommendation_limit,
        },
        "store": {
            "requests": len(store.all_requests()),
        }
    }


@app.post("/requests", status_code=201)
def create_request(body: PatientRequestIn):
    """Create a new patient request (status pending)."""
    request = store.add_request(body.to_entity())
    logger.info(f"Created request {request.id} ({request.requested_service.value}, urgency {request.urgency_level})")
    return request.to_dict()


@app.get("/requests/urgent")
def get_urgent_requests(max_urgency_level: Optional[int] = None, limit: int = 20):
    """Pending urgent requests for the provider dashboard."""
    threshold = max_urgency_level if max_urgency_level is not None else settings.urgent_threshold
    return [r.to_dict() for r in urgent_requests(store, threshold, limit)]


@app.get("/requests/pending")
def get_pending_by_area(lat: float = Query(..., ge=-90, le=90),
                        lng: float = Query(..., ge=-180, le=180),
                        radiusMiles: float = Query(DEFAULT_AREA_RADIUS_MILES, gt=0)):
    """Pending requests around a point, most urgent then oldest first."""
    return [r.to_dict() for r in store.pending_requests_near(lat, lng, radiusMiles)]


@app.post("/requests/auto-match")
def auto_match_endpoint(body: Optional[SettleIn] = None):
    """Batch-settle all pending requests."""
    body = body or SettleIn()
    result = auto_match_pending(
        store, body.algorithm, _weights(body.weights),
        search_radius_miles=settings.search_radius_miles,
        nearby_limit=settings.nearby_limit,
        constants=scoring_constants,
    )
    return result.to_dict()


@app.get("/requests/{request_id}")
def get_request(request_id: str):
    return store.get_request(request_id).to_dict()


@app.post("/requests/{request_id}/cancel")
def cancel_request(request_id: str):
    store.transition_request(request_id, RequestStatus.CANCELLED)
    return {"success": True}


@app.post("/requests/{request_id}/status")
def update_request_status(request_id: str, body: StatusIn):
    """Move a request along its lifecycle (admin/provider)."""
    changes = {}
    if body.matchedProviderId:
        changes["matched_provider_id"] = body.matchedProviderId
    if body.matchScore is not None:
        changes["match_score"] = body.matchScore
    updated = store.transition_request(request_id, body.status, **changes)
    return updated.to_dict()


@app.post("/requests/{request_id}/match")
def match_stored_request(request_id: str, body: Optional[SettleIn] = None):
    """Rank nearby providers for a stored request and settle the best one."""
    body = body or SettleIn()
    ranked, settled = match_and_settle(
        store, request_id, body.algorithm, _weights(body.weights),
        search_radius_miles=settings.search_radius_miles,
        nearby_limit=settings.nearby_limit,
        constants=scoring_constants,
    )
    response = {
        "matches": [c.to_dict() for c in ranked],
        "settled": settled.to_dict() if settled else None,
    }
    if not ranked:
        response["message"] = NO_COVERAGE_MESSAGE
    return response


@app.get("/requests/{request_id}/recommendations")
def get_recommendations(request_id: str, algorithm: str = "smart", limit: Optional[int] = None):
    """Top providers for a stored request, without settling."""
    start_time = time.time()
    request = store.get_request(request_id)
    snapshot = store.find_nearby_providers(
        request.lat, request.lon,
        max_distance_miles=settings.search_radius_miles,
        service=request.requested_service,
        limit=settings.nearby_limit,
    )
    ranked = recommend_providers(
        request, snapshot, algorithm,
        limit=limit if limit is not None else settings.recommendation_limit,
        search_radius_miles=settings.search_radius_miles,
        constants=scoring_constants,
    )
    _record_ranking(request.id, algorithm, ranked, start_time)
    return {
        "recommendations": [c.to_dict() for c in ranked],
        "snapshotTakenAt": snapshot.taken_at.isoformat(),
    }


@app.post("/providers", status_code=201)
def create_provider(body: ProviderIn):
    provider = store.add_provider(body.to_entity())
    return provider.to_dict()


@app.get("/providers/{provider_id}")
def get_provider(provider_id: str):
    return store.get_provider(provider_id).to_dict()


@app.post("/match")
def match_endpoint(body: MatchIn):
    """
    Rank a posted candidate list against a posted request.

    Stateless: nothing is written back. Candidates are expected to be
    pre-filtered to the search radius and to active providers.
    """
    start_time = time.time()
    request = body.request.to_entity()
    providers = [p.to_entity() for p in body.providers]
    ranked = match_request_to_providers(
        request, providers, body.algorithm, _weights(body.weights),
        search_radius_miles=body.searchRadiusMiles or settings.search_radius_miles,
        top_n=body.topN,
        constants=scoring_constants,
    )
    _record_ranking(request.id, body.algorithm, ranked, start_time)
    response = {"matches": [c.to_dict() for c in ranked]}
    if not ranked:
        response["message"] = NO_COVERAGE_MESSAGE
    return response


@app.post("/heatmap")
def heatmap_endpoint(body: HeatmapIn):
    """Grid pending requests inside the bounds into demand cells."""
    bounds = body.bounds.to_bounds().validate()
    start = _as_utc(body.timeRange.start) if body.timeRange else None
    end = _as_utc(body.timeRange.end) if body.timeRange else None
    requests = store.pending_requests(bounds=bounds, start=start, end=end)
    providers = store.providers_in_bounds(bounds) if body.includeProviders else []
    cells = aggregate_demand(
        requests, providers, bounds,
        grid_size_degrees=body.gridSize if body.gridSize is not None else settings.grid_size_degrees,
        metric=body.metric,
        assumed_avg_capacity=settings.assumed_avg_capacity,
    )
    return {
        "cells": [c.to_dict() for c in cells],
        "totalRequests": len(requests),
        "totalProviders": len(providers),
    }


@app.get("/statistics")
def statistics_endpoint(start: Optional[datetime] = None, end: Optional[datetime] = None):
    """Request statistics for analytics."""
    return request_statistics(store.all_requests(), start=_as_utc(start), end=_as_utc(end))


@app.get("/telemetry")
def telemetry_endpoint():
    """Get telemetry and analytics data."""
    try:
        stats = get_telemetry_stats()
        return {
            "status": "success",
            "telemetry": stats
        }
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Telemetry failed: {e}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
