"""
Request / Provider Store
In-process stand-in for the managed relational backend

Holds patient requests and providers behind a lock and answers the handful of
queries the matcher and aggregator need:

- nearby active providers for a point (the geo-query collaborator)
- pending requests ordered by urgency, optionally inside a bounding box
  or within a radius of a point
- conditional status updates (compare-and-swap on status) for settlement
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from data_sources.error_handling import InvalidConfigurationError, NotFoundError
from data_sources.utils import find_nearest, require_coordinates
from logging_config import get_logger
from matching.models import (
    Bounds,
    PatientRequest,
    Provider,
    ProviderSnapshot,
    RequestStatus,
    ServiceType,
)

logger = get_logger(__name__)

DEFAULT_AREA_RADIUS_MILES = 10.0


def _queue_order(request: PatientRequest):
    return (request.urgency_level, request.created_at, request.id)


class RequestStore:
    """Thread-safe in-memory store for requests and providers."""

    def __init__(self):
        self._lock = threading.RLock()
        self._requests: Dict[str, PatientRequest] = {}
        self._providers: Dict[str, Provider] = {}

    # Requests

    def add_request(self, request: PatientRequest) -> PatientRequest:
        with self._lock:
            self._requests[request.id] = request
        logger.debug(f"Stored request {request.id} ({request.requested_service.value})")
        return request

    def get_request(self, request_id: str) -> PatientRequest:
        """Return a copy of a request; raises NotFoundError when missing."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise NotFoundError(f"Request {request_id} not found", "request", request_id)
            return replace(request)

    def all_requests(self) -> List[PatientRequest]:
        with self._lock:
            return [replace(r) for r in self._requests.values()]

    def pending_requests(self, bounds: Optional[Bounds] = None,
                         start: Optional[datetime] = None,
                         end: Optional[datetime] = None) -> List[PatientRequest]:
        """
        Pending requests, most urgent first, then oldest first.

        Args:
            bounds: Optional bounding box filter
            start, end: Optional inclusive created_at range

        Returns:
            List of request copies
        """
        if bounds is not None:
            bounds.validate()
        with self._lock:
            pending = [
                replace(r) for r in self._requests.values()
                if r.status is RequestStatus.PENDING
                and (bounds is None or bounds.contains(r.lat, r.lon))
                and (start is None or r.created_at >= start)
                and (end is None or r.created_at <= end)
            ]
        pending.sort(key=_queue_order)
        return pending

    def pending_requests_near(self, lat: float, lon: float,
                              radius_miles: float = DEFAULT_AREA_RADIUS_MILES) -> List[PatientRequest]:
        """Pending requests within ``radius_miles`` of a point, most urgent then oldest first."""
        require_coordinates(lat, lon, label="search centre")
        if radius_miles <= 0:
            raise InvalidConfigurationError("radius_miles must be > 0")
        with self._lock:
            pending = [replace(r) for r in self._requests.values()
                       if r.status is RequestStatus.PENDING]
        nearby = [entry["item"] for entry in find_nearest(pending, lat, lon, max_distance_miles=radius_miles)]
        nearby.sort(key=_queue_order)
        return nearby

    def update_request_if_status(self, request_id: str, expected_status: RequestStatus,
                                 **changes) -> bool:
        """
        Apply ``changes`` only if the request still has ``expected_status``.

        Returns:
            True if the update was applied, False if the status had moved on
        """
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise NotFoundError(f"Request {request_id} not found", "request", request_id)
            if current.status is not expected_status:
                logger.info(
                    f"Skipped update of request {request_id}: status is "
                    f"{current.status.value}, expected {expected_status.value}"
                )
                return False
            if "status" in changes:
                current.check_transition(changes["status"])
            # replace() re-runs validation on the new field values
            self._requests[request_id] = replace(current, **changes)
            return True

    def transition_request(self, request_id: str, new_status: RequestStatus,
                           **changes) -> PatientRequest:
        """
        Move a request along its lifecycle (cancel, fulfil, manual match).

        Raises:
            NotFoundError: unknown request
            InvalidTransitionError: the lifecycle forbids the move
        """
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise NotFoundError(f"Request {request_id} not found", "request", request_id)
            status = current.check_transition(new_status)
            updated = replace(current, status=status, **changes)
            self._requests[request_id] = updated
            logger.info(f"Request {request_id}: {current.status.value} -> {status.value}")
            return replace(updated)

    # Providers

    def add_provider(self, provider: Provider) -> Provider:
        with self._lock:
            self._providers[provider.id] = provider
        logger.debug(f"Stored provider {provider.id} ({provider.name})")
        return provider

    def get_provider(self, provider_id: str) -> Provider:
        with self._lock:
            provider = self._providers.get(provider_id)
            if provider is None:
                raise NotFoundError(f"Provider {provider_id} not found", "provider", provider_id)
            return replace(provider)

    def providers_in_bounds(self, bounds: Bounds) -> List[Provider]:
        bounds.validate()
        with self._lock:
            return [
                replace(p) for p in self._providers.values()
                if p.is_active and bounds.contains(p.lat, p.lon)
            ]

    def find_nearby_providers(self, lat: float, lon: float,
                              max_distance_miles: float = 20.0,
                              service: Optional[ServiceType] = None,
                              limit: int = 10) -> ProviderSnapshot:
        """
        Active providers within ``max_distance_miles`` of a point, nearest first.

        Args:
            lat, lon: Search centre
            max_distance_miles: Search radius
            service: Only providers offering this service (all when None)
            limit: Maximum number of providers returned

        Returns:
            ProviderSnapshot of provider copies taken under the store lock
        """
        require_coordinates(lat, lon, label="search centre")
        if max_distance_miles <= 0:
            raise InvalidConfigurationError("max_distance_miles must be > 0")
        if limit < 1:
            raise InvalidConfigurationError("limit must be >= 1")

        with self._lock:
            candidates = [
                replace(p) for p in self._providers.values()
                if p.is_active and (service is None or p.offers(service))
            ]
            snapshot_time = datetime.now(timezone.utc)

        nearest = find_nearest(candidates, lat, lon, max_distance_miles=max_distance_miles)
        providers = tuple(entry["item"] for entry in nearest[:limit])
        return ProviderSnapshot(providers=providers, taken_at=snapshot_time)

    def clear(self) -> None:
        with self._lock:
            self._requests.clear()
            self._providers.clear()
