"""
Entities shared by the matcher and the demand aggregator.

PatientRequest and Provider mirror the stored records; ScoredCandidate and
DemandCell are derived per call and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple
import uuid

from data_sources.error_handling import (
    InvalidBoundsError,
    InvalidTransitionError,
    ValidationError,
)
from data_sources.utils import require_coordinates


class ServiceType(Enum):
    """Care categories a patient can request and a provider can offer."""
    GENERAL = "general"
    DENTAL = "dental"
    MATERNAL_CARE = "maternal_care"
    URGENT_CARE = "urgent_care"
    MENTAL_HEALTH = "mental_health"
    PEDIATRIC = "pediatric"
    VACCINATION = "vaccination"
    SPECIALTY = "specialty"
    DIAGNOSTIC = "diagnostic"


class ProviderType(Enum):
    """Facility / service delivery models."""
    CLINIC = "clinic"
    PHARMACY = "pharmacy"
    TELEHEALTH = "telehealth"
    HOSPITAL = "hospital"
    POP_UP = "pop_up"
    MOBILE = "mobile"
    URGENT_CARE = "urgent_care"


class RequestStatus(Enum):
    """Request lifecycle states."""
    PENDING = "pending"
    MATCHED = "matched"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "RequestStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.MATCHED, RequestStatus.CANCELLED}),
    RequestStatus.MATCHED: frozenset({RequestStatus.FULFILLED}),
    RequestStatus.FULFILLED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

MIN_URGENCY = 1
MAX_URGENCY = 5
DEFAULT_URGENCY = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _coerce_enum(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r}; expected one of: {allowed}")


@dataclass
class PatientRequest:
    """A patient's ask for care at a location."""
    lat: float
    lon: float
    requested_service: ServiceType
    urgency_level: int = DEFAULT_URGENCY
    status: RequestStatus = RequestStatus.PENDING
    matched_provider_id: Optional[str] = None
    match_score: Optional[float] = None
    created_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        require_coordinates(self.lat, self.lon, label=f"request {self.id}")
        self.requested_service = _coerce_enum(ServiceType, self.requested_service, "service")
        self.status = _coerce_enum(RequestStatus, self.status, "status")
        if isinstance(self.urgency_level, bool) or not isinstance(self.urgency_level, int):
            raise ValidationError(f"urgency_level must be an integer, got {self.urgency_level!r}")
        if not MIN_URGENCY <= self.urgency_level <= MAX_URGENCY:
            raise ValidationError(
                f"urgency_level must be between {MIN_URGENCY} and {MAX_URGENCY}, got {self.urgency_level}"
            )
        if self.match_score is not None and not 0.0 <= self.match_score <= 1.0:
            raise ValidationError(f"match_score must be in [0, 1], got {self.match_score}")

    def check_transition(self, status: RequestStatus) -> RequestStatus:
        """Validate a lifecycle move from the current status to ``status``."""
        status = _coerce_enum(RequestStatus, status, "status")
        if not self.status.can_transition_to(status):
            raise InvalidTransitionError(
                f"Cannot move request {self.id} from {self.status.value} to {status.value}",
                current=self.status.value,
                requested=status.value,
            )
        return status

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "lat": self.lat,
            "lon": self.lon,
            "requested_service": self.requested_service.value,
            "urgency_level": self.urgency_level,
            "status": self.status.value,
            "matched_provider_id": self.matched_provider_id,
            "match_score": self.match_score,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Provider:
    """A healthcare facility or service, as seen at snapshot time."""
    name: str
    provider_type: ProviderType
    lat: float
    lon: float
    services: FrozenSet[ServiceType] = frozenset()
    capacity: Optional[int] = None
    current_wait_time: Optional[int] = None
    is_active: bool = True
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        require_coordinates(self.lat, self.lon, label=f"provider {self.id}")
        self.provider_type = _coerce_enum(ProviderType, self.provider_type, "provider type")
        self.services = frozenset(_coerce_enum(ServiceType, s, "service") for s in self.services)
        if self.capacity is not None and self.capacity <= 0:
            raise ValidationError(f"capacity must be positive, got {self.capacity}")
        if self.current_wait_time is not None and self.current_wait_time < 0:
            raise ValidationError(f"current_wait_time must be non-negative, got {self.current_wait_time}")

    def offers(self, service: ServiceType) -> bool:
        return service in self.services

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "provider_type": self.provider_type.value,
            "lat": self.lat,
            "lon": self.lon,
            "services": sorted(s.value for s in self.services),
            "capacity": self.capacity,
            "current_wait_time": self.current_wait_time,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class ProviderSnapshot:
    """Provider state captured at one instant and handed to the matcher."""
    providers: Tuple[Provider, ...]
    taken_at: datetime = field(default_factory=_utcnow)

    def __len__(self) -> int:
        return len(self.providers)

    def __iter__(self):
        return iter(self.providers)


@dataclass(frozen=True)
class FactorBreakdown:
    """Multipliers that produced a candidate's score (1.0 = no effect)."""
    distance: float = 1.0
    capacity: float = 1.0
    fragility: float = 1.0
    wait_time: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "distance": self.distance,
            "capacity": self.capacity,
            "fragility": self.fragility,
            "waitTime": self.wait_time,
        }


@dataclass(frozen=True)
class ScoredCandidate:
    """One provider's suitability for one request."""
    provider_id: str
    provider_name: str
    distance_miles: float
    wait_time: Optional[int]
    score: float
    factors: FactorBreakdown = FactorBreakdown()

    def to_dict(self) -> Dict:
        return {
            "providerId": self.provider_id,
            "providerName": self.provider_name,
            "distance": round(self.distance_miles, 3),
            "waitTime": self.wait_time,
            "score": round(self.score, 4),
            "factors": self.factors.to_dict(),
        }


@dataclass(frozen=True)
class DemandCell:
    """Aggregated demand for one grid cell, keyed by its centre."""
    lat: float
    lng: float
    value: float
    request_count: int
    provider_count: int

    def to_dict(self) -> Dict:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "value": self.value,
            "requestCount": self.request_count,
            "providerCount": self.provider_count,
        }


@dataclass(frozen=True)
class Bounds:
    """Non-wrapping bounding box in degrees."""
    north: float
    south: float
    east: float
    west: float

    def validate(self) -> "Bounds":
        for name, value, limit in (
            ("north", self.north, 90),
            ("south", self.south, 90),
            ("east", self.east, 180),
            ("west", self.west, 180),
        ):
            if value is None or not -limit <= value <= limit:
                raise InvalidBoundsError(f"{name} bound {value!r} is out of range")
        if self.south > self.north:
            raise InvalidBoundsError(f"south ({self.south}) is greater than north ({self.north})")
        if self.west > self.east:
            # antimeridian-crossing boxes are not supported
            raise InvalidBoundsError(f"west ({self.west}) is greater than east ({self.east})")
        return self

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east
