"""
Request queue views and summary statistics for provider dashboards.
"""

from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from data_sources.error_handling import InvalidConfigurationError
from matching.models import MAX_URGENCY, MIN_URGENCY, PatientRequest

if TYPE_CHECKING:
    from data_sources.request_store import RequestStore


def urgent_requests(store: "RequestStore", max_urgency_level: int = 2,
                    limit: int = 20) -> List[PatientRequest]:
    """Pending requests at or above the urgency cut-off, most urgent then oldest first."""
    if not MIN_URGENCY <= max_urgency_level <= MAX_URGENCY:
        raise InvalidConfigurationError(
            f"max_urgency_level must be between {MIN_URGENCY} and {MAX_URGENCY}"
        )
    if limit < 1:
        raise InvalidConfigurationError("limit must be >= 1")
    urgent = [r for r in store.pending_requests() if r.urgency_level <= max_urgency_level]
    return urgent[:limit]


def request_statistics(requests: Iterable[PatientRequest],
                       start: Optional[datetime] = None,
                       end: Optional[datetime] = None) -> Dict:
    """
    Counts by status, service and urgency, plus the average match score.

    Args:
        requests: Requests to summarize
        start, end: Optional inclusive created_at window

    Returns:
        Dict with total, byStatus, byService, byUrgency, averageMatchScore
    """
    by_status: Counter = Counter()
    by_service: Counter = Counter()
    by_urgency: Counter = Counter()
    total = 0
    score_sum = 0.0
    scored = 0

    for request in requests:
        if start is not None and request.created_at < start:
            continue
        if end is not None and request.created_at > end:
            continue
        total += 1
        by_status[request.status.value] += 1
        by_service[request.requested_service.value] += 1
        by_urgency[request.urgency_level] += 1
        if request.match_score is not None:
            score_sum += request.match_score
            scored += 1

    return {
        "total": total,
        "byStatus": dict(by_status),
        "byService": dict(by_service),
        "byUrgency": dict(by_urgency),
        "averageMatchScore": score_sum / scored if scored else 0,
    }
