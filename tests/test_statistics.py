from datetime import datetime, timedelta, timezone

import pytest

from data_sources.error_handling import InvalidConfigurationError
from matching.models import RequestStatus
from matching.statistics import request_statistics, urgent_requests


def test_statistics_counts_and_average(make_request):
    requests = [
        make_request(service="dental", urgency=2, status="matched", matched_provider_id="p", match_score=0.5),
        make_request(service="dental", urgency=3, status="matched", matched_provider_id="p", match_score=0.9),
        make_request(service="general", urgency=3),
        make_request(service="general", urgency=5, status="cancelled"),
    ]

    stats = request_statistics(requests)

    assert stats["total"] == 4
    assert stats["byStatus"] == {"matched": 2, "pending": 1, "cancelled": 1}
    assert stats["byService"] == {"dental": 2, "general": 2}
    assert stats["byUrgency"] == {2: 1, 3: 2, 5: 1}
    assert stats["averageMatchScore"] == pytest.approx(0.7)


def test_statistics_empty_and_window(make_request):
    assert request_statistics([])["averageMatchScore"] == 0

    now = datetime.now(timezone.utc)
    old = make_request(created_at=now - timedelta(days=3))
    new = make_request(created_at=now)
    stats = request_statistics([old, new], start=now - timedelta(days=1))
    assert stats["total"] == 1


def test_urgent_requests_threshold_and_limit(store, make_request):
    now = datetime.now(timezone.utc)
    first = store.add_request(make_request(urgency=1, created_at=now - timedelta(minutes=5)))
    second = store.add_request(make_request(urgency=2, created_at=now - timedelta(minutes=10)))
    store.add_request(make_request(urgency=3))
    matched = store.add_request(make_request(urgency=1))
    store.transition_request(matched.id, RequestStatus.MATCHED)

    assert [r.id for r in urgent_requests(store)] == [first.id, second.id]
    assert [r.id for r in urgent_requests(store, limit=1)] == [first.id]
    assert len(urgent_requests(store, max_urgency_level=3)) == 3


def test_urgent_requests_validates_threshold(store):
    with pytest.raises(InvalidConfigurationError):
        urgent_requests(store, max_urgency_level=0)
