import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from data_sources.error_handling import InvalidConfigurationError, InvalidCoordinatesError
from data_sources.request_store import RequestStore
from data_sources.telemetry import get_telemetry_stats
from matching import matcher
from matching.matcher import (
    auto_match_pending,
    match_and_settle,
    match_request_to_providers,
    recommend_providers,
    settle_best_match,
)
from matching.models import PatientRequest, Provider, RequestStatus


def _distance_table(table):
    """Geo-distance stub keyed on provider coordinates."""
    def _fn(lat1, lon1, lat2, lon2):
        return table[(lat2, lon2)]
    return _fn


def test_empty_candidates_returns_empty_list(make_request):
    assert match_request_to_providers(make_request(), [], "smart") == []


def test_scenario_ranking_with_injected_distances(make_request, make_provider):
    request = make_request(urgency=1, service="urgent_care")
    x = make_provider(name="Provider X", provider_type="clinic", lat=39.31, lon=-76.61, wait=15)
    y = make_provider(name="Provider Y", provider_type="mobile", lat=39.40, lon=-76.61, wait=45)
    distance_fn = _distance_table({(39.31, -76.61): 2.0, (39.40, -76.61): 8.0})

    ranked = match_request_to_providers(request, [y, x], "smart", distance_fn=distance_fn)

    assert [c.provider_name for c in ranked] == ["Provider X", "Provider Y"]
    assert ranked[0].score == pytest.approx(1.0)
    assert ranked[1].score == pytest.approx(0.5616)
    assert ranked[0].to_dict()["providerId"] == x.id


def test_ranking_is_deterministic(make_request, make_provider):
    request = make_request(urgency=2)
    providers = [
        make_provider(lat=39.29 + i * 0.01, lon=-76.61 - i * 0.005, wait=(i * 17) % 90,
                      provider_type=("mobile" if i % 3 == 0 else "clinic"))
        for i in range(12)
    ]
    first = match_request_to_providers(request, providers, "smart")
    second = match_request_to_providers(request, list(reversed(providers)), "smart")
    assert [(c.provider_id, c.score) for c in first] == [(c.provider_id, c.score) for c in second]


def test_equal_scores_fall_back_to_distance_then_id(make_request, make_provider):
    request = make_request(urgency=3)
    # fragility-only scoring: every clinic scores 1.0
    far = make_provider(id="b-far", lat=39.35, lon=-76.61)
    near_b = make_provider(id="b-near", lat=39.30, lon=-76.61)
    near_a = make_provider(id="a-near", lat=39.30, lon=-76.61)

    ranked = match_request_to_providers(request, [far, near_b, near_a], "fragility")

    assert [c.provider_id for c in ranked] == ["a-near", "b-near", "b-far"]


def test_top_n_truncates(make_request, make_provider):
    request = make_request()
    providers = [make_provider(lat=39.29 + i * 0.02) for i in range(6)]
    assert len(match_request_to_providers(request, providers, top_n=2)) == 2
    assert len(recommend_providers(request, providers)) == 3
    with pytest.raises(InvalidConfigurationError):
        match_request_to_providers(request, providers, top_n=0)


def test_custom_search_radius_changes_distance_penalty(make_request, make_provider):
    request = make_request(urgency=3)
    provider = make_provider(lat=39.29, lon=-76.61)
    distance_fn = _distance_table({(39.29, -76.61): 5.0})
    wide = match_request_to_providers(request, [provider], "distance", distance_fn=distance_fn)
    narrow = match_request_to_providers(request, [provider], "distance", distance_fn=distance_fn,
                                        search_radius_miles=10)
    assert wide[0].score == pytest.approx(0.825)
    assert narrow[0].score == pytest.approx(0.65)


def test_out_of_range_provider_point_rejected(make_request, make_provider):
    provider = make_provider()
    provider.lat = 123.0
    with pytest.raises(InvalidCoordinatesError):
        match_request_to_providers(make_request(), [provider])


def test_out_of_range_request_point_rejected_at_construction():
    with pytest.raises(InvalidCoordinatesError):
        PatientRequest(lat=39.29, lon=-200.0, requested_service="general")


def test_large_candidate_lists_are_scored_in_parallel(make_request, make_provider):
    request = make_request()
    providers = [make_provider(lat=39.29 + i * 0.001) for i in range(matcher.PARALLEL_DISTANCE_THRESHOLD + 5)]
    ranked = match_request_to_providers(request, providers, "distance")
    assert len(ranked) == len(providers)
    assert ranked[0].provider_id == providers[0].id


def test_settle_writes_best_candidate(store, make_request, make_provider):
    request = store.add_request(make_request())
    provider = make_provider()
    ranked = match_request_to_providers(request, [provider])

    settled = settle_best_match(store, request, ranked)

    stored = store.get_request(request.id)
    assert settled.provider_id == provider.id
    assert stored.status is RequestStatus.MATCHED
    assert stored.matched_provider_id == provider.id
    assert stored.match_score == pytest.approx(ranked[0].score)


def test_second_settlement_is_a_no_op(store, make_request, make_provider):
    request = store.add_request(make_request())
    first = make_provider(name="First")
    second = make_provider(name="Second")

    settle_best_match(store, request, match_request_to_providers(request, [first]))
    again = settle_best_match(store, request, match_request_to_providers(request, [second]))

    assert again is None
    assert store.get_request(request.id).matched_provider_id == first.id


def test_concurrent_settlements_have_one_winner(store, make_request, make_provider):
    request = store.add_request(make_request())
    providers = [make_provider(name=f"Clinic {i}") for i in range(8)]
    rankings = [match_request_to_providers(request, [p]) for p in providers]
    barrier = threading.Barrier(len(rankings))

    def _settle(ranked):
        barrier.wait()
        return settle_best_match(store, request, ranked)

    with ThreadPoolExecutor(max_workers=len(rankings)) as executor:
        results = list(executor.map(_settle, rankings))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    stored = store.get_request(request.id)
    assert stored.status is RequestStatus.MATCHED
    assert stored.matched_provider_id == winners[0].provider_id


def test_settle_with_no_candidates(store, make_request):
    request = store.add_request(make_request())
    assert settle_best_match(store, request, []) is None
    assert store.get_request(request.id).status is RequestStatus.PENDING


def test_match_and_settle_uses_nearby_providers_offering_service(store, make_request, make_provider):
    request = store.add_request(make_request(service="dental"))
    dentist = store.add_provider(make_provider(name="Dentist", services=("dental",), lat=39.30))
    store.add_provider(make_provider(name="Urgent", services=("urgent_care",), lat=39.291))
    store.add_provider(make_provider(name="Far dentist", services=("dental",), lat=40.5))

    ranked, settled = match_and_settle(store, request.id)

    assert [c.provider_name for c in ranked] == ["Dentist"]
    assert settled.provider_id == dentist.id
    assert get_telemetry_stats()["system_metrics"]["total_matches"] == 1


def test_match_and_settle_without_coverage(store, make_request):
    request = store.add_request(make_request())
    ranked, settled = match_and_settle(store, request.id)
    assert ranked == []
    assert settled is None
    assert store.get_request(request.id).status is RequestStatus.PENDING


def test_auto_match_processes_most_urgent_first(store, make_request, make_provider):
    routine = store.add_request(make_request(urgency=4))
    urgent = store.add_request(make_request(urgency=1))
    store.add_provider(make_provider())

    order = []
    real = matcher.match_and_settle

    def _tracking(store_, request_id, *args, **kwargs):
        order.append(request_id)
        return real(store_, request_id, *args, **kwargs)

    with patch.object(matcher, "match_and_settle", _tracking):
        result = auto_match_pending(store)

    assert order == [urgent.id, routine.id]
    assert result.to_dict() == {"processed": 2, "matched": 2, "failed": 0}


class TestAutoMatchFailures(unittest.TestCase):
    """One failing request must not stop the batch."""

    def setUp(self):
        self.store = RequestStore()
        self.bad = self.store.add_request(PatientRequest(lat=39.29, lon=-76.61, requested_service="general",
                                                         urgency_level=1, id="bad"))
        self.good = self.store.add_request(PatientRequest(lat=39.29, lon=-76.61, requested_service="general",
                                                          urgency_level=2, id="good"))
        self.store.add_provider(Provider(name="Clinic", provider_type="clinic", lat=39.29, lon=-76.61,
                                         services=frozenset({"general"})))

    def test_failure_is_counted_and_batch_continues(self):
        real = matcher.match_and_settle

        def _flaky(store, request_id, *args, **kwargs):
            if request_id == "bad":
                raise RuntimeError("store timeout")
            return real(store, request_id, *args, **kwargs)

        with patch.object(matcher, "match_and_settle", _flaky):
            result = auto_match_pending(self.store)

        self.assertEqual(result.processed, 2)
        self.assertEqual(result.matched, 1)
        self.assertEqual(result.failed, 1)
        self.assertIs(self.store.get_request("good").status, RequestStatus.MATCHED)
        self.assertIs(self.store.get_request("bad").status, RequestStatus.PENDING)
