import itertools

import pytest

from data_sources.request_store import RequestStore
from data_sources.telemetry import telemetry_collector
from matching.models import PatientRequest, Provider

# Baltimore, used as the default request location
BALTIMORE = (39.29, -76.61)

_ids = itertools.count(1)


@pytest.fixture
def make_request():
    def _make(lat=BALTIMORE[0], lon=BALTIMORE[1], service="urgent_care", urgency=3, **kwargs):
        kwargs.setdefault("id", f"req-{next(_ids)}")
        return PatientRequest(lat=lat, lon=lon, requested_service=service,
                              urgency_level=urgency, **kwargs)
    return _make


@pytest.fixture
def make_provider():
    def _make(name="Clinic", provider_type="clinic", lat=BALTIMORE[0], lon=BALTIMORE[1],
              services=("urgent_care",), wait=None, capacity=None, **kwargs):
        kwargs.setdefault("id", f"prov-{next(_ids)}")
        return Provider(name=name, provider_type=provider_type, lat=lat, lon=lon,
                        services=frozenset(services), current_wait_time=wait,
                        capacity=capacity, **kwargs)
    return _make


@pytest.fixture
def store():
    return RequestStore()


@pytest.fixture(autouse=True)
def reset_telemetry():
    telemetry_collector.clear()
    yield
    telemetry_collector.clear()
