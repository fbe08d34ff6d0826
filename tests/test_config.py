import pytest

from config import MatchingSettings
from data_sources.error_handling import InvalidConfigurationError


def test_defaults():
    settings = MatchingSettings()
    assert settings.search_radius_miles == 20.0
    assert settings.grid_size_degrees == 0.01
    assert settings.assumed_avg_capacity == 10.0
    assert settings.recommendation_limit == 3


def test_from_env(monkeypatch):
    monkeypatch.setenv("CAREMATCH_SEARCH_RADIUS_MILES", "15")
    monkeypatch.setenv("CAREMATCH_GRID_SIZE_DEGREES", "0.05")
    monkeypatch.setenv("CAREMATCH_RECOMMENDATION_LIMIT", "5")
    settings = MatchingSettings.from_env()
    assert settings.search_radius_miles == 15.0
    assert settings.grid_size_degrees == 0.05
    assert settings.recommendation_limit == 5


@pytest.mark.parametrize("name,value", [
    ("CAREMATCH_GRID_SIZE_DEGREES", "0"),
    ("CAREMATCH_SEARCH_RADIUS_MILES", "-3"),
    ("CAREMATCH_NEARBY_LIMIT", "ten"),
    ("CAREMATCH_URGENT_THRESHOLD", "9"),
])
def test_invalid_env_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(InvalidConfigurationError):
        MatchingSettings.from_env()
