"""
Demand Heatmap Aggregation
Buckets pending requests (and optionally providers) into a fixed degree grid

Each point is snapped to the south-west corner of its cell with
``floor(coord / grid) * grid``; the cell is reported at its centre
(corner + grid / 2). Request and provider counts accumulate independently,
then every cell gets a value for the selected metric:

- requests: request count
- unmet_demand: requests beyond what the cell's providers can absorb
- capacity: providers x assumed capacity
- wait_time: requests per provider (load proxy)

Only cells with value > 0 are returned.
"""

import math
import time
from collections import defaultdict
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from data_sources.error_handling import InvalidConfigurationError, ValidationError
from data_sources.telemetry import record_aggregation_metrics
from logging_config import get_logger, log_aggregation
from matching.models import Bounds, DemandCell, PatientRequest, Provider

logger = get_logger(__name__)

DEFAULT_GRID_SIZE_DEGREES = 0.01  # ~1km
ASSUMED_AVG_CAPACITY = 10

# Decimal places kept on cell indices and keys
_KEY_PRECISION = 9


class DemandMetric(Enum):
    """Value computed per grid cell."""
    REQUESTS = "requests"
    WAIT_TIME = "wait_time"
    CAPACITY = "capacity"
    UNMET_DEMAND = "unmet_demand"

    @classmethod
    def parse(cls, value: Union[str, "DemandMetric"]) -> "DemandMetric":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(f"Unknown metric {value!r}; expected one of: {allowed}")


def _validate_grid_size(grid_size_degrees: float) -> float:
    if (isinstance(grid_size_degrees, bool)
            or not isinstance(grid_size_degrees, (int, float))
            or not math.isfinite(grid_size_degrees)
            or grid_size_degrees <= 0):
        raise InvalidConfigurationError(
            f"grid_size_degrees must be a positive number, got {grid_size_degrees!r}"
        )
    return float(grid_size_degrees)


def _cell_index(coordinate: float, grid_size_degrees: float) -> int:
    # snap before flooring; 39.30 / 0.01 lands just under 3930 in floats
    return math.floor(round(coordinate / grid_size_degrees, _KEY_PRECISION))


def cell_key(lat: float, lon: float, grid_size_degrees: float) -> Tuple[float, float]:
    """South-west corner of the cell containing (lat, lon); points on a gridline open the cell above."""
    return (
        round(_cell_index(lat, grid_size_degrees) * grid_size_degrees, _KEY_PRECISION),
        round(_cell_index(lon, grid_size_degrees) * grid_size_degrees, _KEY_PRECISION),
    )


def cell_value(metric: DemandMetric, request_count: int, provider_count: int,
               assumed_avg_capacity: float = ASSUMED_AVG_CAPACITY) -> float:
    """Metric value for a cell with the given counts."""
    if metric is DemandMetric.REQUESTS:
        return request_count
    if metric is DemandMetric.UNMET_DEMAND:
        return max(0, request_count - provider_count * assumed_avg_capacity)
    if metric is DemandMetric.CAPACITY:
        return provider_count * assumed_avg_capacity
    # WAIT_TIME: per-provider load, no live wait data is aggregated
    return request_count / max(1, provider_count)


def aggregate_demand(requests: Iterable[PatientRequest],
                     providers: Optional[Iterable[Provider]],
                     bounds: Bounds,
                     grid_size_degrees: float = DEFAULT_GRID_SIZE_DEGREES,
                     metric: Union[str, DemandMetric] = DemandMetric.REQUESTS,
                     assumed_avg_capacity: float = ASSUMED_AVG_CAPACITY) -> List[DemandCell]:
    """
    Grid pending requests and providers into demand cells.

    Args:
        requests: Pending requests already filtered to ``bounds``
        providers: Active providers already filtered to ``bounds`` (may be empty)
        bounds: Bounding box the inputs were filtered with
        grid_size_degrees: Cell edge length in degrees
        metric: Value to compute per cell
        assumed_avg_capacity: Patients/day credited to each provider

    Returns:
        Cells with value > 0, highest value first

    Raises:
        InvalidConfigurationError: non-positive grid size or negative capacity
        InvalidBoundsError: malformed bounding box
    """
    start_time = time.time()
    grid = _validate_grid_size(grid_size_degrees)
    bounds.validate()
    metric = DemandMetric.parse(metric)
    if assumed_avg_capacity < 0:
        raise InvalidConfigurationError("assumed_avg_capacity must be >= 0")

    request_counts: Dict[Tuple[float, float], int] = defaultdict(int)
    provider_counts: Dict[Tuple[float, float], int] = defaultdict(int)

    request_total = 0
    for request in requests:
        request_counts[cell_key(request.lat, request.lon, grid)] += 1
        request_total += 1

    provider_total = 0
    for provider in providers or ():
        provider_counts[cell_key(provider.lat, provider.lon, grid)] += 1
        provider_total += 1

    half = grid / 2
    cells = []
    for key in set(request_counts) | set(provider_counts):
        request_count = request_counts.get(key, 0)
        provider_count = provider_counts.get(key, 0)
        value = cell_value(metric, request_count, provider_count, assumed_avg_capacity)
        if value > 0:
            cells.append(DemandCell(
                lat=round(key[0] + half, _KEY_PRECISION),
                lng=round(key[1] + half, _KEY_PRECISION),
                value=value,
                request_count=request_count,
                provider_count=provider_count,
            ))

    cells.sort(key=lambda c: (-c.value, c.lat, c.lng))

    duration = time.time() - start_time
    log_aggregation(logger, metric.value, len(cells), request_total, provider_total,
                    duration=duration)
    record_aggregation_metrics(metric.value, request_total, provider_total, len(cells), duration)
    return cells
