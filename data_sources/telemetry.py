"""
Telemetry and Analytics System
Tracks match quality, coverage gaps and aggregation volume
"""

import statistics
import time
import threading
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Any

from data_sources.error_handling import with_fallback


@dataclass
class MatchMetrics:
    """Metrics for a single ranking call."""
    timestamp: float
    request_id: str
    algorithm: str
    candidate_count: int
    best_score: Optional[float]
    settled: bool
    response_time: float


@dataclass
class AggregationMetrics:
    """Metrics for a single demand aggregation."""
    timestamp: float
    metric: str
    request_count: int
    provider_count: int
    cell_count: int
    response_time: float


class TelemetryCollector:
    """Collects and summarizes telemetry data for CareMatch."""

    def __init__(self, max_records: int = 10000):
        self.max_records = max_records
        self.matches: List[MatchMetrics] = []
        self.aggregations: List[AggregationMetrics] = []
        self.lock = threading.Lock()
        self.start_time = time.time()

        self.error_counts: Counter = Counter()

    def record_match(self, metrics: MatchMetrics) -> None:
        """Record metrics for a single ranking call."""
        with self.lock:
            self.matches.append(metrics)
            if len(self.matches) > self.max_records:
                self.matches = self.matches[-self.max_records:]

    def record_aggregation(self, metrics: AggregationMetrics) -> None:
        """Record metrics for a single aggregation."""
        with self.lock:
            self.aggregations.append(metrics)
            if len(self.aggregations) > self.max_records:
                self.aggregations = self.aggregations[-self.max_records:]

    def record_error(self, error_type: str) -> None:
        with self.lock:
            self.error_counts[error_type] += 1

    def _get_score_range(self, score: float) -> str:
        """Get score range category."""
        if score >= 0.8:
            return "0.8-1.0"
        elif score >= 0.6:
            return "0.6-0.8"
        elif score >= 0.4:
            return "0.4-0.6"
        elif score >= 0.2:
            return "0.2-0.4"
        else:
            return "0.0-0.2"

    def get_overall_stats(self) -> Dict[str, Any]:
        """Get overall system statistics."""
        with self.lock:
            uptime_hours = (time.time() - self.start_time) / 3600
            total_matches = len(self.matches)

            scored = [m.best_score for m in self.matches if m.best_score is not None]
            no_coverage = total_matches - len(scored)
            settled = sum(1 for m in self.matches if m.settled)
            response_times = [m.response_time for m in self.matches]

            return {
                "system_metrics": {
                    "total_matches": total_matches,
                    "total_aggregations": len(self.aggregations),
                    "uptime_hours": round(uptime_hours, 2),
                    "errors": dict(self.error_counts),
                },
                "match_metrics": {
                    "average_best_score": round(statistics.mean(scored), 4) if scored else None,
                    "median_best_score": round(statistics.median(scored), 4) if scored else None,
                    "no_coverage_rate": round(no_coverage / total_matches * 100, 2) if total_matches else 0.0,
                    "settled": settled,
                    "average_response_time": round(statistics.mean(response_times), 4) if response_times else None,
                },
                "distribution_metrics": {
                    "algorithms": dict(Counter(m.algorithm for m in self.matches)),
                    "score_ranges": dict(Counter(self._get_score_range(s) for s in scored)),
                    "aggregation_metrics": dict(Counter(a.metric for a in self.aggregations)),
                },
                "recent_aggregations": [asdict(a) for a in self.aggregations[-10:]],
            }

    def clear(self) -> None:
        with self.lock:
            self.matches = []
            self.aggregations = []
            self.error_counts.clear()
            self.start_time = time.time()


# Global telemetry collector instance
telemetry_collector = TelemetryCollector()


@with_fallback(None)
def record_match_metrics(request_id: str, algorithm: str, candidate_count: int,
                         best_score: Optional[float], settled: bool,
                         response_time: float) -> None:
    """Record metrics for a ranking call."""
    telemetry_collector.record_match(MatchMetrics(
        timestamp=time.time(),
        request_id=request_id,
        algorithm=algorithm,
        candidate_count=candidate_count,
        best_score=best_score,
        settled=settled,
        response_time=response_time,
    ))


@with_fallback(None)
def record_aggregation_metrics(metric: str, request_count: int, provider_count: int,
                               cell_count: int, response_time: float) -> None:
    """Record metrics for an aggregation."""
    telemetry_collector.record_aggregation(AggregationMetrics(
        timestamp=time.time(),
        metric=metric,
        request_count=request_count,
        provider_count=provider_count,
        cell_count=cell_count,
        response_time=response_time,
    ))


@with_fallback(None)
def record_error(error_type: str) -> None:
    """Record an error occurrence."""
    telemetry_collector.record_error(error_type)


def get_telemetry_stats() -> Dict[str, Any]:
    """Get current telemetry statistics."""
    return telemetry_collector.get_overall_stats()
