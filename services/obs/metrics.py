"""
Observability Metrics
Cache counters, degraded-source counts, phase timings and P50/P95 summaries
"""
from typing import Dict, List, Any, Optional
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, asdict
import statistics
import threading
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

CACHE_EVENTS = ("hit", "miss", "bypass", "timeout", "error", "write_failure", "invalidation")


@dataclass
class PhaseMetric:
    """Timing for a single request phase"""
    phase_name: str
    start_time: float
    end_time: float
    duration_ms: float
    input_count: int
    output_count: int
    success: bool
    error_message: Optional[str] = None


@dataclass
class RequestMetrics:
    """Summary of one recommendation computation"""
    request_id: str
    user_id: str
    start_time: float
    end_time: float
    total_duration_ms: float
    phases: List[PhaseMetric]
    final_recommendations: int
    degraded_sources: List[str]


class MetricsCollector:
    """Collects and aggregates observability metrics"""

    def __init__(self, history_size: int = 1000):
        self.cache_counters: Dict[str, int] = {event: 0 for event in CACHE_EVENTS}
        self.source_failures: Dict[str, int] = defaultdict(int)
        self.phase_timings: Dict[str, deque] = defaultdict(lambda: deque(maxlen=history_size))
        self.request_metrics = deque(maxlen=history_size)
        self.counters = {
            "total_requests": 0,
            "empty_results": 0,
            "total_recommendations": 0,
            "background_failures": 0,
        }
        self.performance_thresholds = {
            "max_request_duration_ms": 3000,
        }
        self._lock = threading.Lock()

    def record_cache_event(self, event: str) -> None:
        with self._lock:
            self.cache_counters[event] = self.cache_counters.get(event, 0) + 1

    def record_source_failure(self, source: str, error: Any = None) -> None:
        with self._lock:
            self.source_failures[source] += 1
        logger.warning(f"Recommendation source degraded: {source} ({error})")

    def record_background_failure(self) -> None:
        with self._lock:
            self.counters["background_failures"] += 1

    @asynccontextmanager
    async def phase_timer(self, phase_name: str, input_count: int = 0, phases: Optional[List[PhaseMetric]] = None):
        """Context manager for timing request phases"""
        start_time = time.time()
        phase_metric = PhaseMetric(
            phase_name=phase_name,
            start_time=start_time,
            end_time=0,
            duration_ms=0,
            input_count=input_count,
            output_count=0,
            success=False,
        )
        try:
            yield phase_metric
            phase_metric.success = True
        except Exception as e:
            phase_metric.error_message = str(e)
            logger.error(f"Phase {phase_name} failed: {e}")
            raise
        finally:
            end_time = time.time()
            phase_metric.end_time = end_time
            phase_metric.duration_ms = (end_time - start_time) * 1000
            with self._lock:
                self.phase_timings[phase_name].append(phase_metric.duration_ms)
            if phases is not None:
                phases.append(phase_metric)

    def record_request(
        self,
        request_id: str,
        user_id: str,
        start_time: float,
        phases: List[PhaseMetric],
        final_recommendations: int,
        degraded_sources: List[str],
    ) -> RequestMetrics:
        end_time = time.time()
        metrics = RequestMetrics(
            request_id=request_id,
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            total_duration_ms=(end_time - start_time) * 1000,
            phases=list(phases),
            final_recommendations=final_recommendations,
            degraded_sources=list(degraded_sources),
        )
        with self._lock:
            self.request_metrics.append(metrics)
            self.counters["total_requests"] += 1
            self.counters["total_recommendations"] += final_recommendations
            if final_recommendations == 0:
                self.counters["empty_results"] += 1
        if metrics.total_duration_ms > self.performance_thresholds["max_request_duration_ms"]:
            logger.warning(
                f"Slow recommendation request {request_id}: {metrics.total_duration_ms:.0f}ms"
            )
        return metrics

    @staticmethod
    def _percentile(values: List[float], pct: float) -> float:
        if not values:
            return 0.0
        if len(values) == 1:
            return float(values[0])
        ordered = sorted(values)
        index = min(len(ordered) - 1, max(0, int(round(pct / 100.0 * (len(ordered) - 1)))))
        return float(ordered[index])

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            phases = {}
            for name, timings in self.phase_timings.items():
                values = list(timings)
                phases[name] = {
                    "count": len(values),
                    "p50_ms": self._percentile(values, 50),
                    "p95_ms": self._percentile(values, 95),
                    "mean_ms": statistics.fmean(values) if values else 0.0,
                }
            lookups = self.cache_counters["hit"] + self.cache_counters["miss"]
            return {
                "cache": dict(self.cache_counters),
                "cache_hit_rate": (self.cache_counters["hit"] / lookups) if lookups else 0.0,
                "source_failures": dict(self.source_failures),
                "phases": phases,
                "counters": dict(self.counters),
                "last_request": asdict(self.request_metrics[-1]) if self.request_metrics else None,
            }

    def reset(self) -> None:
        with self._lock:
            self.cache_counters = {event: 0 for event in CACHE_EVENTS}
            self.source_failures.clear()
            self.phase_timings.clear()
            self.request_metrics.clear()
            for key in self.counters:
                self.counters[key] = 0


metrics_collector = MetricsCollector()
