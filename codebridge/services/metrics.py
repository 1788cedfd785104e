"""In-memory metrics for runs and API requests.

Counters back the /status endpoint and the detailed health check. Nothing
is persisted; counters reset when the process restarts.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger(__name__)

# Bound on the samples kept for percentile calculations
_MAX_SAMPLES = 1000


@dataclass
class APIRequestMetrics:
    """Lightweight API request metrics for in-memory tracking."""

    endpoint: str
    method: str
    status_code: int
    response_time_ms: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _percentile(samples: List[float], pct: float) -> float:
    if not samples:
        return 0.0
    ordered = sorted(samples)
    index = min(len(ordered) - 1, int(round(pct / 100 * (len(ordered) - 1))))
    return round(ordered[index], 2)


class MetricsService:
    """Counters for finished runs and HTTP requests."""

    def __init__(self):
        self._start_time = time.time()
        self._run_times: List[float] = []
        self._api_response_times: List[float] = []

        self._execution_stats = {
            "total_executions": 0,
            "completed_executions": 0,
            "timed_out_executions": 0,
            "killed_executions": 0,
            "total_execution_time_ms": 0.0,
            "language_counts": defaultdict(int),
        }

        self._api_stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "error_requests": 0,
            "total_response_time_ms": 0.0,
            "endpoint_counts": defaultdict(int),
            "status_code_counts": defaultdict(int),
        }

    def record_run(self, language: str, status: str, duration_ms: float) -> None:
        """Record a finished run."""
        stats = self._execution_stats
        stats["total_executions"] += 1
        stats["total_execution_time_ms"] += duration_ms
        stats["language_counts"][language] += 1

        key = f"{status}_executions"
        if key in stats:
            stats[key] += 1
        else:
            logger.warning("Unknown run status in metrics", status=status)

        self._run_times.append(duration_ms)
        if len(self._run_times) > _MAX_SAMPLES:
            self._run_times = self._run_times[-_MAX_SAMPLES // 2 :]

    def record_api_request(self, metrics: APIRequestMetrics) -> None:
        """Record an API request."""
        api = self._api_stats
        api["total_requests"] += 1
        api["total_response_time_ms"] += metrics.response_time_ms
        api["endpoint_counts"][metrics.endpoint] += 1
        api["status_code_counts"][metrics.status_code] += 1

        if 200 <= metrics.status_code < 400:
            api["successful_requests"] += 1
        else:
            api["error_requests"] += 1

        self._api_response_times.append(metrics.response_time_ms)
        if len(self._api_response_times) > _MAX_SAMPLES:
            self._api_response_times = self._api_response_times[-_MAX_SAMPLES // 2 :]

    def get_execution_statistics(self) -> Dict[str, Any]:
        """Get run statistics summary."""
        stats = {
            k: (dict(v) if isinstance(v, defaultdict) else v)
            for k, v in self._execution_stats.items()
        }

        total = stats["total_executions"]
        if total > 0:
            stats["average_execution_time_ms"] = round(
                stats["total_execution_time_ms"] / total, 2
            )
            stats["timeout_rate"] = round(
                stats["timed_out_executions"] / total * 100, 2
            )
        else:
            stats["average_execution_time_ms"] = 0.0
            stats["timeout_rate"] = 0.0

        stats["p95_execution_time_ms"] = _percentile(self._run_times, 95)
        return stats

    def get_api_statistics(self) -> Dict[str, Any]:
        """Get API request statistics summary."""
        stats = {
            k: (dict(v) if isinstance(v, defaultdict) else v)
            for k, v in self._api_stats.items()
        }
        total = stats["total_requests"]
        stats["average_response_time_ms"] = (
            round(stats["total_response_time_ms"] / total, 2) if total else 0.0
        )
        stats["p95_response_time_ms"] = _percentile(self._api_response_times, 95)
        return stats

    def get_uptime_seconds(self) -> float:
        return round(time.time() - self._start_time, 1)


# Global metrics service instance
metrics_service = MetricsService()
