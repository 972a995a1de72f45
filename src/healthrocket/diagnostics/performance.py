"""Response-time measurement for backend calls."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = structlog.get_logger()

T = TypeVar("T")

Rating = Literal["excellent", "good", "acceptable", "slow", "critical"]

# Milliseconds
FAST_MS = 100
ACCEPTABLE_MS = 500
SLOW_MS = 1000
CRITICAL_MS = 3000


@dataclass
class PerformanceMetric:
    name: str
    start_time: float
    end_time: float | None = None
    duration_ms: float | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class PerformanceReport:
    total_tests: int
    average_response_time: float
    slowest_query: PerformanceMetric | None
    fastest_query: PerformanceMetric | None
    metrics: list[PerformanceMetric] = field(default_factory=list)


def get_performance_rating(duration_ms: float) -> Rating:
    if duration_ms <= FAST_MS:
        return "excellent"
    if duration_ms <= ACCEPTABLE_MS:
        return "good"
    if duration_ms <= SLOW_MS:
        return "acceptable"
    if duration_ms <= CRITICAL_MS:
        return "slow"
    return "critical"


class PerformanceMonitor:
    """Named timers over ``time.perf_counter``.

    Only one timer per name can be running at a time; starting it again
    replaces the running one.
    """

    def __init__(self) -> None:
        self._metrics: list[PerformanceMetric] = []
        self._active: dict[str, PerformanceMetric] = {}

    def start_timer(self, name: str, metadata: dict[str, Any] | None = None) -> None:
        self._active[name] = PerformanceMetric(name=name, start_time=time.perf_counter(), metadata=metadata)

    def end_timer(self, name: str) -> float | None:
        """Stop a timer and return its duration in milliseconds."""
        metric = self._active.pop(name, None)
        if metric is None:
            logger.warning("performance_timer_not_found", name=name)
            return None
        metric.end_time = time.perf_counter()
        metric.duration_ms = (metric.end_time - metric.start_time) * 1000
        self._metrics.append(metric)
        return metric.duration_ms

    async def measure_async(
        self,
        name: str,
        func: Callable[[], Awaitable[T]],
        metadata: dict[str, Any] | None = None,
    ) -> T:
        """Await ``func()`` under a timer. The timer stops even if it raises."""
        self.start_timer(name, metadata)
        try:
            return await func()
        finally:
            self.end_timer(name)

    def get_report(self) -> PerformanceReport:
        completed = [m for m in self._metrics if m.duration_ms is not None]
        durations = [m.duration_ms for m in completed]
        return PerformanceReport(
            total_tests=len(completed),
            average_response_time=sum(durations) / len(durations) if durations else 0.0,
            slowest_query=max(completed, key=lambda m: m.duration_ms, default=None),
            fastest_query=min(completed, key=lambda m: m.duration_ms, default=None),
            metrics=list(completed),
        )

    def clear(self) -> None:
        self._metrics = []
        self._active.clear()

    def get_metrics_by_name(self, name: str) -> list[PerformanceMetric]:
        return [m for m in self._metrics if m.name == name]

    def get_average_time(self, name: str) -> float:
        durations = [m.duration_ms for m in self.get_metrics_by_name(name) if m.duration_ms is not None]
        return sum(durations) / len(durations) if durations else 0.0

    def log_report(self) -> PerformanceReport:
        report = self.get_report()
        logger.info(
            "performance_report",
            total_tests=report.total_tests,
            average_ms=round(report.average_response_time, 2),
            slowest=report.slowest_query.name if report.slowest_query else None,
            slowest_ms=round(report.slowest_query.duration_ms, 2) if report.slowest_query else None,
            fastest=report.fastest_query.name if report.fastest_query else None,
            fastest_ms=round(report.fastest_query.duration_ms, 2) if report.fastest_query else None,
        )
        return report


# Shared monitor for ad-hoc measurements; test runs create their own
performance_monitor = PerformanceMonitor()


async def measure_database_query(
    name: str,
    func: Callable[[], Awaitable[T]],
    metadata: dict[str, Any] | None = None,
    monitor: PerformanceMonitor | None = None,
) -> T:
    return await (monitor or performance_monitor).measure_async(name, func, metadata)


async def measure_rpc_call(
    name: str,
    func: Callable[[], Awaitable[T]],
    parameters: dict[str, Any] | None = None,
    monitor: PerformanceMonitor | None = None,
) -> T:
    return await (monitor or performance_monitor).measure_async(f"RPC: {name}", func, {"parameters": parameters})


async def measure_auth_operation(
    name: str,
    func: Callable[[], Awaitable[T]],
    monitor: PerformanceMonitor | None = None,
) -> T:
    return await (monitor or performance_monitor).measure_async(f"Auth: {name}", func)
