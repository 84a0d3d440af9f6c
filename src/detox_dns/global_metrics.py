"""Global metrics tracking for the resolver."""
import time
from dataclasses import dataclass, field
from typing import List, Optional
from .config import logger


@dataclass
class GlobalMetrics:
    """Tracks how queries were routed and how long upstreams took."""

    total_queries: int = 0
    clean_routes: int = 0
    polluted_routes: int = 0
    failures: int = 0
    response_times: List[float] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    last_log_time: float = field(default_factory=time.time)

    def record_route(self, polluted: bool, response_time: float):
        """Record a query answered by the local (clean) or secure (polluted) path."""
        self.total_queries += 1
        if polluted:
            self.polluted_routes += 1
        else:
            self.clean_routes += 1
        self.response_times.append(response_time)
        # Keep list bounded to last 1000 entries
        if len(self.response_times) > 1000:
            self.response_times = self.response_times[-1000:]

    def record_failure(self):
        """Record a query that could not be resolved."""
        self.total_queries += 1
        self.failures += 1

    def get_queries_per_minute(self) -> float:
        """Calculate queries per minute since last log."""
        elapsed_minutes = (time.time() - self.last_log_time) / 60.0
        if elapsed_minutes == 0:
            return 0.0
        return self.total_queries / elapsed_minutes

    def get_polluted_rate(self) -> float:
        """Share of answered queries that took the secure path, as a percentage."""
        routed = self.clean_routes + self.polluted_routes
        if routed == 0:
            return 0.0
        return (self.polluted_routes / routed) * 100

    def get_min_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return min(self.response_times)

    def get_mean_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)

    def get_max_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return max(self.response_times)

    def log_stats(self, cache=None):
        """
        Log global statistics and reset the counters.

        Args:
            cache: Optional DetectCache whose size and hit rate are included
        """
        qpm = self.get_queries_per_minute()

        logger.info("=== Global Metrics ===")

        route_stats = (
            f"Routes: {self.clean_routes} local / {self.polluted_routes} secure "
            f"({self.get_polluted_rate():.1f}% secure), {self.failures} failed"
        )

        if self.response_times:
            response_stats = (
                f", Response times: min={self.get_min_response_time():.3f}s, "
                f"mean={self.get_mean_response_time():.3f}s, "
                f"max={self.get_max_response_time():.3f}s"
            )
        else:
            response_stats = ""

        cache_stats = _format_cache_stats(cache)

        logger.info(f"Queries/min: {qpm:.1f}, {route_stats}{response_stats}{cache_stats}")

        self.total_queries = 0
        self.clean_routes = 0
        self.polluted_routes = 0
        self.failures = 0
        self.response_times = []
        self.last_log_time = time.time()


def _format_cache_stats(cache) -> str:
    if cache is None:
        return ""
    return f", Detect cache: {len(cache)} entries ({cache.hit_rate:.1f}% hit rate)"
