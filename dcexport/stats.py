"""
API call statistics and per-task status logging.

Both are explicit values handed to the components that use them
(MemberCache, AssetDownloader, ExportContext, BatchExporter) rather than
ambient globals, so each export task can carry its own.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from rich.table import Table

logger = logging.getLogger(__name__)


class StatusLogger:
    """Receives short human-readable status lines during an export."""

    def log(self, message: str) -> None:
        raise NotImplementedError


class NullStatusLogger(StatusLogger):
    """Discards all messages."""

    def log(self, message: str) -> None:
        pass


class LoggingStatusLogger(StatusLogger):
    """Forwards status lines to a standard logger, tagged with a label."""

    def __init__(self, label: Optional[str] = None, level: int = logging.DEBUG):
        self.label = label
        self.level = level

    def log(self, message: str) -> None:
        if self.label:
            logger.log(self.level, f"[{self.label}] {message}")
        else:
            logger.log(self.level, message)


NULL_STATUS = NullStatusLogger()


@dataclass
class EndpointStats:
    """Accumulated numbers for a single endpoint."""
    call_count: int = 0
    total_request_time: float = 0.0
    total_rate_limit_wait: float = 0.0

    @property
    def total_time(self) -> float:
        return self.total_request_time + self.total_rate_limit_wait


class ApiCallStatistics:
    """
    Tracks API call counts, request time and rate-limit waits per endpoint.

    Safe to share between concurrently running export tasks.
    """

    def __init__(self):
        self._stats: Dict[str, EndpointStats] = {}
        self._lock = threading.Lock()

    def record_call(self, endpoint: str, request_time: float, rate_limit_wait: float = 0.0) -> None:
        with self._lock:
            stats = self._stats.setdefault(endpoint, EndpointStats())
            stats.call_count += 1
            stats.total_request_time += request_time
            stats.total_rate_limit_wait += rate_limit_wait

    @contextmanager
    def track(self, endpoint: str) -> Iterator[None]:
        """Time the enclosed block and record it as one call."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_call(endpoint, time.perf_counter() - started)

    @property
    def has_calls(self) -> bool:
        return bool(self._stats)

    def get(self, endpoint: str) -> EndpointStats:
        with self._lock:
            stats = self._stats.get(endpoint, EndpointStats())
            return EndpointStats(stats.call_count, stats.total_request_time, stats.total_rate_limit_wait)

    def _sorted(self) -> List[Tuple[str, EndpointStats]]:
        with self._lock:
            return sorted(self._stats.items(), key=lambda kv: kv[1].total_time, reverse=True)

    def get_summary(self) -> str:
        """Plain-text summary, most expensive endpoint first."""
        if not self._stats:
            return ""

        lines = [
            "API Statistics:",
            "    Endpoint             Calls    Request Time   Rate Limit Wait",
            "    " + "-" * 63,
        ]
        total = EndpointStats()
        for endpoint, stats in self._sorted():
            lines.append(
                f"    {endpoint:<20} {stats.call_count:>5}     "
                f"{format_seconds(stats.total_request_time):>10}      "
                f"{format_seconds(stats.total_rate_limit_wait):>10}"
            )
            total.call_count += stats.call_count
            total.total_request_time += stats.total_request_time
            total.total_rate_limit_wait += stats.total_rate_limit_wait

        lines.append("    " + "-" * 63)
        lines.append(
            f"    {'Total':<20} {total.call_count:>5}     "
            f"{format_seconds(total.total_request_time):>10}      "
            f"{format_seconds(total.total_rate_limit_wait):>10}"
        )
        return "\n".join(lines) + "\n"

    def to_table(self) -> Table:
        """Rich table version of the summary."""
        table = Table(title="API Statistics")
        table.add_column("Endpoint", style="cyan")
        table.add_column("Calls", style="green", justify="right")
        table.add_column("Request Time", justify="right")
        table.add_column("Rate Limit Wait", style="yellow", justify="right")

        for endpoint, stats in self._sorted():
            table.add_row(
                endpoint,
                str(stats.call_count),
                format_seconds(stats.total_request_time),
                format_seconds(stats.total_rate_limit_wait),
            )
        return table


def format_seconds(seconds: float) -> str:
    if seconds >= 3600:
        return f"{seconds / 3600:.1f}h"
    if seconds >= 60:
        return f"{seconds / 60:.1f}m"
    if seconds >= 0.1:
        return f"{seconds:.1f}s"
    return "0.0s"
