"""
Thread-safe request statistics for the routeboard HTTP API.

RequestStats is fed by an HTTP middleware (one record() call per response)
and read by the /health endpoint. Critical sections only copy or bump
counters; formatting happens outside the lock.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """
    Format a duration the way Go's time.Duration prints it.

    Inputs:
        seconds: Non-negative duration in seconds

    Outputs:
        Compact string such as "850ms", "12.5s", "3m2s" or "1h0m5s"

    Example:
        >>> format_duration(0.25)
        '250ms'
        >>> format_duration(3725)
        '1h2m5s'
    """
    seconds = max(0.0, float(seconds))
    if seconds == 0:
        return "0s"
    if seconds < 1e-6:
        return f"{seconds * 1e9:g}ns"
    if seconds < 1e-3:
        return f"{seconds * 1e6:g}µs"
    if seconds < 1:
        return f"{seconds * 1e3:g}ms"

    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    secs_text = f"{round(secs, 9):g}s"
    if hours:
        return f"{int(hours)}h{int(minutes)}m{secs_text}"
    if minutes:
        return f"{int(minutes)}m{secs_text}"
    return secs_text


class RequestStats:
    """
    Thread-safe aggregator of HTTP response counters and timings.

    Inputs (constructor):
        clock: Optional callable returning wall-clock seconds (for tests)

    Outputs:
        RequestStats instance

    status_code_count holds the counts observed since the previous data()
    call; total_status_code_count and the response-time totals cover the
    whole process lifetime.

    Example:
        >>> stats = RequestStats()
        >>> stats.record(200, 0.002)
        >>> stats.data()["total_count"]
        1
    """

    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._started = clock()
        self._pid = os.getpid()
        self._window_counts: Dict[str, int] = defaultdict(int)
        self._total_counts: Dict[str, int] = defaultdict(int)
        self._total_response_time = 0.0

    def record(self, status_code: int, elapsed_seconds: float) -> None:
        """Record one completed response.

        Inputs:
            status_code: HTTP status sent to the client
            elapsed_seconds: Wall time spent producing the response

        Outputs:
            None
        """
        key = str(int(status_code))
        with self._lock:
            self._window_counts[key] += 1
            self._total_counts[key] += 1
            self._total_response_time += max(0.0, float(elapsed_seconds))

    def data(self) -> Dict[str, Any]:
        """
        Return a JSON-ready metrics payload and start a new counting window.

        Outputs:
            Dict with pid, uptime, uptime_sec, time, unixtime,
            status_code_count, total_status_code_count, count, total_count,
            total_response_time, total_response_time_sec,
            average_response_time and average_response_time_sec
        """
        with self._lock:
            window = dict(self._window_counts)
            totals = dict(self._total_counts)
            total_response_time = self._total_response_time
            self._window_counts.clear()

        now = self._clock()
        uptime = max(0.0, now - self._started)
        total_count = sum(totals.values())
        average = total_response_time / total_count if total_count else 0.0

        return {
            "pid": self._pid,
            "uptime": format_duration(uptime),
            "uptime_sec": uptime,
            "time": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            "unixtime": int(now),
            "status_code_count": window,
            "total_status_code_count": totals,
            "count": sum(window.values()),
            "total_count": total_count,
            "total_response_time": format_duration(total_response_time),
            "total_response_time_sec": total_response_time,
            "average_response_time": format_duration(average),
            "average_response_time_sec": average,
        }
