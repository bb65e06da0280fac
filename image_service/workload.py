"""Simulated image filtering.

Nothing here touches real pixels. ``simulate_filter`` is a stand-in that keeps
one CPU core busy for a requested wall-clock budget, so the service behaves
like a CPU-bound image pipeline under load tests and autoscaling demos.
"""
import math
import re
import time
from typing import NamedTuple, Optional

DEFAULT_DURATION_MS = 50

# Signed decimal integer, nothing else (no whitespace, underscores or floats)
_INT_PATTERN = re.compile(r'[+-]?[0-9]+')
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


class FilterResult(NamedTuple):
    pixels: int
    elapsed_ns: int


def parse_duration(raw: Optional[str]) -> int:
    """Return the requested processing time in ms, or the default."""
    if not raw or not _INT_PATTERN.fullmatch(raw):
        return DEFAULT_DURATION_MS
    value = int(raw)
    if value < _INT64_MIN or value > _INT64_MAX:
        return DEFAULT_DURATION_MS
    return value


def simulate_filter(duration_ms: int) -> FilterResult:
    """Burn CPU for ``duration_ms`` and report how many 'pixels' were touched.

    The loop never yields, so the calling thread is pinned for the whole
    budget. A budget of zero or less does no iterations at all.
    """
    start = time.perf_counter_ns()
    budget = duration_ms * 1_000_000

    x = 0.0001
    pixels = 0
    while time.perf_counter_ns() - start < budget:
        x += math.sqrt(x)
        pixels += 1

    return FilterResult(pixels, time.perf_counter_ns() - start)


def _with_fraction(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10 ** digits)
    frac_str = str(frac).rjust(digits, '0').rstrip('0')
    if frac_str:
        return f"{whole}.{frac_str}"
    return str(whole)


def format_elapsed(ns: int) -> str:
    """Render nanoseconds as e.g. ``850ns``, ``12.5µs``, ``50.01ms``, ``2m3.5s``."""
    if ns == 0:
        return '0s'
    sign = '-' if ns < 0 else ''
    ns = abs(ns)

    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_with_fraction(ns, 3)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_with_fraction(ns, 6)}ms"

    total_seconds, sub_second = divmod(ns, 1_000_000_000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)

    out = _with_fraction(seconds * 1_000_000_000 + sub_second, 9) + 's'
    if total_seconds >= 60:
        out = f"{minutes}m{out}"
    if total_seconds >= 3600:
        out = f"{hours}h{out}"
    return sign + out
