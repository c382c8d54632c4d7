"""
Timing Utilities.

    with timeit("upstream_open") as t:
        stream = await gateway.synthesize(...)
    verbose(_LOG, "stage", event="upstream_open", seconds=t.seconds)

Works inside coroutines: the block's wall-clock time includes any awaits.
Uses time.perf_counter() for high-resolution timing.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: What was timed (e.g., "reserve", "persist").
        seconds: Duration in seconds.
        meta: Optional metadata for additional context.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager for timing code blocks.

    ``timing`` is set when the block exits, also when it raises.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)

    @property
    def seconds(self) -> float:
        """Elapsed seconds, rounded for logging (-1.0 before exit)."""
        if self.timing is None:
            return -1.0
        return round(self.timing.seconds, 4)
