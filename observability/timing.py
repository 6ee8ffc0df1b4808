"""Timing helpers that report durations to the metrics client."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Generator

from .metrics import get_metrics_client


class TimingContext:
    def __init__(self, name: str, tags: dict[str, str] | None = None, emit_metric: bool = True):
        self.name = name
        self.tags = dict(tags or {})
        self.emit_metric = emit_metric
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "TimingContext":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if not self.emit_metric:
            return
        tags = dict(self.tags)
        tags["outcome"] = "error" if exc_type is not None else "ok"
        get_metrics_client().timing(self.name, self.elapsed_ms, tags)


@contextmanager
def timed(
    name: str, tags: dict[str, str] | None = None, emit_metric: bool = True
) -> Generator[TimingContext, None, None]:
    """Time a block and emit ``name`` with an ``outcome`` tag.

    Usage:
        with timed("render.fixed_layout") as t:
            render(...)
        log.info("rendered", extra={"elapsed_ms": t.elapsed_ms})
    """
    ctx = TimingContext(name, tags, emit_metric)
    with ctx:
        yield ctx


__all__ = ["TimingContext", "timed"]
