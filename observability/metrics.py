"""Metrics client abstraction.

- MetricsClient: interface used by the pipeline
- NullMetricsClient: no-op (default)
- StdoutMetricsClient: JSON lines on stderr, for local debugging
- RecordingMetricsClient: keeps emitted samples in memory (tests, CLI summaries)

The backend is chosen by ``HMR_METRICS_BACKEND`` (``null``, ``stdout``, ``memory``).
"""

from __future__ import annotations

import json
import os
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


class MetricsClient(ABC):
    @abstractmethod
    def incr(self, name: str, tags: dict[str, str] | None = None, value: int = 1) -> None:
        """Increment a counter."""
        ...

    @abstractmethod
    def observe(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Record a gauge observation."""
        ...

    @abstractmethod
    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        """Record a duration in milliseconds."""
        ...


class NullMetricsClient(MetricsClient):
    def incr(self, name: str, tags: dict[str, str] | None = None, value: int = 1) -> None:
        pass

    def observe(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        pass


class StdoutMetricsClient(MetricsClient):
    def __init__(self, prefix: str = "hmr"):
        self.prefix = prefix

    def _emit(self, kind: str, name: str, value: Any, tags: dict[str, str] | None) -> None:
        line = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "type": kind,
            "metric": f"{self.prefix}.{name}",
            "value": value,
            "tags": tags or {},
        }
        print(json.dumps(line), file=sys.stderr)

    def incr(self, name: str, tags: dict[str, str] | None = None, value: int = 1) -> None:
        self._emit("counter", name, value, tags)

    def observe(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self._emit("gauge", name, value, tags)

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        self._emit("timing", name, value_ms, tags)


@dataclass(frozen=True)
class MetricSample:
    kind: str
    name: str
    value: float
    tags: tuple[tuple[str, str], ...] = ()


class RecordingMetricsClient(MetricsClient):
    """Thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.samples: list[MetricSample] = []

    def _add(self, kind: str, name: str, value: float, tags: dict[str, str] | None) -> None:
        sample = MetricSample(kind, name, float(value), tuple(sorted((tags or {}).items())))
        with self._lock:
            self.samples.append(sample)

    def incr(self, name: str, tags: dict[str, str] | None = None, value: int = 1) -> None:
        self._add("counter", name, value, tags)

    def observe(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self._add("gauge", name, value, tags)

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        self._add("timing", name, value_ms, tags)

    def names(self, kind: str | None = None) -> list[str]:
        with self._lock:
            return [s.name for s in self.samples if kind is None or s.kind == kind]

    def reset(self) -> None:
        with self._lock:
            self.samples.clear()


_metrics_client: MetricsClient | None = None


def get_metrics_client() -> MetricsClient:
    global _metrics_client
    if _metrics_client is None:
        backend = os.getenv("HMR_METRICS_BACKEND", "null").lower()
        if backend == "stdout":
            _metrics_client = StdoutMetricsClient()
        elif backend == "memory":
            _metrics_client = RecordingMetricsClient()
        else:
            _metrics_client = NullMetricsClient()
    return _metrics_client


def set_metrics_client(client: MetricsClient | None) -> None:
    """Replace the process-wide client; ``None`` re-reads the environment on next use."""
    global _metrics_client
    _metrics_client = client


__all__ = [
    "MetricSample",
    "MetricsClient",
    "NullMetricsClient",
    "RecordingMetricsClient",
    "StdoutMetricsClient",
    "get_metrics_client",
    "set_metrics_client",
]
