"""
Metrics Collection for the Legal Assistant

Tracks chat-turn latency, retrieval hit counts, ingestion throughput and
errors for the /metrics endpoint.
"""

import time
import uuid
import logging
import threading
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class TurnMetrics:
    """Metrics for a single chat turn."""
    turn_id: str
    owner_id: str
    message_text: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    chunks_used: int = 0
    grounded: bool = False
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Aggregated system metrics."""
    # Chat turns
    total_turns: int = 0
    successful_turns: int = 0
    failed_turns: int = 0
    grounded_turns: int = 0
    chunks_cited: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    # Ingestion
    documents_ingested: int = 0
    documents_failed: int = 0
    chunks_created: int = 0
    total_ingestion_time_ms: float = 0

    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))

    turns_by_owner: dict = field(default_factory=lambda: defaultdict(int))
    documents_by_owner: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        if self.total_turns == 0:
            return 0
        return self.total_latency_ms / self.total_turns

    @property
    def p95_latency_ms(self) -> float:
        """95th percentile turn latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def grounded_rate(self) -> float:
        """Share of successful turns that had at least one evidence chunk."""
        if self.successful_turns == 0:
            return 0
        return self.grounded_turns / self.successful_turns

    @property
    def error_rate(self) -> float:
        if self.total_turns == 0:
            return 0
        return self.failed_turns / self.total_turns

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "chat": {
                "total": self.total_turns,
                "successful": self.successful_turns,
                "failed": self.failed_turns,
                "error_rate": f"{self.error_rate:.2%}",
                "grounded_rate": f"{self.grounded_rate:.2%}",
                "chunks_cited": self.chunks_cited,
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "ingestion": {
                "documents": self.documents_ingested,
                "failed": self.documents_failed,
                "chunks": self.chunks_created,
                "avg_time_ms": round(
                    self.total_ingestion_time_ms / max(self.documents_ingested, 1), 2
                ),
            },
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates system metrics.

    Usage:
        collector = get_metrics_collector()

        with collector.track_turn(owner_id, message) as tracker:
            result = orchestrator.answer(message, owner_id)
            tracker.set_result(len(result.used_chunks))

        collector.get_metrics_dict()
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern for global metrics collection."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.metrics = SystemMetrics()
        self._turn_history: list[TurnMetrics] = []
        self._max_history = 1000
        self._start_time = datetime.now()
        self._lock = threading.Lock()
        self._initialized = True

    def reset(self):
        """Reset all metrics (for testing)."""
        with self._lock:
            self.metrics = SystemMetrics()
            self._turn_history = []
            self._start_time = datetime.now()

    class TurnTracker:
        """Context manager for tracking one chat turn."""

        def __init__(self, collector: 'MetricsCollector', owner_id: str, message_text: str):
            self.collector = collector
            self.turn = TurnMetrics(
                turn_id=f"t_{uuid.uuid4().hex[:12]}",
                owner_id=owner_id,
                message_text=message_text[:200],
                start_time=time.time(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.turn.end_time = time.time()
            self.turn.latency_ms = (self.turn.end_time - self.turn.start_time) * 1000

            if exc_type:
                self.turn.error = str(exc_val)
                self.collector._record_error(exc_type.__name__)

            self.collector._record_turn(self.turn)
            return False

        def set_result(self, chunks_used: int):
            self.turn.chunks_used = chunks_used
            self.turn.grounded = chunks_used > 0

    def track_turn(self, owner_id: str, message_text: str) -> TurnTracker:
        """
        Create a chat-turn tracker context manager.

        Usage:
            with collector.track_turn(owner_id, message) as tracker:
                result = orchestrator.answer(...)
                tracker.set_result(len(result.used_chunks))
        """
        return self.TurnTracker(self, owner_id, message_text)

    def _record_turn(self, turn: TurnMetrics):
        with self._lock:
            self.metrics.total_turns += 1

            if turn.error:
                self.metrics.failed_turns += 1
            else:
                self.metrics.successful_turns += 1
                self.metrics.chunks_cited += turn.chunks_used
                if turn.grounded:
                    self.metrics.grounded_turns += 1

            self.metrics.total_latency_ms += turn.latency_ms
            self.metrics.min_latency_ms = min(self.metrics.min_latency_ms, turn.latency_ms)
            self.metrics.max_latency_ms = max(self.metrics.max_latency_ms, turn.latency_ms)
            self.metrics.latencies.append(turn.latency_ms)
            if len(self.metrics.latencies) > self._max_history:
                self.metrics.latencies = self.metrics.latencies[-self._max_history:]

            self.metrics.turns_by_owner[turn.owner_id] += 1

            self._turn_history.append(turn)
            if len(self._turn_history) > self._max_history:
                self._turn_history = self._turn_history[-self._max_history:]

    def _record_error(self, error_type: str):
        with self._lock:
            self.metrics.errors_by_type[error_type] += 1

    def record_ingestion(
        self,
        owner_id: str,
        document_id: str,
        chunks_count: int,
        duration_ms: float
    ):
        """Record a successfully processed document."""
        with self._lock:
            self.metrics.documents_ingested += 1
            self.metrics.chunks_created += chunks_count
            self.metrics.total_ingestion_time_ms += duration_ms
            self.metrics.documents_by_owner[owner_id] += 1

    def record_ingestion_failure(self, error_type: str):
        """Record a document that ended in ``failed``."""
        with self._lock:
            self.metrics.documents_failed += 1
            self.metrics.errors_by_type[error_type] += 1

    def get_metrics(self) -> SystemMetrics:
        return self.metrics

    def get_metrics_dict(self) -> dict:
        with self._lock:
            data = self.metrics.to_dict()
        data["uptime_seconds"] = round(self.get_uptime().total_seconds(), 1)
        return data

    def get_recent_turns(self, limit: int = 10) -> list[TurnMetrics]:
        return self._turn_history[-limit:]

    def get_uptime(self) -> timedelta:
        return datetime.now() - self._start_time

    def get_owner_summary(self) -> dict:
        return {
            "turns_by_owner": dict(self.metrics.turns_by_owner),
            "documents_by_owner": dict(self.metrics.documents_by_owner),
        }


_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
