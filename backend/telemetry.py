"""Pipeline telemetry: one structured record per user submission.

Records per-request:
  - Modality (text / image) and conversation id
  - Cache replay, upstream attempts per generation pass
  - Search trigger, query and result count
  - Outcome (ok / upstream_exhausted / error / cancelled)
  - Latency: first chunk, generation, total

Usage:
    from telemetry import PipelineTelemetry, TelemetryStore

    t = PipelineTelemetry(conversation_id=cid, modality="text")
    t.mark("pipeline_start")
    ...
    t.finalize()
    TelemetryStore.append(t)

    # Export all records
    TelemetryStore.export_jsonl("telemetry_log.jsonl")
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field, asdict
from pathlib import Path
from threading import Lock

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PIPELINE TELEMETRY RECORD
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class PipelineTelemetry:
    """Single pipeline execution record."""

    # ── Identity ──────────────────────────────────────────────────────────
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    conversation_id: str = ""
    user_id: str = ""
    modality: str = "text"           # text | image
    timestamp: float = field(default_factory=time.time)

    # ── Generation ────────────────────────────────────────────────────────
    cache_replayed: bool = False     # first pass served from cache
    upstream_attempts: int = 0       # summed over both passes
    passes: int = 0
    response_chars: int = 0
    chunks_sent: int = 0

    # ── Search ────────────────────────────────────────────────────────────
    search_triggered: bool = False
    search_query: str = ""
    search_results: int = 0

    # ── Outcome ───────────────────────────────────────────────────────────
    outcome: str = "ok"              # ok | upstream_exhausted | error | cancelled
    persisted: bool = False

    # ── Latencies (ms) ────────────────────────────────────────────────────
    latency_first_chunk_ms: float = 0.0
    latency_generate_ms: float = 0.0
    latency_total_ms: float = 0.0

    # ── Stage markers (internal) ──────────────────────────────────────────
    _marks: dict = field(default_factory=dict, repr=False)

    def mark(self, label: str) -> None:
        """Record a timestamp for latency computation (first mark wins)."""
        self._marks.setdefault(label, time.perf_counter())

    def _elapsed(self, start: str, end: str) -> float:
        """Milliseconds between two marks."""
        s = self._marks.get(start)
        e = self._marks.get(end)
        if s is not None and e is not None:
            return round((e - s) * 1000, 2)
        return 0.0

    def record_answer(self, answer) -> None:
        """Record from an AugmentedAnswer."""
        self.cache_replayed = answer.first.replayed
        self.upstream_attempts = answer.first.attempts + (answer.second.attempts if answer.second else 0)
        self.passes = len(answer.passes)
        self.response_chars = len(answer.text)
        if answer.search is not None:
            self.search_triggered = True
            self.search_query = answer.search.query
            self.search_results = len(answer.search.results)

    def record_result(self, result) -> None:
        """Record from a single GenerationResult (image requests)."""
        self.cache_replayed = result.replayed
        self.upstream_attempts = result.attempts
        self.passes = 1
        self.response_chars = len(result.text)

    def finalize(self) -> None:
        """Compute derived fields from marks."""
        self.latency_first_chunk_ms = self._elapsed("pipeline_start", "first_chunk")
        self.latency_generate_ms = self._elapsed("generate_start", "generate_end")
        self.latency_total_ms = self._elapsed("pipeline_start", "pipeline_end")

    def to_dict(self) -> dict:
        """Serializable dict (excludes internal marks)."""
        return {k: v for k, v in asdict(self).items() if not k.startswith("_")}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ═══════════════════════════════════════════════════════════════════════════
#  TELEMETRY STORE (in-memory ring buffer + JSONL export)
# ═══════════════════════════════════════════════════════════════════════════

class TelemetryStore:
    """Thread-safe in-memory telemetry store with JSONL export.

    Keeps the last ``max_records`` entries in a ring buffer.
    """

    _records: list[PipelineTelemetry] = []
    _lock = Lock()
    _max_records: int = 10_000

    @classmethod
    def configure(cls, max_records: int = 10_000) -> None:
        cls._max_records = max_records

    @classmethod
    def append(cls, record: PipelineTelemetry) -> None:
        with cls._lock:
            cls._records.append(record)
            if len(cls._records) > cls._max_records:
                cls._records = cls._records[-cls._max_records:]

    @classmethod
    def count(cls) -> int:
        with cls._lock:
            return len(cls._records)

    @classmethod
    def recent(cls, n: int = 20) -> list[dict]:
        with cls._lock:
            return [r.to_dict() for r in cls._records[-n:]]

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._records.clear()

    @classmethod
    def export_jsonl(cls, path: str | Path) -> int:
        """Write all records to a JSONL file. Returns count written."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with cls._lock:
            records = list(cls._records)
        with open(path, "w", encoding="utf-8") as f:
            for r in records:
                f.write(r.to_json() + "\n")
        logger.info(f"Telemetry: exported {len(records)} records to {path}")
        return len(records)

    @classmethod
    def summary(cls) -> dict:
        """Aggregate statistics across all records."""
        with cls._lock:
            records = list(cls._records)
        if not records:
            return {"total_requests": 0}

        total = len(records)
        outcomes: dict[str, int] = {}
        for r in records:
            outcomes[r.outcome] = outcomes.get(r.outcome, 0) + 1

        def _avg(values: list[float]) -> float:
            values = [v for v in values if v > 0]
            return round(sum(values) / len(values), 2) if values else 0.0

        return {
            "total_requests": total,
            "outcomes": outcomes,
            "cache_replay_rate": round(sum(r.cache_replayed for r in records) / total * 100, 1),
            "search_rate": round(sum(r.search_triggered for r in records) / total * 100, 1),
            "image_requests": sum(1 for r in records if r.modality == "image"),
            "avg_upstream_attempts": round(sum(r.upstream_attempts for r in records) / total, 2),
            "avg_latency_ms": {
                "first_chunk": _avg([r.latency_first_chunk_ms for r in records]),
                "generate": _avg([r.latency_generate_ms for r in records]),
                "total": _avg([r.latency_total_ms for r in records]),
            },
        }
