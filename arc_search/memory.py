"""
Distilled strategy memory for the ARC search engine.

Every pipeline that solves a task is stored under the task's fingerprint.
When a similar task arrives later, the memory is consulted first: recalled
pipelines are cheap to re-validate, and when one works the expensive searches
never run. Entries carry usage counters and a score mixing popularity,
reliability and recency; when the store is full the lowest-scoring entries go.

Near misses (pipelines that came close without solving) are kept in a
separate, bounded heuristics list and used to seed later searches.

The store is an explicit object constructed with its configuration. Passing
``path=None`` keeps it purely in memory, which is what tests use.
"""

from __future__ import annotations

import json
import logging
import math
import os
import threading
import time
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .canonical import pipeline_key
from .dsl import OPS, Pipeline, pipeline_from_json, pipeline_to_json, validate_pipeline_names
from .features import Fingerprint, similarity

logger = logging.getLogger(__name__)

DISTILLED_FILE = "distilled.json"
HEURISTICS_FILE = "heuristics.json"
SECONDS_PER_DAY = 86400.0


def entry_score(
    hits: int,
    successes: int,
    failures: int,
    days_idle: float,
    recency_decay_days: float = 1.0,
) -> float:
    """Blend of log-scaled hits, success rate and exponential recency."""
    attempts = successes + failures
    success_rate = successes / attempts if attempts else 0.0
    recency = math.exp(-max(0.0, days_idle) / recency_decay_days)
    return 0.4 * math.log2(hits + 1) + 0.4 * success_rate + 0.2 * recency


@dataclass
class MemoryEntry:
    fingerprint: Fingerprint
    pipeline: Pipeline
    source: str
    created_at: float
    last_used: float
    hits: int = 1
    successes: int = 0
    failures: int = 0
    score: float = 0.0

    @property
    def key(self) -> str:
        return self.fingerprint.hash

    @property
    def success_rate(self) -> float:
        attempts = self.successes + self.failures
        return self.successes / attempts if attempts else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint.to_dict(),
            "pipeline": pipeline_to_json(self.pipeline),
            "source": self.source,
            "created_at": self.created_at,
            "last_used": self.last_used,
            "hits": self.hits,
            "successes": self.successes,
            "failures": self.failures,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        return cls(
            fingerprint=Fingerprint.from_dict(data["fingerprint"]),
            pipeline=pipeline_from_json(data["pipeline"]),
            source=str(data.get("source", "unknown")),
            created_at=float(data["created_at"]),
            last_used=float(data["last_used"]),
            hits=int(data.get("hits", 1)),
            successes=int(data.get("successes", 0)),
            failures=int(data.get("failures", 0)),
            score=float(data.get("score", 0.0)),
        )


@dataclass
class Heuristic:
    """A low-confidence candidate for tasks with a given fingerprint hash."""

    fingerprint_hash: str
    pipeline: Pipeline
    score: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint_hash": self.fingerprint_hash,
            "pipeline": pipeline_to_json(self.pipeline),
            "score": self.score,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Heuristic":
        return cls(
            fingerprint_hash=str(data["fingerprint_hash"]),
            pipeline=pipeline_from_json(data["pipeline"]),
            score=float(data["score"]),
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True)
class Recalled:
    entry: MemoryEntry
    similarity: float

    @property
    def weight(self) -> float:
        return self.similarity * self.entry.score


def _known_ops(pipeline: Pipeline) -> bool:
    return all(name in OPS for name, _ in pipeline)


class MemoryStore:
    """Bounded, score-ranked store of previously successful pipelines."""

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        max_entries: int = 500,
        similarity_threshold: float = 0.75,
        max_heuristics: int = 1000,
        recency_decay_days: float = 1.0,
        clock: Callable[[], float] = time.time,
        autoload: bool = True,
    ) -> None:
        if max_entries <= 0 or max_heuristics <= 0:
            raise ValueError("memory capacities must be positive")
        if recency_decay_days <= 0:
            raise ValueError("recency_decay_days must be positive")
        self.path = Path(path) if path is not None else None
        self.max_entries = max_entries
        self.similarity_threshold = similarity_threshold
        self.max_heuristics = max_heuristics
        self.recency_decay_days = recency_decay_days
        self.clock = clock
        self.entries: Dict[str, MemoryEntry] = {}
        self.heuristics: List[Heuristic] = []
        self.persistent = self.path is not None
        self._lock = threading.RLock()
        if autoload and self.path is not None:
            self.load()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def _refresh(self, entry: MemoryEntry, now: float) -> None:
        days_idle = (now - entry.last_used) / SECONDS_PER_DAY
        entry.score = entry_score(
            entry.hits, entry.successes, entry.failures, days_idle, self.recency_decay_days
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------
    def recall(self, fp: Fingerprint, limit: Optional[int] = None) -> List[Recalled]:
        """Entries similar to ``fp``, best (similarity x score) first."""
        if fp.degenerate:
            return []
        with self._lock:
            found = []
            for entry in self.entries.values():
                sim = similarity(fp, entry.fingerprint)
                if sim >= self.similarity_threshold:
                    found.append(Recalled(entry, sim))
        found.sort(key=lambda r: (r.weight, r.entry.last_used), reverse=True)
        return found[:limit] if limit is not None else found

    def distill(
        self,
        fp: Fingerprint,
        pipeline: Pipeline,
        source: str,
        outcome: bool = True,
    ) -> Optional[MemoryEntry]:
        """Insert or update the entry for ``fp``.

        Returns the stored entry, or ``None`` for a degenerate fingerprint,
        which is never stored.

        Raises
        ------
        UnknownPrimitiveError
            If ``pipeline`` names an unregistered primitive.
        """
        validate_pipeline_names(pipeline)
        if fp.degenerate:
            logger.debug("memory distill skipped", extra={"reason": "degenerate fingerprint"})
            return None
        now = self.clock()
        with self._lock:
            entry = self.entries.get(fp.hash)
            if entry is None:
                entry = MemoryEntry(
                    fingerprint=fp,
                    pipeline=list(pipeline),
                    source=source,
                    created_at=now,
                    last_used=now,
                    hits=1,
                )
                self.entries[fp.hash] = entry
            else:
                entry.hits += 1
                entry.last_used = now
                if outcome:
                    entry.pipeline = list(pipeline)
                    entry.source = source
            if outcome:
                entry.successes += 1
            else:
                entry.failures += 1
            self._refresh(entry, now)
            self.evict()
            self.save()
        logger.info(
            "memory distilled",
            extra={"fingerprint": fp.hash, "source": source, "score": round(entry.score, 3)},
        )
        return entry

    def record_outcome(self, fp_hash: str, success: bool) -> None:
        """Feed back whether a recalled entry validated on a new task."""
        now = self.clock()
        with self._lock:
            entry = self.entries.get(fp_hash)
            if entry is None:
                return
            if success:
                entry.hits += 1
                entry.successes += 1
                entry.last_used = now
            else:
                entry.failures += 1
            self._refresh(entry, now)
            self.save()

    def evict(self) -> List[MemoryEntry]:
        """Refresh scores and drop the lowest until at capacity."""
        now = self.clock()
        with self._lock:
            for entry in self.entries.values():
                self._refresh(entry, now)
            if len(self.entries) <= self.max_entries:
                return []
            ranked = sorted(
                self.entries.values(), key=lambda e: (e.score, e.last_used), reverse=True
            )
            removed = ranked[self.max_entries:]
            for entry in removed:
                del self.entries[entry.key]
        logger.debug("memory evicted", extra={"count": len(removed)})
        return removed

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------
    def remember_heuristic(self, fp: Fingerprint, pipeline: Pipeline, score: float) -> None:
        if fp.degenerate or not pipeline:
            return
        validate_pipeline_names(pipeline)
        key = pipeline_key(pipeline)
        now = self.clock()
        with self._lock:
            for h in self.heuristics:
                if h.fingerprint_hash == fp.hash and pipeline_key(h.pipeline) == key:
                    h.score = max(h.score, float(score))
                    h.timestamp = now
                    break
            else:
                self.heuristics.append(Heuristic(fp.hash, list(pipeline), float(score), now))
            if len(self.heuristics) > self.max_heuristics:
                self.heuristics.sort(key=lambda h: h.timestamp)
                del self.heuristics[: len(self.heuristics) - self.max_heuristics]
            self.save()

    def heuristics_for(self, fp: Fingerprint, limit: Optional[int] = None) -> List[Heuristic]:
        if fp.degenerate:
            return []
        with self._lock:
            found = [h for h in self.heuristics if h.fingerprint_hash == fp.hash]
        found.sort(key=lambda h: (h.score, h.timestamp), reverse=True)
        return found[:limit] if limit is not None else found

    def op_priors(self) -> Dict[str, float]:
        """Relative frequency of each primitive across stored pipelines."""
        with self._lock:
            counts = Counter(name for e in self.entries.values() for name, _ in e.pipeline)
        total = sum(counts.values())
        if not total:
            return {}
        return {name: count / total for name, count in counts.items()}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _read(self, filename: str, key: str) -> List[Dict[str, Any]]:
        assert self.path is not None
        target = self.path / filename
        if not target.exists():
            return []
        try:
            data = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("memory file unreadable, starting empty", extra={"file": str(target), "error": str(exc)})
            return []
        items = data.get(key) if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.warning("memory file malformed, starting empty", extra={"file": str(target)})
            return []
        return items

    def load(self) -> None:
        """Load both documents; unreadable files load as empty."""
        if self.path is None:
            return
        entries: Dict[str, MemoryEntry] = {}
        heuristics: List[Heuristic] = []
        dropped = 0
        for raw in self._read(DISTILLED_FILE, "entries"):
            try:
                entry = MemoryEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                dropped += 1
                continue
            if not _known_ops(entry.pipeline) or entry.fingerprint.degenerate:
                dropped += 1
                continue
            entries[entry.key] = entry
        for raw in self._read(HEURISTICS_FILE, "heuristics"):
            try:
                heuristic = Heuristic.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                dropped += 1
                continue
            if not _known_ops(heuristic.pipeline):
                dropped += 1
                continue
            heuristics.append(heuristic)
        if dropped:
            logger.warning("memory records dropped on load", extra={"dropped": dropped})
        with self._lock:
            self.entries = entries
            self.heuristics = heuristics[-self.max_heuristics:]
            self.evict()
        logger.info(
            "memory loaded",
            extra={"entries": len(self.entries), "heuristics": len(self.heuristics)},
        )

    def _write(self, filename: str, payload: Dict[str, Any]) -> None:
        assert self.path is not None
        target = self.path / filename
        tmp_path = target.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, target)

    def save(self) -> None:
        """Persist both documents atomically; I/O errors disable persistence."""
        if self.path is None or not self.persistent:
            return
        with self._lock:
            doc = self.export()
            try:
                self.path.mkdir(parents=True, exist_ok=True)
                self._write(DISTILLED_FILE, {"version": 1, "entries": doc["entries"]})
                self._write(HEURISTICS_FILE, {"version": 1, "heuristics": doc["heuristics"]})
            except OSError as exc:
                self.persistent = False
                logger.warning(
                    "memory persistence failed, continuing in memory",
                    extra={"path": str(self.path), "error": str(exc)},
                )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def export(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": [e.to_dict() for e in self.entries.values()],
                "heuristics": [h.to_dict() for h in self.heuristics],
            }

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()
            self.heuristics.clear()
            self.save()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            scores = [e.score for e in self.entries.values()]
            return {
                "entries": len(self.entries),
                "heuristics": len(self.heuristics),
                "capacity": self.max_entries,
                "persistent": self.persistent,
                "total_hits": sum(e.hits for e in self.entries.values()),
                "mean_score": sum(scores) / len(scores) if scores else 0.0,
            }

    def __len__(self) -> int:
        return len(self.entries)


__all__ = [
    "DISTILLED_FILE",
    "HEURISTICS_FILE",
    "MemoryEntry",
    "Heuristic",
    "Recalled",
    "MemoryStore",
    "entry_score",
]
