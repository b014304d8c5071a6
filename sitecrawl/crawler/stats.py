"""Crawl statistics aggregation for run reports."""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Mapping

from .frontier import EnqueueResult, EnqueueStatus
from .types import ClassificationTag, RenderResult, utc_now_iso


class StatsCollector:
    """Collect and summarize scheduler runtime statistics.

    Guarded by a lock so a collector can be shared if frontier shards ever run
    side by side.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_at = utc_now_iso()
        self.finished_at: str | None = None

        self._enqueue_counts: dict[str, int] = defaultdict(int)
        self._enqueued_by_tag: dict[str, int] = defaultdict(int)
        self._fetched_ok = 0
        self._fetched_error = 0
        self._fetched_by_tag: dict[str, int] = defaultdict(int)
        self._error_type_counts: dict[str, int] = defaultdict(int)
        self._elapsed_ms_total = 0
        self._elapsed_samples = 0
        self._links_total = 0
        self._quota_dropped = 0
        self._proxy_rotations = 0
        self._frontier_snapshot: dict[str, int | str] = {}

    def record_enqueue(self, result: EnqueueResult) -> None:
        with self._lock:
            self._enqueue_counts[result.status.value] += 1
            if result.status == EnqueueStatus.ENQUEUED and result.item is not None:
                self._enqueued_by_tag[result.item.tag.value] += 1

    def record_fetch(self, result: RenderResult, tag: ClassificationTag, link_count: int) -> None:
        with self._lock:
            if result.ok:
                self._fetched_ok += 1
                self._fetched_by_tag[tag.value] += 1
                self._links_total += link_count
            else:
                self._fetched_error += 1
                err_type = (result.error or "").split(":", maxsplit=1)[0].strip() or "Unknown"
                self._error_type_counts[err_type] += 1

            if result.elapsed_ms is not None:
                self._elapsed_ms_total += int(result.elapsed_ms)
                self._elapsed_samples += 1

    def record_quota_drop(self) -> None:
        with self._lock:
            self._quota_dropped += 1

    def record_proxy_rotation(self) -> None:
        with self._lock:
            self._proxy_rotations += 1

    def record_frontier_snapshot(self, snapshot: Mapping[str, int | str]) -> None:
        with self._lock:
            self._frontier_snapshot = dict(snapshot)

    @property
    def fetched_ok(self) -> int:
        with self._lock:
            return self._fetched_ok

    @property
    def fetched_error(self) -> int:
        with self._lock:
            return self._fetched_error

    @property
    def quota_dropped(self) -> int:
        with self._lock:
            return self._quota_dropped

    def finish(self) -> None:
        with self._lock:
            self.finished_at = utc_now_iso()

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-serializable summary payload."""

        with self._lock:
            start = _parse_iso_utc(self.started_at)
            end = _parse_iso_utc(self.finished_at) if self.finished_at else datetime.now(timezone.utc)
            duration_seconds = max(0.0, (end - start).total_seconds())
            fetched_total = self._fetched_ok + self._fetched_error

            return {
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "duration_seconds": duration_seconds,
                "fetched_ok": self._fetched_ok,
                "fetched_error": self._fetched_error,
                "fetched_per_second": fetched_total / duration_seconds if duration_seconds > 0 else 0.0,
                "fetched_by_tag": dict(self._fetched_by_tag),
                "error_type_counts": dict(self._error_type_counts),
                "elapsed_ms_total": self._elapsed_ms_total,
                "elapsed_ms_avg": (
                    self._elapsed_ms_total / self._elapsed_samples if self._elapsed_samples else 0.0
                ),
                "links_total": self._links_total,
                "quota_dropped": self._quota_dropped,
                "proxy_rotations": self._proxy_rotations,
                "frontier": {
                    "status_counts": dict(self._enqueue_counts),
                    "enqueued_by_tag": dict(self._enqueued_by_tag),
                    "snapshot": dict(self._frontier_snapshot),
                },
            }


def _parse_iso_utc(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = ["StatsCollector"]
