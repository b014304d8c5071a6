"""Filesystem-backed storage for crawl run artifacts.

Storage owns the `_crawl` layout under a run's output directory. Other modules
should use this API instead of building paths manually.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Mapping

from .constants import (
    CHECKPOINT_FILENAME,
    CRAWL_SUBDIR,
    DISCOVERED_FILENAME,
    GRAPH_FILENAME,
    JSON_INDENT,
    PLAN_FILENAME,
    REPORT_FILENAME,
    STOP_FILENAME,
    URLS_FILENAME,
)
from .graph import DiscoveryGraph
from .types import JSONDict, Plan, VisitRecord


LOGGER = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str) -> None:
    """Write `content` to `path` via a temp file and `os.replace`."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=path.name + ".",
        suffix=".tmp",
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def atomic_write_json(path: Path, payload: Mapping[str, Any], *, sort_keys: bool = True) -> None:
    content = json.dumps(payload, ensure_ascii=False, indent=JSON_INDENT, sort_keys=sort_keys) + "\n"
    atomic_write_text(path, content)


def read_json(path: Path) -> Any:
    """Parse JSON at `path`; raises `OSError` or `ValueError` on failure."""

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


class Storage:
    """Persist run outputs under `<output_dir>/_crawl`."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)
        self.crawl_dir = self.output_dir / CRAWL_SUBDIR

        self.urls_path = self.crawl_dir / URLS_FILENAME
        self.discovered_path = self.crawl_dir / DISCOVERED_FILENAME
        self.graph_path = self.crawl_dir / GRAPH_FILENAME
        self.report_path = self.crawl_dir / REPORT_FILENAME
        self.plan_path = self.crawl_dir / PLAN_FILENAME
        self.checkpoint_path = self.crawl_dir / CHECKPOINT_FILENAME
        self.stop_path = self.crawl_dir / STOP_FILENAME

        self.crawl_dir.mkdir(parents=True, exist_ok=True)

    @property
    def paths(self) -> JSONDict:
        """Return important output paths for logging/CLI status messages."""

        return {
            "crawl_dir": str(self.crawl_dir),
            "urls": str(self.urls_path),
            "discovered": str(self.discovered_path),
            "graph": str(self.graph_path),
            "report": str(self.report_path),
            "plan": str(self.plan_path),
            "checkpoint": str(self.checkpoint_path),
            "stop": str(self.stop_path),
        }

    def write_visit_order(self, visits: Iterable[VisitRecord]) -> list[str]:
        """Write successfully fetched URLs in fetch order; returns what was written."""

        urls = [visit.url for visit in visits if visit.ok]
        atomic_write_text(self.urls_path, "".join(f"{url}\n" for url in urls))
        return urls

    def write_discovered(self, urls: Iterable[str]) -> None:
        atomic_write_text(self.discovered_path, "".join(f"{url}\n" for url in urls))

    def write_graph(self, graph: DiscoveryGraph) -> None:
        atomic_write_json(self.graph_path, graph.to_json(), sort_keys=False)

    def write_report(self, report: Mapping[str, Any]) -> None:
        atomic_write_json(self.report_path, report)

    def save_plan(self, plan: Plan) -> bool:
        """Persist `plan.json`. Failures are logged and reported as False."""

        try:
            atomic_write_json(self.plan_path, plan.to_json(), sort_keys=False)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("Failed to persist plan to %s: %s", self.plan_path, exc)
            return False
        return True

    def save_checkpoint(self, payload: Mapping[str, Any]) -> None:
        atomic_write_json(self.checkpoint_path, payload, sort_keys=False)

    def load_checkpoint(self) -> dict[str, Any] | None:
        """Return the frontier checkpoint, or None when absent or unreadable."""

        if not self.checkpoint_path.exists():
            return None
        try:
            payload = read_json(self.checkpoint_path)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable checkpoint %s: %s", self.checkpoint_path, exc)
            return None
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring checkpoint %s: top level is not an object", self.checkpoint_path)
            return None
        return payload

    def clear_checkpoint(self) -> None:
        try:
            self.checkpoint_path.unlink()
        except FileNotFoundError:
            pass

    def stop_requested(self) -> bool:
        return self.stop_path.exists()


__all__ = [
    "Storage",
    "atomic_write_json",
    "atomic_write_text",
    "read_json",
]
