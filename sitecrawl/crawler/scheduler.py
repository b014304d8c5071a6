"""Breadth-first crawl scheduler with tiered priority and product quotas.

One run moves through SEEDING and DRAINING and ends DONE, STOPPED or
EXHAUSTED. Frontier, quota state and stop signal are injectable so a run can be
driven entirely from tests.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .config import CrawlConfig
from .constants import EXIT_NO_PAGES, EXIT_OK
from .frontier import Frontier, FrontierPolicy
from .graph import DiscoveryGraph
from .proxy import ProxyRotationState, next_proxy
from .quota import QuotaLimits, QuotaState, admit
from .renderer import Renderer
from .stats import StatsCollector
from .storage import Storage
from .types import (
    ClassificationTag,
    FrontierItem,
    JSONDict,
    Plan,
    RenderResult,
    RunStatus,
    VisitOutcome,
    VisitRecord,
    utc_now_iso,
)
from .url import URLClassifier, compile_pattern, normalize_many, normalize_url


LOGGER = logging.getLogger(__name__)

StopSignal = Callable[[], bool]

CHECKPOINT_VERSION = 1


class SchedulerPhase(str, Enum):
    IDLE = "idle"
    SEEDING = "seeding"
    DRAINING = "draining"
    FINISHED = "finished"


@dataclass(slots=True)
class CrawlResult:
    """Everything one scheduler run produced."""

    status: RunStatus
    visits: list[VisitRecord]
    graph: DiscoveryGraph
    quota: QuotaState
    report: JSONDict = field(default_factory=dict)
    plan: Plan | None = None

    @property
    def pages_crawled(self) -> int:
        return sum(1 for visit in self.visits if visit.ok)

    @property
    def stopped_early(self) -> bool:
        return self.status == RunStatus.STOPPED

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.pages_crawled > 0 else EXIT_NO_PAGES


def plan_classifier(config: CrawlConfig, plan: Plan | None) -> URLClassifier:
    """Configured preference patterns, replaced by the plan's when they compile."""

    category_pattern = config.category_pattern
    product_pattern = config.product_pattern
    if plan is not None:
        if plan.category_regex:
            try:
                compile_pattern(plan.category_regex)
                category_pattern = plan.category_regex
            except (re.error, TypeError) as exc:
                LOGGER.error("Ignoring plan category regex %r: %s", plan.category_regex, exc)
        if plan.product_regex:
            try:
                compile_pattern(plan.product_regex)
                product_pattern = plan.product_regex
            except (re.error, TypeError) as exc:
                LOGGER.error("Ignoring plan product regex %r: %s", plan.product_regex, exc)
    return URLClassifier(category_pattern, product_pattern)


class CrawlScheduler:
    """Drain a tiered frontier through a renderer until budget, stop or exhaustion."""

    def __init__(
        self,
        config: CrawlConfig,
        renderer: Renderer,
        *,
        plan: Plan | None = None,
        frontier: Frontier | None = None,
        quota: QuotaState | None = None,
        storage: Storage | None = None,
        stop_signal: StopSignal | None = None,
        stats: StatsCollector | None = None,
        classifier: URLClassifier | None = None,
    ) -> None:
        self.config = config
        self.renderer = renderer
        self.plan = plan
        self.rules = config.url_rules()
        self.classifier = classifier or plan_classifier(config, plan)
        if frontier is None:
            frontier = Frontier(
                FrontierPolicy.DETERMINISTIC if config.deterministic else FrontierPolicy.UNORDERED,
                max_depth=config.max_depth,
            )
        self.frontier = frontier
        self.quota = quota if quota is not None else QuotaState()
        if plan is not None:
            self.limits = QuotaLimits.from_plan(plan)
        else:
            self.limits = QuotaLimits(
                per_category=config.category_product_quota,
                global_cap=config.total_product_cap,
            )
        self.storage = storage or Storage(config.output_dir)
        self.stop_signal = stop_signal or self.storage.stop_requested
        self.stats = stats or StatsCollector()

        self.graph = DiscoveryGraph()
        self.visits: list[VisitRecord] = []
        self.proxy_state = ProxyRotationState()
        self.phase = SchedulerPhase.IDLE
        self._stopped = False

    @property
    def pages_crawled(self) -> int:
        return sum(1 for visit in self.visits if visit.ok)

    def budget_left(self) -> bool:
        """Failed renders count toward `max_pages` so visits never exceed it."""

        return len(self.visits) < self.config.max_pages

    def run(self) -> CrawlResult:
        """Seed, drain and write artifacts for one run."""

        self.seed()
        self.drain()
        return self.finish()

    def seed(self) -> None:
        self.phase = SchedulerPhase.SEEDING
        if self.config.resume and self._restore_checkpoint():
            return

        if self.plan is not None:
            LOGGER.info(
                "Seeding from plan %s: categories=%d products=%d",
                self.plan.hash,
                len(self.plan.categories),
                len(self.plan.product_list),
            )
            self.enqueue(self.plan.root, 0, tag=ClassificationTag.CATEGORY, enforce_depth=False)
            for category in self.plan.categories:
                self.enqueue(category, 0, tag=ClassificationTag.CATEGORY, enforce_depth=False)
            for product in self.plan.product_list:
                self.enqueue(product, 1, tag=ClassificationTag.PRODUCT, enforce_depth=False)
            return

        for url in self.config.start_urls:
            self.enqueue(url, 0, enforce_depth=False)

    def enqueue(
        self,
        raw_url: str,
        depth: int,
        *,
        tag: ClassificationTag | None = None,
        origin_category: str | None = None,
        enforce_depth: bool = True,
    ) -> bool:
        """Normalize and queue a URL seen for the first time. Returns True if queued."""

        url = normalize_url(raw_url, rules=self.rules)
        if url is None or not self.graph.add_node(url, depth):
            return False

        tag = tag or self.classifier.classify(url)
        item = FrontierItem(
            url=url,
            depth=depth,
            tag=tag,
            origin_category=origin_category if tag == ClassificationTag.PRODUCT else None,
        )
        result = self.frontier.push(item, enforce_depth=enforce_depth)
        self.stats.record_enqueue(result)
        return result.accepted

    def drain(self) -> None:
        self.phase = SchedulerPhase.DRAINING
        self._apply_proxy()

        while True:
            if self.stop_signal():
                LOGGER.info("Stop signal observed after %d fetches", len(self.visits))
                self._stopped = True
                break
            if not self.budget_left():
                LOGGER.info("Page budget of %d reached", self.config.max_pages)
                break

            item = self.frontier.pop()
            if item is None:
                break

            admitted, self.quota = admit(item, self.quota, self.limits, self.plan)
            if not admitted:
                self.stats.record_quota_drop()
                LOGGER.debug("Quota drop: %s", item.url)
                continue

            self.process(item)

    def process(self, item: FrontierItem) -> VisitRecord:
        """Render one item, record its visit and expand its links."""

        result = self._render(item.url)

        if not result.ok:
            visit = VisitRecord(item.url, item.depth, 0, VisitOutcome.ERROR, error=result.error)
            self.visits.append(visit)
            self.stats.record_fetch(result, item.tag, 0)
            LOGGER.warning("Fetch failed d=%d %s: %s", item.depth, item.url, result.error)
            return visit

        self.graph.mark_crawled(item.url, item.depth)
        links = normalize_many(result.hrefs, base=item.url, rules=self.rules)
        visit = VisitRecord(item.url, item.depth, len(links), VisitOutcome.OK)
        self.visits.append(visit)
        self.stats.record_fetch(result, item.tag, len(links))
        LOGGER.info("Fetched d=%d %s links=%d", item.depth, item.url, len(links))

        if item.depth < self.config.max_depth and self.budget_left():
            origin = item.url if item.tag == ClassificationTag.CATEGORY else None
            for link in links:
                self.graph.add_edge(item.url, link)
                self.enqueue(link, item.depth + 1, origin_category=origin)

        self._apply_proxy()
        return visit

    def finish(self) -> CrawlResult:
        """Decide the terminal status and flush artifacts."""

        if self._stopped:
            status = RunStatus.STOPPED
        elif self.pages_crawled > 0:
            status = RunStatus.DONE
        else:
            status = RunStatus.EXHAUSTED
        self.phase = SchedulerPhase.FINISHED
        self.stats.record_frontier_snapshot(self.frontier.snapshot())
        self.stats.finish()

        seeds = self.storage.write_visit_order(self.visits)
        self.storage.write_discovered(self.graph.discovered_urls())
        self.storage.write_graph(self.graph)
        if len(self.frontier):
            self.storage.save_checkpoint(self.checkpoint())
        else:
            self.storage.clear_checkpoint()

        report = self.build_report(status, seeds)
        self.storage.write_report(report)
        LOGGER.info(
            "Crawl %s: discovered=%d crawled=%d errors=%d quota_dropped=%d%s",
            status.value,
            len(self.graph),
            len(seeds),
            self.stats.fetched_error,
            self.stats.quota_dropped,
            " (STOP)" if self._stopped else "",
        )
        return CrawlResult(
            status=status,
            visits=list(self.visits),
            graph=self.graph,
            quota=self.quota,
            report=report,
            plan=self.plan,
        )

    def build_report(self, status: RunStatus, seeds: list[str]) -> JSONDict:
        config = self.config
        return {
            "startURLs": list(config.start_urls),
            "pagesCrawled": self.pages_crawled,
            "seedsForArchive": len(seeds),
            "totalDiscovered": len(self.graph),
            "fetchErrors": self.stats.fetched_error,
            "quotaDropped": self.stats.quota_dropped,
            "maxDepth": config.max_depth,
            "maxPages": config.max_pages,
            "sameHostOnly": config.same_host_only,
            "includeSubdomains": config.include_subdomains,
            "allowRegex": config.allow_pattern,
            "denyRegex": config.deny_pattern,
            "keepQueryParams": list(config.keep_query_params),
            "stripAllQueries": config.strip_all_queries,
            "deterministic": config.deterministic,
            "planHash": self.plan.hash if self.plan is not None else None,
            "quota": self.quota.to_json(),
            "status": status.value,
            "stoppedEarly": self._stopped,
            "stats": self.stats.to_json(),
            "timestamp": utc_now_iso(),
        }

    def checkpoint(self) -> JSONDict:
        """Serializable state needed to continue this run later."""

        return {
            "version": CHECKPOINT_VERSION,
            "root": self.config.root_url,
            "planHash": self.plan.hash if self.plan is not None else None,
            "pending": [item.to_json() for item in self.frontier.items()],
            "visits": [visit.to_json() for visit in self.visits],
            "quota": self.quota.to_json(),
            "graph": self.graph.to_json(),
            "savedAt": utc_now_iso(),
        }

    def _restore_checkpoint(self) -> bool:
        payload = self.storage.load_checkpoint()
        if payload is None:
            LOGGER.info("No checkpoint to resume from; seeding fresh")
            return False
        try:
            pending = [FrontierItem.from_json(raw) for raw in payload.get("pending") or []]
            visits = [VisitRecord.from_json(raw) for raw in payload.get("visits") or []]
            quota = QuotaState.from_json(payload.get("quota") or {})
            graph = DiscoveryGraph.from_json(payload.get("graph") or {})
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring malformed checkpoint: %s", exc)
            return False

        self.visits = visits
        self.quota = quota
        self.graph = graph
        for item in pending:
            self.graph.add_node(item.url, item.depth)
            self.stats.record_enqueue(self.frontier.push(item, enforce_depth=False))
        LOGGER.info(
            "Resumed checkpoint: pending=%d visits=%d discovered=%d",
            len(pending),
            len(visits),
            len(graph),
        )
        return True

    def _render(self, url: str) -> RenderResult:
        try:
            return self.renderer.render(url, timeout_seconds=self.config.nav_timeout_seconds)
        except Exception as exc:
            return RenderResult.failure(url, f"{exc.__class__.__name__}: {exc}")

    def _apply_proxy(self) -> None:
        if not self.config.proxies:
            return
        previous = self.proxy_state
        proxy, self.proxy_state = next_proxy(
            self.pages_crawled,
            self.config.proxies,
            stable_session=self.config.stable_session,
            rotate_session=self.config.rotate_session,
            rotate_every=self.config.rotate_every,
            state=previous,
        )
        if self.proxy_state.rotations != previous.rotations:
            self.stats.record_proxy_rotation()
            LOGGER.info("Rotated proxy to %s after %d pages", proxy.server if proxy else None, self.pages_crawled)
        self.renderer.use_proxy(proxy)


__all__ = [
    "CrawlResult",
    "CrawlScheduler",
    "SchedulerPhase",
    "StopSignal",
    "plan_classifier",
]
