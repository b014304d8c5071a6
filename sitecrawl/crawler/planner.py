"""Structure detection: sample a site and build a reusable crawl plan.

The planner renders the root page, picks category candidates from its links,
probes each category (following inferred pagination) for product links, and
condenses the result into a `Plan` with grouped classification patterns and a
content hash. Single-page render failures degrade to empty results.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from .config import CrawlConfig
from .constants import (
    DEFAULT_PLAN_GLOBAL_PRODUCT_CAP,
    DEFAULT_PLAN_PAGINATION_MAX_PAGES,
    DEFAULT_PLAN_PROBE_CATEGORY_LIMIT,
    DEFAULT_PLAN_PRODUCTS_PER_CATEGORY,
    DEFAULT_PLAN_TIMEOUT_SECONDS,
    PLAN_HASH_LENGTH,
    PROBE_CATEGORY_PATTERN,
    PROBE_PRODUCT_PATTERN,
)
from .pagination import derive_pattern, expand_pattern, find_page_two
from .profiles import ProfileStore
from .renderer import Renderer
from .storage import Storage
from .types import ClassificationTag, PaginationHint, Plan, RenderResult
from .url import URLClassifier, URLRules, build_grouped_pattern, normalize_many, normalize_url


LOGGER = logging.getLogger(__name__)

PRICE_TOKEN_PATTERN = re.compile(
    r"(?:\b|^)(\d{2,5}(?:[.,]\d{2})?)\s?(?:€|eur|лв|lv|usd|\$)",
    re.IGNORECASE,
)
PRODUCT_TYPE_PATTERN = re.compile(r'"@type"\s*:\s*"Product"', re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class PlannerLimits:
    """Bounds on how much of a site one probe may sample."""

    probe_category_limit: int = DEFAULT_PLAN_PROBE_CATEGORY_LIMIT
    products_per_category: int = DEFAULT_PLAN_PRODUCTS_PER_CATEGORY
    global_product_cap: int = DEFAULT_PLAN_GLOBAL_PRODUCT_CAP
    timeout_seconds: float = DEFAULT_PLAN_TIMEOUT_SECONDS
    pagination_max_pages: int = DEFAULT_PLAN_PAGINATION_MAX_PAGES

    @classmethod
    def from_config(cls, config: CrawlConfig) -> "PlannerLimits":
        return cls(
            probe_category_limit=config.plan_probe_category_limit,
            products_per_category=config.plan_products_per_category,
            global_product_cap=config.plan_global_product_cap,
            timeout_seconds=config.plan_timeout_seconds,
            pagination_max_pages=config.plan_pagination_max_pages,
        )


def plan_hash(root: str, categories: Sequence[str], products: Sequence[str]) -> str:
    """Content fingerprint of a plan's inventory."""

    payload = json.dumps(
        {"root": root, "categories": list(categories), "products": list(products)},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:PLAN_HASH_LENGTH]


def count_price_tokens(markup: str) -> int:
    return len(PRICE_TOKEN_PATTERN.findall(markup or ""))


def count_structured_products(blocks: Iterable[str]) -> int:
    return sum(1 for block in blocks if PRODUCT_TYPE_PATTERN.search(block or ""))


class StructurePlanner:
    """Probe a site through a `Renderer` and produce a `Plan`."""

    def __init__(
        self,
        renderer: Renderer,
        *,
        rules: URLRules | None = None,
        classifier: URLClassifier | None = None,
        storage: Storage | None = None,
    ) -> None:
        self.renderer = renderer
        self.rules = rules
        self.classifier = classifier or URLClassifier(PROBE_CATEGORY_PATTERN, PROBE_PRODUCT_PATTERN)
        self.storage = storage

    def detect(self, start_urls: Sequence[str], limits: PlannerLimits | None = None) -> Plan:
        """Build a plan from the first start URL.

        Raises `ValueError` only when `start_urls` is empty.
        """

        if not start_urls:
            raise ValueError("No start URLs supplied for structure detection")
        limits = limits or PlannerLimits()

        root = normalize_url(start_urls[0], rules=self.rules) or start_urls[0].strip()
        plan = Plan(
            root=root,
            products_per_category=limits.products_per_category,
            global_product_cap=limits.global_product_cap,
        )

        root_probe = self._probe(root, limits)
        root_links = normalize_many(root_probe.hrefs, base=root, rules=self.rules)
        categories = sorted({url for url in root_links if self._tag(url) == ClassificationTag.CATEGORY})
        plan.categories = categories[: limits.probe_category_limit]
        plan.signals["rootPriceTokens"] = count_price_tokens(root_probe.markup)
        plan.signals["rootStructuredProducts"] = count_structured_products(root_probe.structured_data)
        plan.signals["rootProductCandidates"] = sum(
            1 for url in root_links if self._tag(url) == ClassificationTag.PRODUCT
        )
        LOGGER.info(
            "Plan root probe %s: %d links, %d categories selected",
            root,
            len(root_links),
            len(plan.categories),
        )

        for category in plan.categories:
            if len(plan.product_list) >= limits.global_product_cap:
                break
            self._probe_category(plan, category, limits)

        plan.category_regex = build_grouped_pattern(plan.categories)
        plan.product_regex = build_grouped_pattern(plan.product_list)
        plan.hash = plan_hash(plan.root, plan.categories, plan.product_list)
        LOGGER.info(
            "Plan ready: categories=%d products=%d hash=%s",
            len(plan.categories),
            len(plan.product_list),
            plan.hash,
        )

        if self.storage is not None:
            self.storage.save_plan(plan)
        return plan

    def _probe_category(self, plan: Plan, category: str, limits: PlannerLimits) -> None:
        probe = self._probe(category, limits)
        links = normalize_many(probe.hrefs, base=category, rules=self.rules)
        plan.signals[category] = {
            "priceTokens": count_price_tokens(probe.markup),
            "structuredDataProducts": count_structured_products(probe.structured_data),
        }

        page_two = find_page_two(probe.pagination_hints, base=category, rules=self.rules)
        if page_two:
            plan.pagination[category] = PaginationHint(
                first_page=category,
                page2=page_two,
                pattern_hint=derive_pattern(category, page_two),
            )

        bucket = plan.category_products.setdefault(category, [])
        for product in self._products(links)[: limits.products_per_category]:
            self._add_product(plan, bucket, product, limits)

        hint = plan.pagination.get(category)
        if hint is not None and hint.pattern_hint:
            for page in range(2, limits.pagination_max_pages + 1):
                if len(bucket) >= limits.products_per_category:
                    break
                if len(plan.product_list) >= limits.global_product_cap:
                    break
                candidate = expand_pattern(hint.pattern_hint, page)
                if candidate == category:
                    continue
                page_probe = self._probe(candidate, limits)
                page_links = normalize_many(page_probe.hrefs, base=candidate, rules=self.rules)
                for product in self._products(page_links):
                    if len(plan.product_list) >= limits.global_product_cap:
                        break
                    if len(bucket) >= limits.products_per_category:
                        break
                    self._add_product(plan, bucket, product, limits)

        LOGGER.info(
            "Plan category %s: sampled=%d total=%d",
            category,
            len(bucket),
            len(plan.product_list),
        )

    @staticmethod
    def _add_product(plan: Plan, bucket: list[str], product: str, limits: PlannerLimits) -> None:
        if product in bucket:
            return
        if product not in plan.product_list:
            if len(plan.product_list) >= limits.global_product_cap:
                return
            plan.product_list.append(product)
        bucket.append(product)

    def _products(self, links: Iterable[str]) -> list[str]:
        return sorted({url for url in links if self._tag(url) == ClassificationTag.PRODUCT})

    def _tag(self, url: str) -> ClassificationTag:
        return self.classifier.classify(url)

    def _probe(self, url: str, limits: PlannerLimits) -> RenderResult:
        try:
            result = self.renderer.render(url, timeout_seconds=limits.timeout_seconds)
        except Exception as exc:
            LOGGER.warning("Plan probe raised for %s: %s", url, exc)
            return RenderResult.failure(url, f"{exc.__class__.__name__}: {exc}")
        if not result.ok:
            LOGGER.warning("Plan probe failed for %s: %s", url, result.error)
        return result


def resolve_plan(
    config: CrawlConfig,
    renderer: Renderer,
    *,
    storage: Storage,
    profiles: ProfileStore | None = None,
) -> Plan | None:
    """Return the plan for this run, reusing a cached host profile when allowed.

    Returns None when structure detection is disabled.
    """

    if not config.structure_detection:
        return None

    profiles = profiles or ProfileStore(config.resolved_profiles_dir)
    host = config.root_host

    if config.reuse_profile and not config.force_rebuild_plan:
        cached = profiles.load(host)
        if cached is not None:
            LOGGER.info(
                "Reusing profile for %s: hash=%s categories=%d products=%d",
                host,
                cached.hash,
                len(cached.categories),
                len(cached.product_list),
            )
            storage.save_plan(cached)
            return cached

    planner = StructurePlanner(renderer, rules=config.url_rules(), storage=storage)
    plan = planner.detect(config.start_urls, PlannerLimits.from_config(config))
    profiles.save(host, plan)
    return plan


__all__ = [
    "PRICE_TOKEN_PATTERN",
    "PlannerLimits",
    "StructurePlanner",
    "count_price_tokens",
    "count_structured_products",
    "plan_hash",
    "resolve_plan",
]
