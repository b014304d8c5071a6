"""Core type definitions for the planner and crawl scheduler.

This module is intentionally dependency-light so other crawler modules can import
shared records without introducing cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .constants import PLAN_VERSION


class ClassificationTag(str, Enum):
    """Priority tier of a URL, derived from its path shape."""

    CATEGORY = "category"
    PRODUCT = "product"
    NORMAL = "normal"

    @property
    def rank(self) -> int:
        return _TAG_RANK[self]


_TAG_RANK = {
    ClassificationTag.CATEGORY: 0,
    ClassificationTag.PRODUCT: 1,
    ClassificationTag.NORMAL: 2,
}


class VisitOutcome(str, Enum):
    """Result of rendering one dequeued page."""

    OK = "ok"
    ERROR = "error"


class RunStatus(str, Enum):
    """Terminal state of one scheduler run."""

    DONE = "done"
    STOPPED = "stopped"
    EXHAUSTED = "exhausted"


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]


def utc_now_iso() -> str:
    """Return an RFC3339-like UTC timestamp string for plans and reports."""

    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True, slots=True)
class FrontierItem:
    """A crawl candidate tracked by the frontier."""

    url: str
    depth: int
    tag: ClassificationTag = ClassificationTag.NORMAL
    origin_category: str | None = None

    def to_json(self) -> JSONDict:
        return {
            "url": self.url,
            "depth": self.depth,
            "tag": self.tag.value,
            "originCategory": self.origin_category,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "FrontierItem":
        return cls(
            url=str(payload["url"]),
            depth=int(payload["depth"]),
            tag=ClassificationTag(payload.get("tag", ClassificationTag.NORMAL.value)),
            origin_category=payload.get("originCategory"),
        )


@dataclass(frozen=True, slots=True)
class VisitRecord:
    """One page actually rendered, in fetch order. Never mutated after append."""

    url: str
    depth: int
    link_count: int
    outcome: VisitOutcome
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == VisitOutcome.OK

    def to_json(self) -> JSONDict:
        return {
            "url": self.url,
            "depth": self.depth,
            "linkCount": self.link_count,
            "outcome": self.outcome.value,
            "error": self.error,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "VisitRecord":
        return cls(
            url=str(payload["url"]),
            depth=int(payload["depth"]),
            link_count=int(payload.get("linkCount", 0)),
            outcome=VisitOutcome(payload.get("outcome", VisitOutcome.OK.value)),
            error=payload.get("error"),
        )


@dataclass(slots=True)
class RenderResult:
    """What a renderer extracted from one navigation.

    A failed navigation is reported through `error` with every list empty.
    """

    url: str
    hrefs: list[str] = field(default_factory=list)
    markup: str = ""
    structured_data: list[str] = field(default_factory=list)
    pagination_hints: list[str] = field(default_factory=list)
    final_url: str | None = None
    elapsed_ms: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, url: str, error: str, *, elapsed_ms: int | None = None) -> "RenderResult":
        return cls(url=url, error=error, elapsed_ms=elapsed_ms)


@dataclass(frozen=True, slots=True)
class PaginationHint:
    """Observed pagination for one category page."""

    first_page: str
    page2: str
    pattern_hint: str | None

    def to_json(self) -> JSONDict:
        return {
            "firstPage": self.first_page,
            "page2": self.page2,
            "patternHint": self.pattern_hint,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "PaginationHint":
        return cls(
            first_page=str(payload["firstPage"]),
            page2=str(payload["page2"]),
            pattern_hint=payload.get("patternHint"),
        )


@dataclass(slots=True)
class Plan:
    """Persisted output of structure detection.

    `product_list` is the deduplicated union, in discovery order, of every
    `category_products` bucket, capped at `global_product_cap`.
    """

    root: str
    categories: list[str] = field(default_factory=list)
    category_products: dict[str, list[str]] = field(default_factory=dict)
    product_list: list[str] = field(default_factory=list)
    pagination: dict[str, PaginationHint] = field(default_factory=dict)
    category_regex: str | None = None
    product_regex: str | None = None
    products_per_category: int = 0
    global_product_cap: int = 0
    signals: dict[str, JSONValue] = field(default_factory=dict)
    hash: str = ""
    generated_at: str = field(default_factory=utc_now_iso)
    version: int = PLAN_VERSION

    def category_of(self, product_url: str) -> str | None:
        """Return the first category whose bucket holds `product_url`."""

        for category, products in self.category_products.items():
            if product_url in products:
                return category
        return None

    def to_json(self) -> JSONDict:
        return {
            "version": self.version,
            "root": self.root,
            "categories": list(self.categories),
            "categoryProducts": {
                category: list(products)
                for category, products in self.category_products.items()
            },
            "productList": list(self.product_list),
            "productsPerCategory": self.products_per_category,
            "globalProductCap": self.global_product_cap,
            "pagination": {
                category: hint.to_json() for category, hint in self.pagination.items()
            },
            "categoryRegex": self.category_regex,
            "productRegex": self.product_regex,
            "signals": self.signals,
            "hash": self.hash,
            "generatedAt": self.generated_at,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "Plan":
        """Rebuild a plan from its JSON form.

        Raises `KeyError`, `TypeError` or `ValueError` on malformed payloads.
        """

        if not isinstance(payload, Mapping):
            raise TypeError(f"Plan payload must be a mapping, got {type(payload).__name__}")

        for key in ("categoryRegex", "productRegex"):
            if payload.get(key) is not None and not isinstance(payload[key], str):
                raise TypeError(f"Plan {key} must be a string, got {type(payload[key]).__name__}")

        raw_products = payload.get("categoryProducts") or {}
        raw_pagination = payload.get("pagination") or {}
        return cls(
            root=str(payload["root"]),
            categories=[str(url) for url in payload.get("categories") or []],
            category_products={
                str(category): [str(url) for url in products]
                for category, products in dict(raw_products).items()
            },
            product_list=[str(url) for url in payload.get("productList") or []],
            pagination={
                str(category): PaginationHint.from_json(hint)
                for category, hint in dict(raw_pagination).items()
            },
            category_regex=payload.get("categoryRegex"),
            product_regex=payload.get("productRegex"),
            products_per_category=int(payload.get("productsPerCategory") or 0),
            global_product_cap=int(payload.get("globalProductCap") or 0),
            signals=dict(payload.get("signals") or {}),
            hash=str(payload.get("hash") or ""),
            generated_at=str(payload.get("generatedAt") or utc_now_iso()),
            version=int(payload.get("version") or PLAN_VERSION),
        )


__all__ = [
    "ClassificationTag",
    "FrontierItem",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "PaginationHint",
    "Plan",
    "RenderResult",
    "RunStatus",
    "VisitOutcome",
    "VisitRecord",
    "utc_now_iso",
]
