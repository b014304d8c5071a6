"""Product quota accounting.

`QuotaState` is an immutable value: `admit` returns the next state rather than
mutating counters in place, so a scheduling step can be replayed in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .constants import UNCATEGORIZED_KEY
from .types import ClassificationTag, FrontierItem, JSONDict, Plan


@dataclass(frozen=True, slots=True)
class QuotaLimits:
    """Caps on fetched product pages. Zero means unlimited."""

    per_category: int = 0
    global_cap: int = 0

    @classmethod
    def from_plan(cls, plan: Plan) -> "QuotaLimits":
        return cls(per_category=plan.products_per_category, global_cap=plan.global_product_cap)


@dataclass(frozen=True, slots=True)
class QuotaState:
    """Counts of admitted product pages; monotonic within one run."""

    per_category_counts: Mapping[str, int] = field(default_factory=dict)
    global_product_count: int = 0

    def count_for(self, category: str) -> int:
        return self.per_category_counts.get(category, 0)

    def exceeded(self, category: str, limits: QuotaLimits) -> bool:
        if limits.global_cap and self.global_product_count >= limits.global_cap:
            return True
        return bool(limits.per_category) and self.count_for(category) >= limits.per_category

    def record(self, category: str) -> "QuotaState":
        counts = dict(self.per_category_counts)
        counts[category] = counts.get(category, 0) + 1
        return QuotaState(per_category_counts=counts, global_product_count=self.global_product_count + 1)

    def to_json(self) -> JSONDict:
        return {
            "perCategoryCounts": dict(sorted(self.per_category_counts.items())),
            "globalProductCount": self.global_product_count,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "QuotaState":
        counts = payload.get("perCategoryCounts") or {}
        return cls(
            per_category_counts={str(key): int(value) for key, value in dict(counts).items()},
            global_product_count=int(payload.get("globalProductCount") or 0),
        )


def owning_category(item: FrontierItem, plan: Plan | None = None) -> str:
    """Resolve the quota bucket for a product item."""

    if plan is not None:
        category = plan.category_of(item.url)
        if category:
            return category
    return item.origin_category or UNCATEGORIZED_KEY


def admit(
    item: FrontierItem,
    state: QuotaState,
    limits: QuotaLimits,
    plan: Plan | None = None,
) -> tuple[bool, QuotaState]:
    """Gate one dequeued item.

    Non-product items always pass and leave the state untouched. A product item
    passes only while both its category and the global count are under their
    caps, and its admission is counted immediately.
    """

    if item.tag != ClassificationTag.PRODUCT:
        return True, state

    category = owning_category(item, plan)
    if state.exceeded(category, limits):
        return False, state
    return True, state.record(category)


__all__ = [
    "QuotaLimits",
    "QuotaState",
    "admit",
    "owning_category",
]
