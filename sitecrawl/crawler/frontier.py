"""Tiered frontier queue for the crawl scheduler."""

from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass
from enum import Enum
from itertools import count

from .types import ClassificationTag, FrontierItem


class FrontierPolicy(str, Enum):
    """How pending items are ordered for dequeue."""

    UNORDERED = "unordered"
    DETERMINISTIC = "deterministic"


class EnqueueStatus(str, Enum):
    """Result status for frontier enqueue attempts."""

    ENQUEUED = "enqueued"
    SKIPPED_DEPTH = "skipped_depth"
    SKIPPED_QUEUED = "skipped_queued"


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    """Outcome of one enqueue attempt."""

    status: EnqueueStatus
    item: FrontierItem | None = None

    @property
    def accepted(self) -> bool:
        return self.status == EnqueueStatus.ENQUEUED


class Frontier:
    """Pending-work queue with category > product > normal priority.

    - Unordered policy: categories are pushed to the absolute front, products
      go in front of the existing product run (after every category, before
      every normal item), normal items are appended. All inserts are O(1).
    - Deterministic policy: dequeue always yields the smallest
      `(tier rank, url)` pair, so identical input gives identical order.

    A URL is held at most once while pending. Deduplication across the whole
    run is the caller's job.
    """

    def __init__(
        self,
        policy: FrontierPolicy = FrontierPolicy.UNORDERED,
        *,
        max_depth: int | None = None,
    ) -> None:
        self.policy = FrontierPolicy(policy)
        self.max_depth = max_depth

        self._categories: deque[FrontierItem] = deque()
        self._products: deque[FrontierItem] = deque()
        self._normals: deque[FrontierItem] = deque()
        self._heap: list[tuple[int, str, int, FrontierItem]] = []
        self._sequence = count()
        self._pending: set[str] = set()

        self._enqueued_count = 0
        self._dequeued_count = 0
        self._skipped_depth_count = 0
        self._skipped_queued_count = 0

    def push(self, item: FrontierItem, *, enforce_depth: bool = True) -> EnqueueResult:
        """Queue one item at the position its tag dictates."""

        if enforce_depth and self.max_depth is not None and item.depth > self.max_depth:
            self._skipped_depth_count += 1
            return EnqueueResult(EnqueueStatus.SKIPPED_DEPTH, item=item)
        if item.url in self._pending:
            self._skipped_queued_count += 1
            return EnqueueResult(EnqueueStatus.SKIPPED_QUEUED, item=item)

        if self.policy == FrontierPolicy.DETERMINISTIC:
            heapq.heappush(self._heap, (item.tag.rank, item.url, next(self._sequence), item))
        elif item.tag == ClassificationTag.CATEGORY:
            self._categories.appendleft(item)
        elif item.tag == ClassificationTag.PRODUCT:
            self._products.appendleft(item)
        else:
            self._normals.append(item)

        self._pending.add(item.url)
        self._enqueued_count += 1
        return EnqueueResult(EnqueueStatus.ENQUEUED, item=item)

    def pop(self) -> FrontierItem | None:
        """Remove and return the next item, or `None` when empty."""

        if self.policy == FrontierPolicy.DETERMINISTIC:
            if not self._heap:
                return None
            item = heapq.heappop(self._heap)[-1]
        elif self._categories:
            item = self._categories.popleft()
        elif self._products:
            item = self._products.popleft()
        elif self._normals:
            item = self._normals.popleft()
        else:
            return None

        self._pending.discard(item.url)
        self._dequeued_count += 1
        return item

    def items(self) -> list[FrontierItem]:
        """Pending items in the order they would be dequeued."""

        if self.policy == FrontierPolicy.DETERMINISTIC:
            return [entry[-1] for entry in sorted(self._heap)]
        return [*self._categories, *self._products, *self._normals]

    def __len__(self) -> int:
        if self.policy == FrontierPolicy.DETERMINISTIC:
            return len(self._heap)
        return len(self._categories) + len(self._products) + len(self._normals)

    def __contains__(self, url: object) -> bool:
        return url in self._pending

    def snapshot(self) -> dict[str, int | str]:
        """Return frontier counters for logs/stats reporting."""

        pending = self.items()
        return {
            "policy": self.policy.value,
            "queue_size": len(pending),
            "pending_categories": sum(1 for item in pending if item.tag == ClassificationTag.CATEGORY),
            "pending_products": sum(1 for item in pending if item.tag == ClassificationTag.PRODUCT),
            "enqueued": self._enqueued_count,
            "dequeued": self._dequeued_count,
            "skipped_depth": self._skipped_depth_count,
            "skipped_queued": self._skipped_queued_count,
        }


__all__ = [
    "EnqueueResult",
    "EnqueueStatus",
    "Frontier",
    "FrontierPolicy",
]
