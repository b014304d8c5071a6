"""Discovery graph of every URL seen during one crawl run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .types import JSONDict


@dataclass(slots=True)
class GraphNode:
    url: str
    depth: int
    crawled: bool = False

    def to_json(self) -> JSONDict:
        return {"url": self.url, "depth": self.depth, "crawled": self.crawled}


class DiscoveryGraph:
    """Nodes keyed by normalized URL with first-seen depth; edges in extraction order."""

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode] = {}
        self._edges: list[tuple[str, str]] = []

    def add_node(self, url: str, depth: int) -> bool:
        """Record `url` if unseen. Returns True only for a new node."""

        if url in self._nodes:
            return False
        self._nodes[url] = GraphNode(url=url, depth=depth)
        return True

    def mark_crawled(self, url: str, depth: int = 0) -> None:
        node = self._nodes.get(url)
        if node is None:
            node = self._nodes[url] = GraphNode(url=url, depth=depth)
        node.crawled = True

    def add_edge(self, source: str, target: str) -> None:
        self._edges.append((source, target))

    def __contains__(self, url: object) -> bool:
        return url in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def discovered_urls(self) -> list[str]:
        return list(self._nodes)

    def crawled_urls(self) -> list[str]:
        return [url for url, node in self._nodes.items() if node.crawled]

    @property
    def edges(self) -> list[tuple[str, str]]:
        return list(self._edges)

    def to_json(self) -> JSONDict:
        return {
            "nodes": [node.to_json() for node in self._nodes.values()],
            "edges": [{"from": source, "to": target} for source, target in self._edges],
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "DiscoveryGraph":
        graph = cls()
        for raw in payload.get("nodes") or []:
            graph.add_node(str(raw["url"]), int(raw.get("depth", 0)))
            if raw.get("crawled"):
                graph.mark_crawled(str(raw["url"]))
        for raw in payload.get("edges") or []:
            graph.add_edge(str(raw["from"]), str(raw["to"]))
        return graph


__all__ = ["DiscoveryGraph", "GraphNode"]
