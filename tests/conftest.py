"""Shared fixtures: an in-memory site renderer and config factories."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

import pytest

from sitecrawl.crawler.config import CrawlConfig
from sitecrawl.crawler.renderer import Renderer, result_from_markup
from sitecrawl.crawler.types import RenderResult


def page(*hrefs: str, body: str = "", next_href: str | None = None) -> str:
    """Minimal HTML document linking to `hrefs`."""

    anchors = "".join(f'<a href="{href}">{href}</a>' for href in hrefs)
    pager = f'<a rel="next" href="{next_href}">next</a>' if next_href else ""
    return f"<html><body>{anchors}{pager}{body}</body></html>"


class FixtureRenderer(Renderer):
    """Serves markup from a dict keyed by normalized URL."""

    def __init__(
        self,
        pages: dict[str, str],
        *,
        failing: Iterable[str] = (),
        on_render: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(timeout_seconds=1.0)
        self.pages = dict(pages)
        self.failing = set(failing)
        self.on_render = on_render
        self.calls: list[str] = []
        self.proxies_used: list = []
        self.closed = False

    def render(self, url: str, *, timeout_seconds: float | None = None) -> RenderResult:
        self.calls.append(url)
        try:
            if url in self.failing:
                return RenderResult.failure(url, "TimeoutException: fixture timeout")
            markup = self.pages.get(url)
            if markup is None:
                return RenderResult.failure(url, "HTTPError: 404 fixture page missing")
            return result_from_markup(url, markup)
        finally:
            if self.on_render is not None:
                self.on_render(url)

    def use_proxy(self, proxy) -> None:
        super().use_proxy(proxy)
        self.proxies_used.append(proxy)

    def close(self) -> None:
        self.closed = True


SITE = "https://site.test"

SITE_PAGES = {
    f"{SITE}/": page("/catalog-a.html", "/about.html", "/p-1.html", "/catalog-b.html"),
    f"{SITE}/catalog-a.html": page("/p-1.html", "/p-2.html", "/p-3.html"),
    f"{SITE}/catalog-b.html": page("/p-4.html", "/p-5.html"),
    f"{SITE}/about.html": page("/team.html", "#top", "mailto:hi@site.test"),
    f"{SITE}/team.html": page("https://elsewhere.test/x"),
    f"{SITE}/p-1.html": page("/"),
    f"{SITE}/p-2.html": page("/"),
    f"{SITE}/p-3.html": page("/"),
    f"{SITE}/p-4.html": page("/"),
    f"{SITE}/p-5.html": page("/"),
}

SHOP = "https://shop.test"

SHOP_PAGES = {
    f"{SHOP}/": page("/catalog-shoes", "/catalog-bags", "/item-1001.html", "/about"),
    f"{SHOP}/catalog-shoes": page(
        "/item-2001.html",
        "/item-2002.html",
        "/item-1001.html",
        next_href="/catalog-shoes?page=2",
    ),
    f"{SHOP}/catalog-shoes?page=2": page("/item-2003.html", "/catalog-shoes"),
    f"{SHOP}/catalog-bags": page(
        "/item-3002.html",
        "/item-3001.html",
        body=(
            "<span>49.90 eur</span>"
            '<script type="application/ld+json">{"@type": "Product", "name": "Tote"}</script>'
        ),
    ),
    f"{SHOP}/item-1001.html": page("/"),
    f"{SHOP}/item-2001.html": page("/"),
    f"{SHOP}/item-2002.html": page("/"),
    f"{SHOP}/item-2003.html": page("/"),
    f"{SHOP}/item-3001.html": page("/"),
    f"{SHOP}/item-3002.html": page("/"),
    f"{SHOP}/about": page("/"),
}


@pytest.fixture()
def site_renderer() -> FixtureRenderer:
    return FixtureRenderer(SITE_PAGES)


@pytest.fixture()
def shop_renderer() -> FixtureRenderer:
    return FixtureRenderer(SHOP_PAGES)


@pytest.fixture()
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "runs" / "site"


@pytest.fixture()
def make_config(output_dir: Path) -> Callable[..., CrawlConfig]:
    """Factory for configs rooted at the fixture site."""

    def _make(**overrides) -> CrawlConfig:
        values = {
            "start_urls": [f"{SITE}/"],
            "output_dir": output_dir,
            "max_pages": 50,
            "max_depth": 3,
            "backend": "requests",
        }
        values.update(overrides)
        return CrawlConfig(**values)

    return _make
