"""URL normalization, classification, and page feature extraction helpers."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable
from urllib.parse import (
    parse_qsl,
    urlencode,
    urljoin,
    urlsplit,
    urlunsplit,
)

from bs4 import BeautifulSoup

from .constants import BROAD_PRODUCT_PATTERN, MAX_GROUPED_BASENAMES
from .types import ClassificationTag


DEFAULT_ALLOWED_SCHEMES = ("http", "https")
SKIP_HREF_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")
STRUCTURED_DATA_SELECTOR = 'script[type="application/ld+json"]'
PAGINATION_HINT_SELECTOR = ", ".join(
    (
        'a[rel~="next"]',
        'a[rel~="prev"]',
        'a[href*="page=2"]',
        'a[href*="/page/2"]',
        'a[href*="?p=2"]',
        'a[href*="&p=2"]',
    )
)


@dataclass(frozen=True, slots=True)
class URLRules:
    """Scope, query and filter rules applied by `normalize_url`.

    An empty `root_host` disables host scoping.
    """

    root_host: str = ""
    same_host_only: bool = True
    include_subdomains: bool = True
    keep_query_params: tuple[str, ...] = ()
    strip_all_queries: bool = False
    allow_pattern: str | None = None
    deny_pattern: str | None = None


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a case-insensitive pattern once per process."""

    return re.compile(pattern, re.IGNORECASE)


def host_from_url(url: str, *, strip_www: bool = True) -> str:
    """Extract a lowercase host from URL, optionally without `www.`."""

    try:
        host = (urlsplit(url).hostname or "").strip().lower()
    except ValueError:
        return ""
    if strip_www and host.startswith("www."):
        host = host[4:]
    return host.strip(".")


def _has_default_port(scheme: str, port: int | None) -> bool:
    if port is None:
        return False
    return (scheme == "http" and port == 80) or (scheme == "https" and port == 443)


def _normalize_netloc(parsed_url) -> str:  # urllib.parse.SplitResult
    host = (parsed_url.hostname or "").lower()
    if not host:
        return ""

    userinfo, at, _ = parsed_url.netloc.rpartition("@")
    userinfo = userinfo + at

    port: int | None
    try:
        port = parsed_url.port
    except ValueError:
        port = None

    if ":" in host:
        host = f"[{host}]"

    if port is not None and not _has_default_port(parsed_url.scheme.lower(), port):
        return f"{userinfo}{host}:{port}"
    return f"{userinfo}{host}"


def _normalize_path(path: str) -> str:
    if not path:
        return "/"

    collapsed = re.sub(r"/{2,}", "/", path)
    normalized = posixpath.normpath(collapsed)

    if collapsed.startswith("/") and not normalized.startswith("/"):
        normalized = "/" + normalized
    if normalized in {"", "."}:
        normalized = "/"

    if normalized != "/":
        normalized = normalized.rstrip("/")

    return normalized or "/"


def _filter_query(query: str, rules: URLRules) -> str:
    if not query or rules.strip_all_queries:
        return ""
    if not rules.keep_query_params:
        return query

    keep = set(rules.keep_query_params)
    pairs = [
        (key, value)
        for key, value in parse_qsl(query, keep_blank_values=True)
        if key in keep
    ]
    return urlencode(pairs) if pairs else ""


def _host_in_scope(host: str, rules: URLRules) -> bool:
    if not rules.same_host_only or not rules.root_host:
        return True
    root = rules.root_host.lower()
    if host == root:
        return True
    return rules.include_subdomains and host.endswith("." + root)


def normalize_url(
    raw: str | None,
    base: str | None = None,
    rules: URLRules | None = None,
) -> str | None:
    """Canonicalize a raw link into its comparable absolute form.

    Resolves `raw` against `base`, then strips the fragment and the trailing
    slash (except for the root path), filters the query per `rules`, and applies
    host scoping plus allow/deny patterns. Returns `None` whenever the link is
    unusable; the function is pure and idempotent for fixed `rules`.
    """

    if raw is None:
        return None
    candidate = raw.strip()
    if not candidate:
        return None
    if any(candidate.lower().startswith(prefix) for prefix in SKIP_HREF_PREFIXES):
        return None

    rules = rules or URLRules()
    try:
        absolute = urljoin(base, candidate) if base else candidate
        parsed = urlsplit(absolute)
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_ALLOWED_SCHEMES or not parsed.netloc:
        return None

    try:
        host = (parsed.hostname or "").lower()
    except ValueError:
        return None
    if not host or not _host_in_scope(host, rules):
        return None

    netloc = _normalize_netloc(parsed)
    if not netloc:
        return None

    path = _normalize_path(parsed.path)
    query = _filter_query(parsed.query, rules)
    final = urlunsplit((scheme, netloc, path, query, ""))

    if rules.allow_pattern and not compile_pattern(rules.allow_pattern).search(final):
        return None
    if rules.deny_pattern and compile_pattern(rules.deny_pattern).search(final):
        return None
    return final


def url_path(url: str) -> str:
    try:
        return urlsplit(url).path or "/"
    except ValueError:
        return "/"


def classify(
    url: str,
    category_pattern: str | re.Pattern[str] | None,
    product_pattern: str | re.Pattern[str] | None,
) -> ClassificationTag:
    """Tag a URL by its path; a category match always wins over a product match."""

    path = url_path(url)
    if category_pattern is not None:
        compiled = compile_pattern(category_pattern) if isinstance(category_pattern, str) else category_pattern
        if compiled.search(path):
            return ClassificationTag.CATEGORY
    if product_pattern is not None:
        compiled = compile_pattern(product_pattern) if isinstance(product_pattern, str) else product_pattern
        if compiled.search(path):
            return ClassificationTag.PRODUCT
    return ClassificationTag.NORMAL


@dataclass(frozen=True, slots=True)
class URLClassifier:
    """Pluggable pair of category/product patterns."""

    category_pattern: str | None
    product_pattern: str | None

    def classify(self, url: str) -> ClassificationTag:
        return classify(url, self.category_pattern, self.product_pattern)

    def is_category(self, url: str) -> bool:
        return self.classify(url) == ClassificationTag.CATEGORY

    def is_product(self, url: str) -> bool:
        return self.classify(url) == ClassificationTag.PRODUCT


def build_grouped_pattern(urls: Iterable[str]) -> str | None:
    """Build one alternation over the distinct path basenames of `urls`.

    Too many distinct basenames fall back to a broad numeric `.html` pattern.
    """

    basenames: set[str] = set()
    for url in urls:
        segments = [segment for segment in url_path(url).split("/") if segment]
        if segments:
            basenames.add(segments[-1])

    if not basenames:
        return None
    if len(basenames) > MAX_GROUPED_BASENAMES:
        return BROAD_PRODUCT_PATTERN

    parts = "|".join(re.escape(name) for name in sorted(basenames))
    return f"/(?:{parts})$"


def extract_page_features(markup: str | bytes) -> tuple[list[str], list[str], list[str]]:
    """Return raw hrefs, structured-data blocks and pagination hints, in document order."""

    soup = BeautifulSoup(markup, "lxml")

    hrefs: list[str] = []
    for element in soup.find_all(["a", "area"]):
        href = element.get("href")
        if href:
            hrefs.append(str(href))

    structured = [str(element.string or element.get_text() or "") for element in soup.select(STRUCTURED_DATA_SELECTOR)]

    hints: list[str] = []
    for element in soup.select(PAGINATION_HINT_SELECTOR):
        href = element.get("href")
        if href and href not in hints:
            hints.append(str(href))

    return hrefs, structured, hints


def normalize_many(
    hrefs: Iterable[str],
    *,
    base: str,
    rules: URLRules | None = None,
) -> list[str]:
    """Normalize links in order, dropping failures and duplicates."""

    out: list[str] = []
    seen: set[str] = set()
    for href in hrefs:
        normalized = normalize_url(href, base, rules)
        if normalized is None or normalized in seen:
            continue
        seen.add(normalized)
        out.append(normalized)
    return out


__all__ = [
    "DEFAULT_ALLOWED_SCHEMES",
    "SKIP_HREF_PREFIXES",
    "URLClassifier",
    "URLRules",
    "build_grouped_pattern",
    "classify",
    "compile_pattern",
    "extract_page_features",
    "host_from_url",
    "normalize_many",
    "normalize_url",
    "url_path",
]
