"""Typed crawler configuration with JSON/YAML/environment load helpers."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore

from .constants import (
    CRAWL_SUBDIR,
    DEFAULT_CATEGORY_PATTERN,
    DEFAULT_CATEGORY_PRODUCT_QUOTA,
    DEFAULT_DETERMINISTIC,
    DEFAULT_FORCE_REBUILD_PLAN,
    DEFAULT_INCLUDE_SUBDOMAINS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PAGES,
    DEFAULT_NAV_TIMEOUT_SECONDS,
    DEFAULT_PLAN_GLOBAL_PRODUCT_CAP,
    DEFAULT_PLAN_PAGINATION_MAX_PAGES,
    DEFAULT_PLAN_PROBE_CATEGORY_LIMIT,
    DEFAULT_PLAN_PRODUCTS_PER_CATEGORY,
    DEFAULT_PLAN_TIMEOUT_SECONDS,
    DEFAULT_PRODUCT_PATTERN,
    DEFAULT_RENDER_BACKEND,
    DEFAULT_RESUME,
    DEFAULT_REUSE_PROFILE,
    DEFAULT_ROTATE_EVERY,
    DEFAULT_ROTATE_SESSION,
    DEFAULT_SAME_HOST_ONLY,
    DEFAULT_STABLE_SESSION,
    DEFAULT_STRIP_ALL_QUERIES,
    DEFAULT_STRUCTURE_DETECTION,
    DEFAULT_TOTAL_PRODUCT_CAP,
    DEFAULT_USER_AGENT,
    DEFAULT_WAIT_AFTER_LOAD_SECONDS,
    JSON_INDENT,
    PROFILES_SUBDIR,
    SUPPORTED_CONFIG_SUFFIXES,
    TRUTHY_ENV_VALUES,
)
from .types import JSONDict, JSONValue
from .url import URLRules, host_from_url


LOGGER = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Missing or invalid required input; aborts a run before any fetch."""


class RenderBackend(str, Enum):
    """Backend used to render pages."""

    SELENIUM = "selenium"
    REQUESTS = "requests"


@dataclass(frozen=True, slots=True)
class ProxyEndpoint:
    """One egress identity from the proxy pool descriptor."""

    server: str
    username: str = ""
    password: str = ""

    def to_json(self) -> JSONDict:
        return {"server": self.server, "username": self.username, "password": self.password}


def _as_float(value: Any, key: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid float for '{key}': {value!r}") from exc


def _as_int(value: Any, key: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid int for '{key}': {value!r}") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Invalid bool for '{key}': {value!r}")


def _to_backend(value: Any) -> RenderBackend:
    if isinstance(value, RenderBackend):
        return value
    if isinstance(value, str):
        try:
            return RenderBackend(value.strip().lower())
        except ValueError as exc:
            raise ConfigError(f"Invalid backend value: {value!r}") from exc
    raise ConfigError(f"Invalid backend value: {value!r}")


def _coerce_proxy(value: Any) -> ProxyEndpoint:
    if isinstance(value, ProxyEndpoint):
        return value
    if isinstance(value, str) and value.strip():
        return ProxyEndpoint(server=value.strip())
    if isinstance(value, Mapping) and value.get("server"):
        return ProxyEndpoint(
            server=str(value["server"]),
            username=str(value.get("username") or ""),
            password=str(value.get("password") or ""),
        )
    raise ConfigError(f"Invalid proxy entry: {value!r}")


def _check_pattern(pattern: str | None, key: str) -> str | None:
    if pattern is None or not pattern.strip():
        return None
    try:
        re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ConfigError(f"Invalid regex for '{key}': {exc}") from exc
    return pattern


def split_start_urls(raw: str) -> list[str]:
    """Split a newline/comma separated list, dropping blanks and duplicates."""

    urls: list[str] = []
    for part in re.split(r"\r?\n|,", raw or ""):
        candidate = part.strip()
        if candidate and candidate not in urls:
            urls.append(candidate)
    return urls


def load_proxies_file(path: str | Path) -> list[ProxyEndpoint]:
    """Read a JSON array of proxies; unreadable or malformed files yield no proxies."""

    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable proxies file %s: %s", path, exc)
        return []
    if not isinstance(payload, list):
        LOGGER.warning("Ignoring proxies file %s: top level is not an array", path)
        return []

    proxies: list[ProxyEndpoint] = []
    for entry in payload:
        try:
            proxies.append(_coerce_proxy(entry))
        except ConfigError:
            LOGGER.warning("Skipping invalid proxy entry in %s: %r", path, entry)
    return proxies


@dataclass(slots=True)
class CrawlConfig:
    """Top-level configuration shared by planner, scheduler and renderers."""

    start_urls: list[str]
    output_dir: Path

    max_pages: int = DEFAULT_MAX_PAGES
    max_depth: int = DEFAULT_MAX_DEPTH
    same_host_only: bool = DEFAULT_SAME_HOST_ONLY
    include_subdomains: bool = DEFAULT_INCLUDE_SUBDOMAINS
    allow_pattern: str | None = None
    deny_pattern: str | None = None
    keep_query_params: list[str] = field(default_factory=list)
    strip_all_queries: bool = DEFAULT_STRIP_ALL_QUERIES
    category_pattern: str = DEFAULT_CATEGORY_PATTERN
    product_pattern: str = DEFAULT_PRODUCT_PATTERN

    wait_after_load_seconds: float = DEFAULT_WAIT_AFTER_LOAD_SECONDS
    nav_timeout_seconds: float = DEFAULT_NAV_TIMEOUT_SECONDS
    user_agent: str = DEFAULT_USER_AGENT
    backend: RenderBackend = RenderBackend(DEFAULT_RENDER_BACKEND)

    proxies: list[ProxyEndpoint] = field(default_factory=list)
    stable_session: bool = DEFAULT_STABLE_SESSION
    rotate_session: bool = DEFAULT_ROTATE_SESSION
    rotate_every: int = DEFAULT_ROTATE_EVERY

    deterministic: bool = DEFAULT_DETERMINISTIC
    category_product_quota: int = DEFAULT_CATEGORY_PRODUCT_QUOTA
    total_product_cap: int = DEFAULT_TOTAL_PRODUCT_CAP

    structure_detection: bool = DEFAULT_STRUCTURE_DETECTION
    plan_probe_category_limit: int = DEFAULT_PLAN_PROBE_CATEGORY_LIMIT
    plan_products_per_category: int = DEFAULT_PLAN_PRODUCTS_PER_CATEGORY
    plan_global_product_cap: int = DEFAULT_PLAN_GLOBAL_PRODUCT_CAP
    plan_timeout_seconds: float = DEFAULT_PLAN_TIMEOUT_SECONDS
    plan_pagination_max_pages: int = DEFAULT_PLAN_PAGINATION_MAX_PAGES
    reuse_profile: bool = DEFAULT_REUSE_PROFILE
    force_rebuild_plan: bool = DEFAULT_FORCE_REBUILD_PLAN
    profiles_dir: Path | None = None

    resume: bool = DEFAULT_RESUME
    metadata: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.start_urls = list(dict.fromkeys(url.strip() for url in self.start_urls if url and url.strip()))
        if not self.start_urls:
            raise ConfigError("CrawlConfig requires at least one start URL")
        if self.output_dir is None or not str(self.output_dir).strip():
            raise ConfigError("CrawlConfig requires an output directory")
        self.output_dir = Path(self.output_dir)
        if self.profiles_dir is not None:
            self.profiles_dir = Path(self.profiles_dir)

        if self.max_pages <= 0:
            raise ConfigError("max_pages must be > 0")
        if self.max_depth < 0:
            raise ConfigError("max_depth must be >= 0")
        if self.wait_after_load_seconds < 0:
            raise ConfigError("wait_after_load_seconds must be >= 0")
        if self.nav_timeout_seconds <= 0:
            raise ConfigError("nav_timeout_seconds must be > 0")
        if self.plan_timeout_seconds <= 0:
            raise ConfigError("plan_timeout_seconds must be > 0")
        if self.rotate_every < 0:
            raise ConfigError("rotate_every must be >= 0")
        for key in (
            "category_product_quota",
            "total_product_cap",
            "plan_probe_category_limit",
            "plan_products_per_category",
            "plan_global_product_cap",
            "plan_pagination_max_pages",
        ):
            if getattr(self, key) < 0:
                raise ConfigError(f"{key} must be >= 0")

        self.allow_pattern = _check_pattern(self.allow_pattern, "allow_pattern")
        self.deny_pattern = _check_pattern(self.deny_pattern, "deny_pattern")
        self.category_pattern = _check_pattern(self.category_pattern, "category_pattern") or DEFAULT_CATEGORY_PATTERN
        self.product_pattern = _check_pattern(self.product_pattern, "product_pattern") or DEFAULT_PRODUCT_PATTERN

        self.keep_query_params = [str(name).strip() for name in self.keep_query_params if str(name).strip()]
        self.backend = _to_backend(self.backend)
        self.proxies = [_coerce_proxy(proxy) for proxy in self.proxies]

    @property
    def root_url(self) -> str:
        return self.start_urls[0]

    @property
    def root_host(self) -> str:
        return host_from_url(self.root_url, strip_www=False)

    @property
    def crawl_dir(self) -> Path:
        return self.output_dir / CRAWL_SUBDIR

    @property
    def resolved_profiles_dir(self) -> Path:
        """Per-host profiles live beside the run directory unless overridden."""

        if self.profiles_dir is not None:
            return self.profiles_dir
        return self.output_dir.parent / PROFILES_SUBDIR

    def url_rules(self) -> URLRules:
        """Return normalization rules scoped to the root start URL's host."""

        return URLRules(
            root_host=self.root_host,
            same_host_only=self.same_host_only,
            include_subdomains=self.include_subdomains,
            keep_query_params=tuple(self.keep_query_params),
            strip_all_queries=self.strip_all_queries,
            allow_pattern=self.allow_pattern,
            deny_pattern=self.deny_pattern,
        )

    def to_dict(self) -> JSONDict:
        """Serialize config for reports and reproducibility."""

        return {
            "start_urls": self.start_urls,
            "output_dir": str(self.output_dir),
            "max_pages": self.max_pages,
            "max_depth": self.max_depth,
            "same_host_only": self.same_host_only,
            "include_subdomains": self.include_subdomains,
            "allow_pattern": self.allow_pattern,
            "deny_pattern": self.deny_pattern,
            "keep_query_params": self.keep_query_params,
            "strip_all_queries": self.strip_all_queries,
            "category_pattern": self.category_pattern,
            "product_pattern": self.product_pattern,
            "wait_after_load_seconds": self.wait_after_load_seconds,
            "nav_timeout_seconds": self.nav_timeout_seconds,
            "user_agent": self.user_agent,
            "backend": self.backend.value,
            "proxies": [proxy.to_json() for proxy in self.proxies],
            "stable_session": self.stable_session,
            "rotate_session": self.rotate_session,
            "rotate_every": self.rotate_every,
            "deterministic": self.deterministic,
            "category_product_quota": self.category_product_quota,
            "total_product_cap": self.total_product_cap,
            "structure_detection": self.structure_detection,
            "plan_probe_category_limit": self.plan_probe_category_limit,
            "plan_products_per_category": self.plan_products_per_category,
            "plan_global_product_cap": self.plan_global_product_cap,
            "plan_timeout_seconds": self.plan_timeout_seconds,
            "plan_pagination_max_pages": self.plan_pagination_max_pages,
            "reuse_profile": self.reuse_profile,
            "force_rebuild_plan": self.force_rebuild_plan,
            "profiles_dir": None if self.profiles_dir is None else str(self.profiles_dir),
            "resume": self.resume,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrawlConfig":
        """Build config from a parsed dictionary."""

        if "start_urls" not in payload:
            raise ConfigError("Config missing required key: 'start_urls'")
        if not payload.get("output_dir"):
            raise ConfigError("Config missing required key: 'output_dir'")

        raw_urls = payload["start_urls"]
        start_urls = split_start_urls(raw_urls) if isinstance(raw_urls, str) else [str(url) for url in raw_urls or []]

        def _int(key: str, default: int) -> int:
            value = _as_int(payload.get(key, default), key)
            return default if value is None else value

        def _float(key: str, default: float) -> float:
            value = _as_float(payload.get(key, default), key)
            return default if value is None else value

        def _bool(key: str, default: bool) -> bool:
            return _as_bool(payload.get(key, default), key)

        profiles_dir = payload.get("profiles_dir")
        return cls(
            start_urls=start_urls,
            output_dir=Path(str(payload["output_dir"])),
            max_pages=_int("max_pages", DEFAULT_MAX_PAGES),
            max_depth=_int("max_depth", DEFAULT_MAX_DEPTH),
            same_host_only=_bool("same_host_only", DEFAULT_SAME_HOST_ONLY),
            include_subdomains=_bool("include_subdomains", DEFAULT_INCLUDE_SUBDOMAINS),
            allow_pattern=payload.get("allow_pattern"),
            deny_pattern=payload.get("deny_pattern"),
            keep_query_params=[str(name) for name in payload.get("keep_query_params") or []],
            strip_all_queries=_bool("strip_all_queries", DEFAULT_STRIP_ALL_QUERIES),
            category_pattern=payload.get("category_pattern") or DEFAULT_CATEGORY_PATTERN,
            product_pattern=payload.get("product_pattern") or DEFAULT_PRODUCT_PATTERN,
            wait_after_load_seconds=_float("wait_after_load_seconds", DEFAULT_WAIT_AFTER_LOAD_SECONDS),
            nav_timeout_seconds=_float("nav_timeout_seconds", DEFAULT_NAV_TIMEOUT_SECONDS),
            user_agent=str(payload.get("user_agent") or DEFAULT_USER_AGENT),
            backend=_to_backend(payload.get("backend", DEFAULT_RENDER_BACKEND)),
            proxies=[_coerce_proxy(proxy) for proxy in payload.get("proxies") or []],
            stable_session=_bool("stable_session", DEFAULT_STABLE_SESSION),
            rotate_session=_bool("rotate_session", DEFAULT_ROTATE_SESSION),
            rotate_every=_int("rotate_every", DEFAULT_ROTATE_EVERY),
            deterministic=_bool("deterministic", DEFAULT_DETERMINISTIC),
            category_product_quota=_int("category_product_quota", DEFAULT_CATEGORY_PRODUCT_QUOTA),
            total_product_cap=_int("total_product_cap", DEFAULT_TOTAL_PRODUCT_CAP),
            structure_detection=_bool("structure_detection", DEFAULT_STRUCTURE_DETECTION),
            plan_probe_category_limit=_int("plan_probe_category_limit", DEFAULT_PLAN_PROBE_CATEGORY_LIMIT),
            plan_products_per_category=_int("plan_products_per_category", DEFAULT_PLAN_PRODUCTS_PER_CATEGORY),
            plan_global_product_cap=_int("plan_global_product_cap", DEFAULT_PLAN_GLOBAL_PRODUCT_CAP),
            plan_timeout_seconds=_float("plan_timeout_seconds", DEFAULT_PLAN_TIMEOUT_SECONDS),
            plan_pagination_max_pages=_int("plan_pagination_max_pages", DEFAULT_PLAN_PAGINATION_MAX_PAGES),
            reuse_profile=_bool("reuse_profile", DEFAULT_REUSE_PROFILE),
            force_rebuild_plan=_bool("force_rebuild_plan", DEFAULT_FORCE_REBUILD_PLAN),
            profiles_dir=None if not profiles_dir else Path(str(profiles_dir)),
            resume=_bool("resume", DEFAULT_RESUME),
            metadata=dict(payload.get("metadata") or {}),
        )


# Environment variable -> (config key, kind). Durations are milliseconds.
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "OUTPUT_DIR": ("output_dir", "str"),
    "MAX_PAGES": ("max_pages", "int"),
    "MAX_DEPTH": ("max_depth", "int"),
    "SAME_HOST_ONLY": ("same_host_only", "bool"),
    "INCLUDE_SUBDOMAINS": ("include_subdomains", "bool"),
    "ALLOW_REGEX": ("allow_pattern", "str"),
    "DENY_REGEX": ("deny_pattern", "str"),
    "KEEP_QUERY_PARAMS": ("keep_query_params", "list"),
    "STRIP_ALL_QUERIES": ("strip_all_queries", "bool"),
    "CATEGORY_PREFER_REGEX": ("category_pattern", "str"),
    "PREFER_REGEX": ("product_pattern", "str"),
    "WAIT_AFTER_LOAD": ("wait_after_load_seconds", "ms"),
    "NAV_TIMEOUT": ("nav_timeout_seconds", "ms"),
    "USER_AGENT": ("user_agent", "str"),
    "RENDER_BACKEND": ("backend", "str"),
    "STABLE_SESSION": ("stable_session", "bool"),
    "ROTATE_SESSION": ("rotate_session", "bool"),
    "ROTATE_EVERY": ("rotate_every", "int"),
    "QUICK_DET_MODE": ("deterministic", "bool"),
    "CATEGORY_PRODUCT_QUOTA": ("category_product_quota", "int"),
    "TOTAL_PRODUCT_CAP": ("total_product_cap", "int"),
    "FULL_AUTO_MODE": ("structure_detection", "bool"),
    "PLAN_PROBE_CATEGORY_LIMIT": ("plan_probe_category_limit", "int"),
    "PLAN_PRODUCTS_PER_CATEGORY": ("plan_products_per_category", "int"),
    "PLAN_GLOBAL_PRODUCT_CAP": ("plan_global_product_cap", "int"),
    "PLAN_TIMEOUT": ("plan_timeout_seconds", "ms"),
    "PLAN_PAGINATION_MAX_PAGES": ("plan_pagination_max_pages", "int"),
    "REUSE_DOMAIN_PROFILE": ("reuse_profile", "bool"),
    "FORCE_REBUILD_PLAN": ("force_rebuild_plan", "bool"),
    "PROFILES_DIR": ("profiles_dir", "str"),
    "RESUME": ("resume", "bool"),
}


def env_payload(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Translate environment variables into a `CrawlConfig.from_dict` payload.

    Only variables that are present (and non-empty) contribute keys.
    """

    env = os.environ if environ is None else environ
    payload: dict[str, Any] = {}

    raw_urls = env.get("START_URLS", "")
    if raw_urls.strip():
        payload["start_urls"] = split_start_urls(raw_urls)

    for name, (key, kind) in _ENV_FIELDS.items():
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        raw = raw.strip()
        if kind == "bool":
            payload[key] = raw.lower() in TRUTHY_ENV_VALUES
        elif kind == "int":
            payload[key] = _as_int(raw, name)
        elif kind == "ms":
            payload[key] = (_as_float(raw, name) or 0.0) / 1000.0
        elif kind == "list":
            payload[key] = [part.strip() for part in raw.split(",") if part.strip()]
        else:
            payload[key] = raw

    proxies_file = env.get("PROXIES_FILE", "").strip()
    if proxies_file:
        payload["proxies"] = load_proxies_file(proxies_file)

    return payload


def config_from_env(environ: Mapping[str, str] | None = None) -> CrawlConfig:
    """Build config purely from environment variables."""

    payload = env_payload(environ)
    if not payload.get("start_urls") or not payload.get("output_dir"):
        raise ConfigError("START_URLS and OUTPUT_DIR required")
    return CrawlConfig.from_dict(payload)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"YAML config at {path} must be a mapping at top level")
    return data


def read_config_payload(path: str | Path) -> dict[str, Any]:
    """Read a JSON/YAML config file into a plain mapping."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    if suffix == ".json":
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {config_path}: {exc}") from exc
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ConfigError(f"Config at {config_path} must be a mapping")
    return payload


def load_config(path: str | Path) -> CrawlConfig:
    """Load CrawlConfig from JSON/YAML path."""

    return CrawlConfig.from_dict(read_config_payload(path))


def save_config(config: CrawlConfig, path: str | Path) -> None:
    """Save CrawlConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ConfigError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "ConfigError",
    "CrawlConfig",
    "ProxyEndpoint",
    "RenderBackend",
    "config_from_env",
    "env_payload",
    "load_config",
    "load_proxies_file",
    "read_config_payload",
    "save_config",
    "split_start_urls",
]
