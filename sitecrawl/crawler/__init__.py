"""Crawler package: structure planning, tiered BFS scheduling, and run artifacts."""

from .config import (
    ConfigError,
    CrawlConfig,
    ProxyEndpoint,
    RenderBackend,
    config_from_env,
    load_config,
    save_config,
)
from .frontier import EnqueueResult, EnqueueStatus, Frontier, FrontierPolicy
from .graph import DiscoveryGraph
from .pagination import derive_pattern, expand_pattern, find_page_two
from .planner import PlannerLimits, StructurePlanner, plan_hash, resolve_plan
from .profiles import ProfileStore
from .proxy import ProxyRotationState, next_proxy
from .quota import QuotaLimits, QuotaState, admit
from .renderer import Renderer, RequestsRenderer, SeleniumRenderer, build_renderer
from .scheduler import CrawlResult, CrawlScheduler, SchedulerPhase
from .stats import StatsCollector
from .storage import Storage
from .types import (
    ClassificationTag,
    FrontierItem,
    PaginationHint,
    Plan,
    RenderResult,
    RunStatus,
    VisitOutcome,
    VisitRecord,
    utc_now_iso,
)
from .url import URLClassifier, URLRules, classify, host_from_url, normalize_url

__all__ = [
    "ClassificationTag",
    "ConfigError",
    "CrawlConfig",
    "CrawlResult",
    "CrawlScheduler",
    "DiscoveryGraph",
    "EnqueueResult",
    "EnqueueStatus",
    "Frontier",
    "FrontierItem",
    "FrontierPolicy",
    "PaginationHint",
    "Plan",
    "PlannerLimits",
    "ProfileStore",
    "ProxyEndpoint",
    "ProxyRotationState",
    "QuotaLimits",
    "QuotaState",
    "RenderBackend",
    "RenderResult",
    "Renderer",
    "RequestsRenderer",
    "RunStatus",
    "SchedulerPhase",
    "SeleniumRenderer",
    "StatsCollector",
    "Storage",
    "StructurePlanner",
    "URLClassifier",
    "URLRules",
    "VisitOutcome",
    "VisitRecord",
    "admit",
    "build_renderer",
    "classify",
    "config_from_env",
    "derive_pattern",
    "expand_pattern",
    "find_page_two",
    "host_from_url",
    "load_config",
    "next_proxy",
    "normalize_url",
    "plan_hash",
    "resolve_plan",
    "save_config",
    "utc_now_iso",
]
