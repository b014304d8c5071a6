"""Default values shared by config, planner, scheduler and storage."""

from __future__ import annotations

DEFAULT_MAX_PAGES = 200
DEFAULT_MAX_DEPTH = 3
DEFAULT_SAME_HOST_ONLY = True
DEFAULT_INCLUDE_SUBDOMAINS = True
DEFAULT_STRIP_ALL_QUERIES = False

DEFAULT_WAIT_AFTER_LOAD_SECONDS = 0.5
DEFAULT_NAV_TIMEOUT_SECONDS = 15.0
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_RENDER_BACKEND = "selenium"

DEFAULT_STABLE_SESSION = True
DEFAULT_ROTATE_SESSION = False
DEFAULT_ROTATE_EVERY = 0

DEFAULT_DETERMINISTIC = False
DEFAULT_CATEGORY_PRODUCT_QUOTA = 0
DEFAULT_TOTAL_PRODUCT_CAP = 0

DEFAULT_STRUCTURE_DETECTION = False
DEFAULT_PLAN_PROBE_CATEGORY_LIMIT = 40
DEFAULT_PLAN_PRODUCTS_PER_CATEGORY = 10
DEFAULT_PLAN_GLOBAL_PRODUCT_CAP = 400
DEFAULT_PLAN_TIMEOUT_SECONDS = 15.0
DEFAULT_PLAN_PAGINATION_MAX_PAGES = 5
DEFAULT_REUSE_PROFILE = True
DEFAULT_FORCE_REBUILD_PLAN = False
DEFAULT_RESUME = False

# Scheduler preference patterns, matched against the URL path.
DEFAULT_CATEGORY_PATTERN = r"/(catalog|category)[-a-z0-9]*\.html$"
DEFAULT_PRODUCT_PATTERN = r"/[a-z0-9-]*[0-9][a-z0-9-]*\.html$"

# Looser probe heuristics used while detecting structure.
PROBE_CATEGORY_PATTERN = r"(catalog|category|collection|listing|list)"
PROBE_PRODUCT_PATTERN = r"(product|prod|item|sku|detail)|-[0-9]{2,}\.html?$"

# Grouped basename patterns longer than this fall back to the broad pattern.
MAX_GROUPED_BASENAMES = 40
BROAD_PRODUCT_PATTERN = DEFAULT_PRODUCT_PATTERN

PAGE_PLACEHOLDER = "{N}"
PLAN_VERSION = 1
PLAN_HASH_LENGTH = 12
UNCATEGORIZED_KEY = "__uncategorized__"

CRAWL_SUBDIR = "_crawl"
PROFILES_SUBDIR = "_profiles"
URLS_FILENAME = "urls.txt"
DISCOVERED_FILENAME = "discovered-debug.txt"
GRAPH_FILENAME = "graph.json"
REPORT_FILENAME = "report.json"
PLAN_FILENAME = "plan.json"
CHECKPOINT_FILENAME = "frontier.json"
STOP_FILENAME = "STOP"
LOG_FILENAME = "crawl.log"

JSON_INDENT = 2
SUPPORTED_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")
TRUTHY_ENV_VALUES = ("1", "true", "yes", "on")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_PAGES = 2
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130
