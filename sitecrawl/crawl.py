"""CLI entrypoint for structure planning and crawl scheduling."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
import sys
from typing import Any, Mapping

if __package__ in {None, ""}:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

from sitecrawl.crawler import (
    ConfigError,
    CrawlConfig,
    CrawlResult,
    CrawlScheduler,
    Storage,
    build_renderer,
    resolve_plan,
)
from sitecrawl.crawler.config import env_payload, read_config_payload, split_start_urls
from sitecrawl.crawler.constants import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    LOG_FILENAME,
)


def _bool_flag(parser: argparse.ArgumentParser, name: str, help_text: str) -> None:
    dest = name.replace("-", "_")
    parser.add_argument(f"--{name}", dest=dest, action="store_true", default=None, help=help_text)
    parser.add_argument(f"--no-{name}", dest=dest, action="store_false")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect site structure and crawl it breadth-first for full-site capture.",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML crawl config. Environment and flags override it.",
    )
    parser.add_argument(
        "--start-url",
        dest="start_urls",
        action="append",
        default=[],
        help="Start URL (repeatable). The first one is the crawl root.",
    )
    parser.add_argument("--output-dir", type=Path, default=None, help="Run output directory.")

    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--max-depth", type=int, default=None)
    _bool_flag(parser, "same-host-only", "Only follow links on the root host (and subdomains).")
    _bool_flag(parser, "include-subdomains", "Treat subdomains of the root host as in scope.")
    parser.add_argument("--allow-regex", default=None, help="Keep only URLs matching this regex.")
    parser.add_argument("--deny-regex", default=None, help="Drop URLs matching this regex.")
    parser.add_argument(
        "--keep-query-param",
        dest="keep_query_params",
        action="append",
        default=[],
        help="Query parameter to retain (repeatable); others are dropped.",
    )
    _bool_flag(parser, "strip-all-queries", "Drop every query string.")
    parser.add_argument("--category-regex", default=None, help="Category preference regex (path).")
    parser.add_argument("--product-regex", default=None, help="Product preference regex (path).")

    parser.add_argument("--wait-after-load", type=float, default=None, help="Seconds to wait after load.")
    parser.add_argument("--nav-timeout", type=float, default=None, help="Navigation timeout in seconds.")
    parser.add_argument("--user-agent", default=None)
    parser.add_argument("--backend", choices=["selenium", "requests"], default=None)

    _bool_flag(parser, "deterministic", "Fully re-sort the frontier before every dequeue.")
    _bool_flag(parser, "structure-detection", "Probe the site and crawl from a plan.")
    _bool_flag(parser, "reuse-profile", "Reuse a cached per-host plan when available.")
    _bool_flag(parser, "force-rebuild-plan", "Ignore cached profiles and re-probe.")
    _bool_flag(parser, "resume", "Continue from the frontier checkpoint of a previous run.")

    parser.add_argument(
        "--print-report-json",
        action="store_true",
        help="Print full report JSON in stdout after run.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    return parser.parse_args(argv)


_FLAG_KEYS = {
    "max_pages": "max_pages",
    "max_depth": "max_depth",
    "same_host_only": "same_host_only",
    "include_subdomains": "include_subdomains",
    "allow_regex": "allow_pattern",
    "deny_regex": "deny_pattern",
    "strip_all_queries": "strip_all_queries",
    "category_regex": "category_pattern",
    "product_regex": "product_pattern",
    "wait_after_load": "wait_after_load_seconds",
    "nav_timeout": "nav_timeout_seconds",
    "user_agent": "user_agent",
    "backend": "backend",
    "deterministic": "deterministic",
    "structure_detection": "structure_detection",
    "reuse_profile": "reuse_profile",
    "force_rebuild_plan": "force_rebuild_plan",
    "resume": "resume",
}


def build_config(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> CrawlConfig:
    """Merge config file, environment and flags, in increasing precedence."""

    payload: dict[str, Any] = {}
    if args.config is not None:
        payload.update(read_config_payload(args.config))
    payload.update(env_payload(os.environ if environ is None else environ))

    if args.start_urls:
        urls: list[str] = []
        for raw in args.start_urls:
            urls.extend(split_start_urls(raw))
        payload["start_urls"] = urls
    if args.output_dir is not None:
        payload["output_dir"] = str(args.output_dir)
    if args.keep_query_params:
        payload["keep_query_params"] = list(args.keep_query_params)

    for attr, key in _FLAG_KEYS.items():
        value = getattr(args, attr)
        if value is not None:
            payload[key] = value

    if not payload.get("start_urls") or not payload.get("output_dir"):
        raise ConfigError("START_URLS and OUTPUT_DIR required")
    return CrawlConfig.from_dict(payload)


def setup_logging(log_path: Path | None, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Driver and connection pool debug output drowns the per-page log lines.
    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_summary(result: CrawlResult, storage: Storage, *, print_report_json: bool) -> None:
    report = result.report
    paths = storage.paths

    print("\n=== Crawl Complete ===")
    print(f"status: {result.status.value}")
    print(f"urls: {paths.get('urls')}")
    print(f"graph: {paths.get('graph')}")
    print(f"report: {paths.get('report')}")
    if result.plan is not None:
        print(f"plan: {paths.get('plan')} (hash {result.plan.hash})")

    print("\n--- Summary ---")
    for key in [
        "pagesCrawled",
        "totalDiscovered",
        "fetchErrors",
        "quotaDropped",
        "stoppedEarly",
    ]:
        if key in report:
            print(f"{key}: {report[key]}")

    if print_report_json:
        print("\n--- Full Report JSON ---")
        print(json.dumps(report, indent=2, sort_keys=True))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(None, verbose=args.verbose)

    try:
        config = build_config(args)
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    setup_logging(config.crawl_dir / LOG_FILENAME, verbose=args.verbose)
    logging.info(
        "Starting crawl: root=%s, output_dir=%s, max_pages=%d, max_depth=%d, deterministic=%s, plan=%s",
        config.root_url,
        config.output_dir,
        config.max_pages,
        config.max_depth,
        config.deterministic,
        config.structure_detection,
    )

    try:
        storage = Storage(config.output_dir)
        with build_renderer(config) as renderer:
            plan = resolve_plan(config, renderer, storage=storage)
            result = CrawlScheduler(config, renderer, plan=plan, storage=storage).run()
    except KeyboardInterrupt:
        logging.error("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception:
        logging.exception("Crawl execution failed")
        return EXIT_FAILURE

    print_summary(result, storage, print_report_json=args.print_report_json)
    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
