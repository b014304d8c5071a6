"""Tests for the tiered BFS crawl scheduler."""

import json

from conftest import SHOP, SHOP_PAGES, SITE, SITE_PAGES, FixtureRenderer
from sitecrawl.crawler.config import ProxyEndpoint
from sitecrawl.crawler.frontier import Frontier, FrontierPolicy
from sitecrawl.crawler.quota import QuotaState
from sitecrawl.crawler.scheduler import CrawlScheduler, plan_classifier
from sitecrawl.crawler.storage import Storage
from sitecrawl.crawler.types import ClassificationTag, Plan, RunStatus, VisitOutcome


def site(path: str) -> str:
    return f"{SITE}{path}"


UNORDERED_ORDER = [
    site("/"),
    site("/catalog-b.html"),
    site("/catalog-a.html"),
    site("/p-3.html"),
    site("/p-2.html"),
    site("/p-5.html"),
    site("/p-4.html"),
    site("/p-1.html"),
    site("/about.html"),
    site("/team.html"),
]

DETERMINISTIC_ORDER = [
    site("/"),
    site("/catalog-a.html"),
    site("/catalog-b.html"),
    site("/p-1.html"),
    site("/p-2.html"),
    site("/p-3.html"),
    site("/p-4.html"),
    site("/p-5.html"),
    site("/about.html"),
    site("/team.html"),
]


def visited(result):
    return [visit.url for visit in result.visits]


class TestVisitOrder:
    """Test cases for priority-ordered draining."""

    def test_unordered_order(self, make_config, site_renderer):
        """Categories jump the queue, products follow, normal pages trail."""
        result = CrawlScheduler(make_config(), site_renderer).run()

        assert visited(result) == UNORDERED_ORDER
        assert result.status == RunStatus.DONE
        assert result.exit_code == 0

    def test_deterministic_order(self, make_config, site_renderer):
        """Deterministic mode dequeues by (tier, url)."""
        result = CrawlScheduler(make_config(deterministic=True), site_renderer).run()
        assert visited(result) == DETERMINISTIC_ORDER

    def test_reproducible(self, make_config, tmp_path):
        """Identical inputs give identical visit files."""
        outputs = []
        for name in ("one", "two"):
            config = make_config(deterministic=True, output_dir=tmp_path / name)
            result = CrawlScheduler(config, FixtureRenderer(SITE_PAGES)).run()
            outputs.append(Storage(config.output_dir).urls_path.read_text(encoding="utf-8"))
            assert visited(result) == DETERMINISTIC_ORDER
        assert outputs[0] == outputs[1]

    def test_each_url_fetched_once(self, make_config, site_renderer):
        """No URL is rendered twice and every visit is a graph node."""
        result = CrawlScheduler(make_config(), site_renderer).run()
        assert len(site_renderer.calls) == len(set(site_renderer.calls))
        assert all(visit.url in result.graph for visit in result.visits)
        assert len(result.visits) <= len(result.graph)


class TestLimits:
    """Test cases for budget and depth limits."""

    def test_page_budget(self, make_config, site_renderer):
        """Fetching stops once max_pages visits are recorded."""
        config = make_config(max_pages=3)
        result = CrawlScheduler(config, site_renderer).run()

        assert visited(result) == UNORDERED_ORDER[:3]
        assert result.status == RunStatus.DONE
        assert Storage(config.output_dir).checkpoint_path.is_file()

    def test_depth_limit(self, make_config, site_renderer):
        """Pages at max_depth are fetched but not expanded."""
        result = CrawlScheduler(make_config(max_depth=1), site_renderer).run()

        assert visited(result) == [
            site("/"),
            site("/catalog-b.html"),
            site("/catalog-a.html"),
            site("/p-1.html"),
            site("/about.html"),
        ]
        assert all(visit.depth <= 1 for visit in result.visits)
        assert len(result.graph) == 5

    def test_zero_depth_fetches_seeds_only(self, make_config, site_renderer):
        """Depth zero renders only the start URLs."""
        result = CrawlScheduler(make_config(max_depth=0), site_renderer).run()
        assert visited(result) == [site("/")]
        assert result.graph.edges == []


class TestQuota:
    """Test cases for product quotas enforced at dequeue."""

    def test_per_category_quota(self, make_config, site_renderer):
        """Each originating category admits one product."""
        result = CrawlScheduler(
            make_config(deterministic=True, category_product_quota=1),
            site_renderer,
        ).run()

        urls = visited(result)
        assert site("/p-1.html") in urls
        assert site("/p-2.html") in urls
        assert site("/p-4.html") in urls
        assert site("/p-3.html") not in urls
        assert site("/p-5.html") not in urls
        assert result.report["quotaDropped"] == 2
        assert result.quota.count_for(site("/catalog-a.html")) == 1
        assert result.quota.count_for("__uncategorized__") == 1

    def test_total_product_cap(self, make_config, site_renderer):
        """The run-wide cap bounds fetched product pages."""
        result = CrawlScheduler(
            make_config(deterministic=True, total_product_cap=2),
            site_renderer,
        ).run()

        products = [url for url in visited(result) if "/p-" in url]
        assert products == [site("/p-1.html"), site("/p-2.html")]
        assert result.quota.global_product_count == 2
        assert result.report["quotaDropped"] == 3

    def test_injected_quota_state(self, make_config, site_renderer):
        """A pre-filled quota state is honored."""
        result = CrawlScheduler(
            make_config(total_product_cap=1),
            site_renderer,
            quota=QuotaState(global_product_count=1),
        ).run()
        assert not [url for url in visited(result) if "/p-" in url]


class TestStop:
    """Test cases for cooperative stop."""

    def test_stop_file_after_first_page(self, make_config, output_dir):
        """A STOP file created mid-run halts before the next fetch."""
        storage = Storage(output_dir)
        renderer = FixtureRenderer(SITE_PAGES, on_render=lambda url: storage.stop_path.touch())
        result = CrawlScheduler(make_config(), renderer, storage=storage).run()

        assert result.pages_crawled == 1
        assert result.status == RunStatus.STOPPED
        assert result.report["stoppedEarly"] is True
        assert result.report["pagesCrawled"] == 1
        assert storage.checkpoint_path.is_file()

    def test_stop_callable(self, make_config, site_renderer):
        """An injected stop signal is checked before each fetch."""
        result = CrawlScheduler(make_config(), site_renderer, stop_signal=lambda: True).run()
        assert result.visits == []
        assert result.stopped_early
        assert site_renderer.calls == []


class TestFailures:
    """Test cases for render failures."""

    def test_failed_page_recorded_not_expanded(self, make_config, output_dir):
        """Failures count as visits but add no links and stay out of urls.txt."""
        renderer = FixtureRenderer(SITE_PAGES, failing={site("/catalog-a.html")})
        result = CrawlScheduler(make_config(), renderer).run()

        errors = [visit for visit in result.visits if visit.outcome == VisitOutcome.ERROR]
        assert [visit.url for visit in errors] == [site("/catalog-a.html")]
        assert errors[0].error.startswith("TimeoutException")
        assert site("/p-2.html") not in result.graph
        assert result.report["fetchErrors"] == 1

        lines = Storage(output_dir).urls_path.read_text(encoding="utf-8").splitlines()
        assert site("/catalog-a.html") not in lines
        assert len(lines) == result.pages_crawled

    def test_failures_consume_budget(self, make_config):
        """Errored renders count toward max_pages."""
        renderer = FixtureRenderer(SITE_PAGES, failing={site("/catalog-b.html")})
        result = CrawlScheduler(make_config(max_pages=2), renderer).run()
        assert len(result.visits) == 2
        assert result.pages_crawled == 1

    def test_nothing_fetched(self, make_config):
        """A dead root ends EXHAUSTED with the no-pages exit code."""
        renderer = FixtureRenderer(SITE_PAGES, failing={site("/")})
        result = CrawlScheduler(make_config(), renderer).run()
        assert result.status == RunStatus.EXHAUSTED
        assert result.exit_code == 2
        assert result.pages_crawled == 0


class TestArtifacts:
    """Test cases for run artifacts."""

    def test_writes_outputs(self, make_config, site_renderer, output_dir):
        """urls.txt, discovered list, graph and report are written."""
        result = CrawlScheduler(make_config(), site_renderer).run()
        storage = Storage(output_dir)

        assert storage.urls_path.read_text(encoding="utf-8").splitlines() == UNORDERED_ORDER
        discovered = storage.discovered_path.read_text(encoding="utf-8").splitlines()
        assert set(discovered) == set(UNORDERED_ORDER)

        graph = json.loads(storage.graph_path.read_text(encoding="utf-8"))
        assert {"from": site("/"), "to": site("/catalog-a.html")} in graph["edges"]
        assert all(node["crawled"] for node in graph["nodes"])

        report = json.loads(storage.report_path.read_text(encoding="utf-8"))
        assert report["pagesCrawled"] == 10
        assert report["seedsForArchive"] == 10
        assert report["totalDiscovered"] == 10
        assert report["status"] == "done"
        assert report["planHash"] is None
        assert report["stats"]["fetched_ok"] == 10
        assert report == result.report
        assert not storage.checkpoint_path.exists()


class TestResume:
    """Test cases for checkpoint resume."""

    def test_resume_continues_where_stopped(self, make_config, output_dir):
        """A resumed run picks up the saved frontier and visit history."""
        first = CrawlScheduler(make_config(max_pages=2), FixtureRenderer(SITE_PAGES)).run()
        assert visited(first) == [site("/"), site("/catalog-b.html")]
        storage = Storage(output_dir)
        assert storage.checkpoint_path.is_file()

        renderer = FixtureRenderer(SITE_PAGES)
        second = CrawlScheduler(make_config(max_pages=10, resume=True), renderer).run()

        assert visited(second) == [
            site("/"),
            site("/catalog-b.html"),
            site("/catalog-a.html"),
            site("/p-3.html"),
            site("/p-2.html"),
            site("/p-1.html"),
            site("/about.html"),
            site("/team.html"),
        ]
        assert site("/") not in renderer.calls
        assert not storage.checkpoint_path.exists()

    def test_resume_without_checkpoint_seeds_fresh(self, make_config, site_renderer):
        """Resume with nothing saved behaves like a fresh run."""
        result = CrawlScheduler(make_config(resume=True), site_renderer).run()
        assert visited(result) == UNORDERED_ORDER


class TestPlanSeeding:
    """Test cases for crawling from a structure plan."""

    def test_seeds_root_categories_and_products(self, make_config):
        """Plan categories and products are queued before discovery."""
        plan = Plan(
            root=site("/"),
            categories=[site("/catalog-a.html")],
            category_products={site("/catalog-a.html"): [site("/p-2.html")]},
            product_list=[site("/p-2.html")],
            hash="feedfacecafe",
        )
        scheduler = CrawlScheduler(make_config(max_pages=1), FixtureRenderer(SITE_PAGES), plan=plan)
        scheduler.seed()

        pending = scheduler.frontier.items()
        assert [(item.url, item.tag, item.depth) for item in pending] == [
            (site("/catalog-a.html"), ClassificationTag.CATEGORY, 0),
            (site("/"), ClassificationTag.CATEGORY, 0),
            (site("/p-2.html"), ClassificationTag.PRODUCT, 1),
        ]

    def test_plan_quota_and_report(self, make_config):
        """Plan caps drive the quota and the plan hash lands in the report."""
        plan = Plan(
            root=site("/"),
            categories=[site("/catalog-a.html"), site("/catalog-b.html")],
            category_products={
                site("/catalog-a.html"): [site("/p-1.html"), site("/p-2.html")],
                site("/catalog-b.html"): [site("/p-4.html")],
            },
            product_list=[site("/p-1.html"), site("/p-2.html"), site("/p-4.html")],
            products_per_category=1,
            hash="feedfacecafe",
        )
        result = CrawlScheduler(make_config(deterministic=True), FixtureRenderer(SITE_PAGES), plan=plan).run()

        products = [url for url in visited(result) if "/p-" in url]
        assert products == [site("/p-1.html"), site("/p-4.html")]
        assert result.report["planHash"] == "feedfacecafe"
        assert result.plan is plan

    def test_shop_plan_end_to_end(self, make_config, shop_renderer):
        """Every planned product is fetched when no caps bind."""
        from sitecrawl.crawler.planner import StructurePlanner
        from sitecrawl.crawler.url import URLRules

        plan = StructurePlanner(shop_renderer, rules=URLRules(root_host="shop.test")).detect([f"{SHOP}/"])
        config = make_config(start_urls=[f"{SHOP}/"])
        result = CrawlScheduler(config, FixtureRenderer(SHOP_PAGES), plan=plan).run()

        urls = visited(result)
        assert set(plan.product_list) <= set(urls)
        assert urls[0] in plan.categories

    def test_plan_classifier_falls_back_on_bad_regex(self, make_config):
        """Uncompilable plan patterns leave the configured ones in place."""
        config = make_config()
        plan = Plan(root=site("/"), category_regex="(unclosed", product_regex=r"/(?:p\-9\.html)$")
        classifier = plan_classifier(config, plan)
        assert classifier.category_pattern == config.category_pattern
        assert classifier.product_pattern == r"/(?:p\-9\.html)$"

    def test_plan_classifier_ignores_non_string_regex(self, make_config):
        """A plan pattern of the wrong type is ignored instead of aborting the run."""
        config = make_config()
        plan = Plan(root=site("/"), category_regex=5, product_regex=[r"/p-1"])
        classifier = plan_classifier(config, plan)
        assert classifier.category_pattern == config.category_pattern
        assert classifier.product_pattern == config.product_pattern


class TestProxyRotation:
    """Test cases for proxy application during a run."""

    def test_rotates_every_n_pages(self, make_config, site_renderer):
        """The renderer receives a new identity every rotate_every successes."""
        config = make_config(
            max_pages=5,
            proxies=[ProxyEndpoint("http://p1.test:1"), ProxyEndpoint("http://p2.test:1")],
            stable_session=False,
            rotate_every=2,
        )
        result = CrawlScheduler(config, site_renderer).run()

        servers = [proxy.server for proxy in site_renderer.proxies_used]
        assert servers[0] == "http://p1.test:1"
        assert "http://p2.test:1" in servers
        assert result.report["stats"]["proxy_rotations"] == 2

    def test_no_proxies_no_calls(self, make_config, site_renderer):
        """Without a pool the renderer is never reconfigured."""
        CrawlScheduler(make_config(), site_renderer).run()
        assert site_renderer.proxies_used == []


class TestInjection:
    """Test cases for injected collaborators."""

    def test_injected_frontier(self, make_config, site_renderer):
        """A caller-supplied frontier replaces the configured policy."""
        frontier = Frontier(FrontierPolicy.DETERMINISTIC, max_depth=3)
        result = CrawlScheduler(make_config(), site_renderer, frontier=frontier).run()
        assert visited(result) == DETERMINISTIC_ORDER
