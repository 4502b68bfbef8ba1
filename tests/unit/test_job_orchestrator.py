"""
Unit tests for the audit job runner.

Runs real jobs against an in-memory store and a fake crawler.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import make_job
from fixtures.sample_signals import perfect_page
from siteaudit.core.exceptions import FetchFailure, JobFailure
from siteaudit.models.audit import AuditStatus, IssuePriority
from siteaudit.schemas.audit import CheckStatus, NarrativeAnalysis
from siteaudit.schemas.signals import PageSignals, SiteFacts
from siteaudit.services.job_orchestrator import AuditJobRunner, dedupe_urls
from siteaudit.services.job_store import InMemoryJobStore
from siteaudit.services.notification_service import AuditEvent
from siteaudit.services.rule_engine import RuleEngine, RuleThresholds
from siteaudit.services.scoring import ScoringPolicy

BASE = "https://example.com"


def page_urls(count: int) -> list[str]:
    return [f"{BASE}/page-{i}" for i in range(1, count + 1)]


class FakeFetcher:
    """Crawler stand-in with per-URL failures and delays."""

    def __init__(self, urls, failing=(), delays=None, stream=False, stream_delay=0.01, pages=None):
        self.urls = list(urls)
        self.failing = set(failing)
        self.delays = delays or {}
        self.stream = stream
        self.stream_delay = stream_delay
        self.pages = pages or {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_fetch = None

    async def discover(self, target_url, max_pages):
        if self.stream:
            return self._stream()
        return list(self.urls)

    async def _stream(self):
        for url in self.urls:
            yield url
            await asyncio.sleep(self.stream_delay)

    async def fetch_signals(self, url):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(url, 0))
            if self.on_fetch:
                await self.on_fetch(url)
            if url in self.failing:
                raise FetchFailure(url, "connection refused")
            return PageSignals.model_validate(self.pages.get(url) or perfect_page(url))
        finally:
            self.in_flight -= 1

    async def site_facts(self, target_url):
        return SiteFacts(robots_txt_present=True, sitemap_present=True)


class ExplodingEngine(RuleEngine):
    """Raises while evaluating pages titled 'explode'."""

    def evaluate(self, signals, site=None):
        if signals.title == "explode":
            raise RuntimeError("unexpected markup")
        return super().evaluate(signals, site)


def make_runner(store, fetcher, **kwargs) -> AuditJobRunner:
    options = {
        "max_concurrency": 2,
        "timeout_seconds": 5,
        "max_pages": 100,
        "scoring_policy": ScoringPolicy.LENIENT,
        "engine": RuleEngine(RuleThresholds()),
    }
    options.update(kwargs)
    return AuditJobRunner(store, fetcher, **options)


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def job(store):
    return store.add(make_job(target_url=BASE))


class TestScenarios:
    """End-to-end job runs."""

    @pytest.mark.asyncio
    async def test_scenario_d_progress(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(5)), max_concurrency=1)

        result = await runner.run(job.id)

        running = [s.progress_percent for s in store.history if s.status == AuditStatus.RUNNING]
        assert running == [0, 20, 40, 60, 80, 100]
        assert result.status == AuditStatus.COMPLETED
        assert result.progress_percent == 100
        assert result.progress_is_estimate is False

    @pytest.mark.asyncio
    async def test_scenario_e_one_fetch_failure(self, store, job):
        urls = page_urls(5)
        runner = make_runner(store, FakeFetcher(urls, failing={urls[2]}))

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED
        assert len(result.pages) == 5
        healthy = [p for p in result.pages if not p.degraded]
        degraded = [p for p in result.pages if p.degraded]
        assert len(healthy) == 4
        assert len(degraded) == 1
        assert degraded[0].url == urls[2]
        assert degraded[0].per_page_score is None
        assert degraded[0].issues[0].text == "Failed to fetch page: connection refused"
        assert degraded[0].issues[0].priority == IssuePriority.CRITICAL
        assert all(
            check.status == CheckStatus.UNKNOWN
            for category in degraded[0].categories
            for check in category.items
        )
        assert result.summary.pages_degraded == 1

    @pytest.mark.asyncio
    async def test_all_pages_failing_fails_job(self, store, job):
        urls = page_urls(5)
        runner = make_runner(store, FakeFetcher(urls, failing=set(urls)))

        result = await runner.run(job.id)

        assert result.status == AuditStatus.FAILED
        assert result.error == "All 5 pages failed to fetch"
        assert len(result.pages) == 5
        assert all(page.degraded for page in result.pages)
        assert result.completed_at is not None

    @pytest.mark.asyncio
    async def test_summary_matches_pages(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(3)))

        result = await runner.run(job.id)

        assert result.summary.pages_analyzed == 3
        assert result.summary.total_issues == sum(len(p.issues) for p in result.pages)
        assert sum(result.summary.priority_counts.values()) == result.summary.total_issues
        assert result.summary.overall_score == 100

    @pytest.mark.asyncio
    async def test_final_record_is_persisted(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(2)))

        await runner.run(job.id)

        stored = await store.get(job.id)
        assert stored.status == AuditStatus.COMPLETED
        assert [p.url for p in stored.pages] == page_urls(2)


class TestDiscovery:
    """Test discovery handling."""

    @pytest.mark.asyncio
    async def test_discovery_order_preserved(self, store, job):
        urls = page_urls(4)
        # Later pages finish first
        delays = {url: 0.04 - i * 0.01 for i, url in enumerate(urls)}
        runner = make_runner(store, FakeFetcher(urls, delays=delays), max_concurrency=4)

        result = await runner.run(job.id)

        assert [p.url for p in result.pages] == urls

    @pytest.mark.asyncio
    async def test_duplicates_dropped_and_capped(self, store, job):
        urls = [f"{BASE}/a", f"{BASE}/b", f"{BASE}/a", f"{BASE}/c", f"{BASE}/d"]
        runner = make_runner(store, FakeFetcher(urls), max_pages=3)

        result = await runner.run(job.id)

        assert [p.url for p in result.pages] == [f"{BASE}/a", f"{BASE}/b", f"{BASE}/c"]

    def test_dedupe_urls(self):
        assert dedupe_urls(["x", " x ", "", "y", "z"], max_pages=2) == ["x", "y"]

    @pytest.mark.asyncio
    async def test_no_pages_fails_job(self, store, job):
        runner = make_runner(store, FakeFetcher([]))

        result = await runner.run(job.id)

        assert result.status == AuditStatus.FAILED
        assert result.error == f"No pages discovered for {BASE}"

    @pytest.mark.asyncio
    async def test_discovery_error_fails_job(self, store, job):
        fetcher = FakeFetcher([])
        fetcher.discover = AsyncMock(side_effect=ConnectionError("crawler unreachable"))
        runner = make_runner(store, fetcher)

        result = await runner.run(job.id)

        assert result.status == AuditStatus.FAILED
        assert "crawler unreachable" in result.error

    @pytest.mark.asyncio
    async def test_streaming_progress_is_estimate(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(4), stream=True), max_concurrency=1)

        result = await runner.run(job.id)

        running = [s for s in store.history if s.status == AuditStatus.RUNNING]
        estimates = [s.progress_percent for s in running if s.progress_is_estimate]
        assert estimates
        assert all(percent < 100 for percent in estimates)
        assert result.status == AuditStatus.COMPLETED
        assert result.progress_percent == 100
        assert result.progress_is_estimate is False
        assert [p.url for p in result.pages] == page_urls(4)

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(8), stream=True, stream_delay=0.005), max_concurrency=3)

        await runner.run(job.id)

        readings = [s.progress_percent for s in store.history]
        assert readings == sorted(readings)


class TestConcurrency:
    """Test the bounded worker pool."""

    @pytest.mark.asyncio
    async def test_in_flight_pages_bounded(self, store, job):
        fetcher = FakeFetcher(page_urls(6), delays={url: 0.02 for url in page_urls(6)})
        runner = make_runner(store, fetcher, max_concurrency=2)

        await runner.run(job.id)

        assert fetcher.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_second_claim_is_skipped(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(1)))

        first = await runner.run(job.id)
        second = await runner.run(job.id)

        assert first.status == AuditStatus.COMPLETED
        assert second is None


class TestFailures:
    """Test timeout, cancellation and page-level recovery."""

    @pytest.mark.asyncio
    async def test_timeout_fails_and_keeps_partial_results(self, store, job):
        urls = page_urls(3)
        fetcher = FakeFetcher(urls, delays={urls[2]: 10})
        runner = make_runner(store, fetcher, max_concurrency=1, timeout_seconds=0.3)

        result = await runner.run(job.id)

        assert result.status == AuditStatus.FAILED
        assert result.error == "Audit timed out after 0.3 seconds"
        assert [p.url for p in result.pages] == urls[:2]
        assert result.summary.pages_analyzed == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_claim(self, store):
        job = store.add(make_job(cancel_requested=True))
        fetcher = FakeFetcher(page_urls(3))
        runner = make_runner(store, fetcher)

        result = await runner.run(job.id)

        assert result.status == AuditStatus.FAILED
        assert result.error == "Audit cancelled"
        assert result.pages == []
        assert fetcher.max_in_flight == 0

    @pytest.mark.asyncio
    async def test_cancel_while_running_stops_scheduling(self, store, job):
        urls = page_urls(5)
        fetcher = FakeFetcher(urls)

        async def cancel_on_second(url):
            if url == urls[1]:
                await store.request_cancel(job.id)

        fetcher.on_fetch = cancel_on_second
        runner = make_runner(store, fetcher, max_concurrency=1)

        result = await runner.run(job.id)

        assert result.status == AuditStatus.FAILED
        assert result.error == "Audit cancelled"
        assert [p.url for p in result.pages] == urls[:2]

    @pytest.mark.asyncio
    async def test_analysis_failure_is_degraded(self, store, job):
        urls = page_urls(2)
        broken = dict(perfect_page(urls[0]), title="explode")
        runner = make_runner(
            store,
            FakeFetcher(urls, pages={urls[0]: broken}),
            engine=ExplodingEngine(RuleThresholds()),
        )

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED
        first = result.pages[0]
        assert first.degraded is True
        assert first.issues[0].text == "Failed to analyze page: unexpected markup"
        assert first.signals.title == "explode"
        assert result.pages[1].degraded is False

    @pytest.mark.asyncio
    async def test_analyzer_errors_do_not_fail_pages(self, store, job):
        analyzer = AsyncMock()
        analyzer.analyze.side_effect = RuntimeError("model overloaded")
        runner = make_runner(store, FakeFetcher(page_urls(2)), analyzer=analyzer)

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED
        assert not any(page.degraded for page in result.pages)

    @pytest.mark.asyncio
    async def test_analyzer_findings_lead_issue_list(self, store, job):
        analyzer = AsyncMock()
        analyzer.analyze.return_value = NarrativeAnalysis.from_legacy(
            critical_issues=["404 error on linked resource"],
            recommendations=["Great use of headings"],
        )
        runner = make_runner(store, FakeFetcher(page_urls(1)), analyzer=analyzer)

        result = await runner.run(job.id)

        page = result.pages[0]
        assert page.issues[0].text == "404 error on linked resource"
        assert page.issues[0].priority == IssuePriority.CRITICAL
        assert page.recommendations == ["Great use of headings"]


class TestNotifications:
    """Terminal transitions emit exactly one event."""

    @pytest.mark.asyncio
    async def test_completed_event(self, store, job):
        notifier = AsyncMock()
        runner = make_runner(store, FakeFetcher(page_urls(2)), notifier=notifier)

        await runner.run(job.id)

        notifier.notify.assert_awaited_once()
        event = notifier.notify.await_args.args[0]
        assert isinstance(event, AuditEvent)
        assert event.job_id == job.id
        assert event.client_id == job.client_id
        assert event.status == AuditStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_event(self, store, job):
        notifier = AsyncMock()
        runner = make_runner(store, FakeFetcher([]), notifier=notifier)

        await runner.run(job.id)

        event = notifier.notify.await_args.args[0]
        assert event.status == AuditStatus.FAILED
        assert event.error == f"No pages discovered for {BASE}"

    @pytest.mark.asyncio
    async def test_notifier_errors_are_contained(self, store, job):
        notifier = AsyncMock()
        notifier.notify.side_effect = RuntimeError("smtp down")
        runner = make_runner(store, FakeFetcher(page_urls(1)), notifier=notifier)

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED


class TestRefreshPage:
    """Manual refresh recomputes one page wholesale."""

    @pytest.mark.asyncio
    async def test_refresh_replaces_page_and_summary(self, store, job):
        urls = page_urls(2)
        fetcher = FakeFetcher(urls)
        runner = make_runner(store, fetcher)
        before = await runner.run(job.id)

        fetcher.pages[urls[1]] = dict(perfect_page(urls[1]), metaDescription="")
        after = await runner.refresh_page(job.id, urls[1])

        assert [p.url for p in after.pages] == urls
        assert "Missing meta description" in [i.text for i in after.pages[1].issues]
        assert after.summary.total_issues == before.summary.total_issues + 1
        stored = await store.get(job.id)
        assert stored.summary.total_issues == after.summary.total_issues

    @pytest.mark.asyncio
    async def test_refresh_requires_completed_job(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(1)))

        with pytest.raises(JobFailure):
            await runner.refresh_page(job.id, page_urls(1)[0])

    @pytest.mark.asyncio
    async def test_refresh_unknown_url(self, store, job):
        runner = make_runner(store, FakeFetcher(page_urls(1)))
        await runner.run(job.id)

        with pytest.raises(JobFailure):
            await runner.refresh_page(job.id, f"{BASE}/elsewhere")

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_keep_both_pages(self, store, job):
        urls = page_urls(2)
        fetcher = FakeFetcher(urls)
        runner = make_runner(store, fetcher)
        await runner.run(job.id)

        fetcher.pages = {url: dict(perfect_page(url), title=f"Refreshed {url}") for url in urls}
        fetcher.delays = {urls[0]: 0.05, urls[1]: 0.01}
        await asyncio.gather(
            runner.refresh_page(job.id, urls[0]),
            runner.refresh_page(job.id, urls[1]),
        )

        stored = await store.get(job.id)
        assert [p.signals.title for p in stored.pages] == [f"Refreshed {url}" for url in urls]

    @pytest.mark.asyncio
    async def test_refresh_keeps_listed_url_after_redirect(self, store, job):
        urls = page_urls(2)
        fetcher = FakeFetcher(urls)
        runner = make_runner(store, fetcher)
        await runner.run(job.id)

        fetcher.pages[urls[1]] = dict(perfect_page(f"{urls[1]}/"), metaDescription="")
        after = await runner.refresh_page(job.id, urls[1])

        assert [p.url for p in after.pages] == urls
        assert after.pages[1].signals.url == f"{urls[1]}/"
        assert "Missing meta description" in [i.text for i in after.pages[1].issues]


class TestMalformedPages:
    """Bad discovered URLs degrade one page, never the job."""

    @pytest.mark.asyncio
    async def test_malformed_url_fetch_failure(self, store, job):
        bad = "http://[::1"
        urls = page_urls(4) + [bad]
        runner = make_runner(store, FakeFetcher(urls, failing={bad}))

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED
        assert [p.url for p in result.pages] == urls
        assert [p.degraded for p in result.pages] == [False] * 4 + [True]
        assert result.pages[4].issues[0].text == "Failed to fetch page: connection refused"

    @pytest.mark.asyncio
    async def test_malformed_url_with_signals(self, store, job):
        bad = "http://[::1"
        urls = page_urls(2) + [bad]
        runner = make_runner(store, FakeFetcher(urls))

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED
        assert result.pages[2].degraded is True
        assert result.pages[2].issues[0].text.startswith("Failed to analyze page:")

    @pytest.mark.asyncio
    async def test_unexpected_page_error_degrades_page(self, store, job):
        class BrokenEngine(RuleEngine):
            def evaluate(self, signals, site=None):
                raise RuntimeError("rules unavailable")

            def evaluate_unknown(self, url, note):
                raise RuntimeError("template unavailable")

        urls = page_urls(2)
        runner = make_runner(store, FakeFetcher(urls), engine=BrokenEngine(RuleThresholds()))

        result = await runner.run(job.id)

        assert result.status == AuditStatus.COMPLETED
        assert all(p.degraded for p in result.pages)
        assert "template unavailable" in result.pages[0].error
