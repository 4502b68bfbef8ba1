"""
Audit job orchestration.

One AuditJobRunner drives one job from Queued to a terminal state:
claim, discover pages, process them with a bounded worker pool, then
build the report. Every write to the job record goes through a per-run
lock, so concurrent page workers never lose progress or results.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Protocol, Sequence
from uuid import UUID

from siteaudit.config import settings
from siteaudit.core.exceptions import (
    AnalysisFailure,
    AuditCancelled,
    FetchFailure,
    JobFailure,
    JobNotFoundError,
)
from siteaudit.models.audit import AuditStatus
from siteaudit.schemas.audit import AuditJobRecord, NarrativeAnalysis, PageAuditResult
from siteaudit.schemas.signals import PageSignals, SiteFacts
from siteaudit.services.job_state import (
    estimated_progress,
    exact_progress,
    is_terminal,
    record_progress,
    transition,
)
from siteaudit.services.job_store import JobStore
from siteaudit.services.notification_service import AuditEvent
from siteaudit.services.report_builder import (
    build_page_result,
    build_report,
    degraded_page_result,
    replace_page,
)
from siteaudit.services.rule_engine import RuleEngine
from siteaudit.services.scoring import ScoringPolicy

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Audit cancelled"


class PageFetcher(Protocol):
    async def discover(self, target_url: str, max_pages: int) -> Sequence[str] | AsyncIterable[str]:
        """Discovered page URLs: a finished list, or a stream still being crawled."""
        ...

    async def fetch_signals(self, url: str) -> PageSignals:
        """Signals for one page; raises FetchFailure when the page is unreachable."""
        ...

    async def site_facts(self, target_url: str) -> SiteFacts:
        ...


class NarrativeAnalyzer(Protocol):
    async def analyze(self, url: str, signals: PageSignals) -> NarrativeAnalysis | None:
        ...


class Notifier(Protocol):
    async def notify(self, event: AuditEvent):
        ...


@dataclass
class _JobRun:
    """Mutable state of one run; only touched under `lock`."""

    job: AuditJobRecord
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    slots: list[PageAuditResult | None] = field(default_factory=list)
    site: SiteFacts = field(default_factory=SiteFacts)
    total: int | None = None
    processed: int = 0
    fetch_failures: int = 0
    discovery_done: bool = False
    stop_reason: str | None = None


async def _iterate(urls: Sequence[str] | AsyncIterable[str]) -> AsyncIterator[str]:
    if hasattr(urls, "__aiter__"):
        async for url in urls:
            yield url
    else:
        for url in urls:
            yield url


def dedupe_urls(urls: Sequence[str], max_pages: int) -> list[str]:
    """First-seen order, blanks dropped, capped at max_pages."""
    seen: dict[str, None] = {}
    for url in urls:
        url = (url or "").strip()
        if url and url not in seen:
            seen[url] = None
            if len(seen) >= max_pages:
                break
    return list(seen)


class AuditJobRunner:
    """Runs audit jobs against a page fetcher and persists them through a JobStore."""

    def __init__(
        self,
        store: JobStore,
        fetcher: PageFetcher,
        analyzer: NarrativeAnalyzer | None = None,
        notifier: Notifier | None = None,
        *,
        max_concurrency: int | None = None,
        timeout_seconds: float | None = None,
        max_pages: int | None = None,
        scoring_policy: ScoringPolicy | None = None,
        engine: RuleEngine | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.notifier = notifier
        self.max_concurrency = max(1, max_concurrency or settings.AUDIT_MAX_CONCURRENCY)
        self.timeout_seconds = timeout_seconds or settings.AUDIT_TIMEOUT_SECONDS
        self.max_pages = max_pages or settings.AUDIT_MAX_PAGES
        self.policy = scoring_policy or ScoringPolicy.from_settings()
        self.engine = engine or RuleEngine()

    async def run(self, job_id: UUID) -> AuditJobRecord | None:
        """
        Claim and run one job to a terminal state.

        Returns the final record, or None when the job was not Queued
        (already claimed by another worker, finished, or missing).
        """
        job = await self.store.claim(job_id)
        if job is None:
            logger.warning(f"Audit {job_id} is not queued; nothing to run")
            return None

        run = _JobRun(job=job)
        logger.info(f"Starting audit {job.id} of {job.target_url} ({job.audit_type.value})")

        if job.cancel_requested:
            await self._fail(run, CANCELLED_MESSAGE)
            return run.job

        try:
            await asyncio.wait_for(self._execute(run), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Audit {job.id} timed out after {self.timeout_seconds}s")
            await self._fail(run, f"Audit timed out after {self.timeout_seconds} seconds")
        except AuditCancelled as e:
            logger.info(f"Audit {job.id} cancelled after {run.processed} pages")
            await self._fail(run, str(e))
        except JobFailure as e:
            logger.error(f"Audit {job.id} failed: {e}")
            await self._fail(run, str(e))
        except Exception as e:
            logger.exception(f"Audit {job.id} crashed")
            await self._fail(run, f"Audit failed: {type(e).__name__}: {e}")

        return run.job

    async def refresh_page(self, job_id: UUID, url: str) -> AuditJobRecord:
        """Recompute one page of a Completed job and its summary."""
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != AuditStatus.COMPLETED:
            raise JobFailure(f"Audit {job_id} is {job.status.value}; only completed audits can be refreshed")
        if url not in {page.url for page in job.pages}:
            raise JobFailure(f"{url} is not part of audit {job_id}")

        site = await self._site_facts(job.target_url)
        result, _ = await self._process_page(url, site)

        def apply(current: AuditJobRecord):
            # Re-checked against the locked record.
            if current.status != AuditStatus.COMPLETED:
                raise JobFailure(f"Audit {job_id} is {current.status.value}; only completed audits can be refreshed")
            if url not in {page.url for page in current.pages}:
                raise JobFailure(f"{url} is not part of audit {job_id}")
            replace_page(current, url, result, self.policy)

        job = await self.store.update(job_id, apply)
        if job is None:
            raise JobNotFoundError(job_id)
        logger.info(f"Refreshed {url} in audit {job_id}")
        return job

    # =========================================================================
    # Execution
    # =========================================================================
    async def _execute(self, run: _JobRun):
        job = run.job
        try:
            discovered = await self.fetcher.discover(job.target_url, self.max_pages)
        except JobFailure:
            raise
        except Exception as e:
            raise JobFailure(f"Page discovery failed for {job.target_url}: {e}") from e

        run.site = await self._site_facts(job.target_url)

        if not hasattr(discovered, "__aiter__"):
            discovered = dedupe_urls(discovered, self.max_pages)
            run.total = len(discovered)
            logger.info(f"Audit {job.id}: {run.total} pages discovered")

        queue: asyncio.Queue = asyncio.Queue()
        workers = [
            asyncio.create_task(self._worker(run, queue, f"worker-{i}"))
            for i in range(self.max_concurrency)
        ]
        try:
            await self._feed(run, discovered, queue)
            for _ in workers:
                await queue.put(None)
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()

        if run.stop_reason:
            raise AuditCancelled(run.stop_reason)
        if not run.slots:
            raise JobFailure(f"No pages discovered for {job.target_url}")
        if run.fetch_failures == len(run.slots):
            raise JobFailure(f"All {len(run.slots)} pages failed to fetch")

        await self._complete(run)

    async def _feed(self, run: _JobRun, urls, queue: asyncio.Queue):
        """Queue (index, url) pairs in discovery order."""
        seen: set[str] = set()
        try:
            async for url in _iterate(urls):
                if run.stop_reason:
                    break
                url = (url or "").strip()
                if not url or url in seen:
                    continue
                if len(seen) >= self.max_pages:
                    logger.info(f"Audit {run.job.id}: page cap of {self.max_pages} reached")
                    break
                seen.add(url)
                async with run.lock:
                    run.slots.append(None)
                    index = len(run.slots) - 1
                await queue.put((index, url))
        except Exception as e:
            raise JobFailure(f"Page discovery failed for {run.job.target_url}: {e}") from e

        async with run.lock:
            run.discovery_done = True

    async def _worker(self, run: _JobRun, queue: asyncio.Queue, name: str):
        while True:
            item = await queue.get()
            if item is None:
                return
            index, url = item
            if run.stop_reason:
                continue
            if await self.store.is_cancel_requested(run.job.id):
                run.stop_reason = CANCELLED_MESSAGE
                logger.info(f"{name}: cancellation observed for audit {run.job.id}")
                continue
            try:
                result, fetch_failed = await self._process_page(url, run.site)
            except Exception as e:
                logger.exception(f"{name}: unexpected error on {url}")
                failure = AnalysisFailure(url, f"{type(e).__name__}: {e}")
                result, fetch_failed = degraded_page_result(url, failure), False
            await self._record(run, index, result, fetch_failed)

    async def _process_page(self, url: str, site: SiteFacts) -> tuple[PageAuditResult, bool]:
        """One page's result and whether the fetch itself failed. Never raises for page-level problems."""
        try:
            signals = await self.fetcher.fetch_signals(url)
        except FetchFailure as e:
            logger.warning(f"[FETCH] {url} failed: {e.reason}")
            return degraded_page_result(url, e, engine=self.engine), True
        except Exception as e:
            logger.warning(f"[FETCH] {url} failed: {type(e).__name__}: {e}")
            failure = FetchFailure(url, str(e) or type(e).__name__)
            return degraded_page_result(url, failure, engine=self.engine), True

        analysis = await self._analyze(url, signals)
        try:
            result = build_page_result(signals, analysis, site, self.engine, self.policy)
        except AnalysisFailure as e:
            logger.warning(f"[ANALYZE] Rule evaluation failed for {url}: {e.reason}")
            return degraded_page_result(url, e, signals=signals, engine=self.engine), False

        # Listed under the discovered URL, not a redirect target.
        return result.model_copy(update={"url": url}), False

    async def _analyze(self, url: str, signals: PageSignals) -> NarrativeAnalysis | None:
        if self.analyzer is None:
            return None
        try:
            return await self.analyzer.analyze(url, signals)
        except Exception as e:
            logger.warning(f"[ANALYZE] Narrative analysis unavailable for {url}: {type(e).__name__}: {e}")
            return None

    async def _site_facts(self, target_url: str) -> SiteFacts:
        try:
            return await self.fetcher.site_facts(target_url)
        except Exception as e:
            logger.warning(f"Site facts unavailable for {target_url}: {type(e).__name__}: {e}")
            return SiteFacts()

    async def _record(self, run: _JobRun, index: int, result: PageAuditResult, fetch_failed: bool):
        async with run.lock:
            if is_terminal(run.job.status):
                return
            run.slots[index] = result
            run.processed += 1
            if fetch_failed:
                run.fetch_failures += 1

            if run.total is not None:
                record_progress(run.job, exact_progress(run.processed, run.total))
            elif run.discovery_done:
                record_progress(run.job, exact_progress(run.processed, len(run.slots)))
            else:
                record_progress(run.job, estimated_progress(run.processed, len(run.slots)), estimate=True)

            build_report(run.job, run.slots, self.policy)
            await self.store.save(run.job)

    # =========================================================================
    # Terminal states
    # =========================================================================
    async def _complete(self, run: _JobRun):
        async with run.lock:
            build_report(run.job, run.slots, self.policy)
            transition(run.job, AuditStatus.COMPLETED)
            await self.store.save(run.job)
        logger.info(
            f"Audit {run.job.id} completed: {len(run.job.pages)} pages, "
            f"{run.fetch_failures} failed, overall score {run.job.summary.overall_score}"
        )
        await self._notify(run.job)

    async def _fail(self, run: _JobRun, message: str):
        async with run.lock:
            if is_terminal(run.job.status):
                return
            build_report(run.job, run.slots, self.policy)
            transition(run.job, AuditStatus.FAILED, error=message)
            await self.store.save(run.job)
        await self._notify(run.job)

    async def _notify(self, job: AuditJobRecord):
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(AuditEvent.from_job(job))
        except Exception as e:
            logger.error(f"Failed to send notification for audit {job.id}: {e}")
