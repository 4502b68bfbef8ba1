"""
Unit tests for the crawler and narrative analyzer clients.
"""
from unittest.mock import patch

import httpx
import pytest

from fixtures.sample_signals import perfect_page
from siteaudit.config import settings
from siteaudit.core.exceptions import FetchFailure
from siteaudit.integrations.crawler_client import CrawlerServiceClient
from siteaudit.integrations.narrative import NarrativeAnalyzerClient, parse_analysis
from siteaudit.schemas.audit import FreeformFinding, IssueType, StructuredFinding
from siteaudit.schemas.signals import PageSignals
from siteaudit.tasks.audit_tasks import build_runner

CRAWLER_URL = "http://crawler.test"
PAGE_URL = "https://example.com/about"

_RealAsyncClient = httpx.AsyncClient


def mock_transport(module: str, handler):
    """Route every AsyncClient the module creates through a MockTransport."""
    return patch(
        f"{module}.httpx.AsyncClient",
        side_effect=lambda **kwargs: _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs),
    )


def crawler_transport(handler):
    return mock_transport("siteaudit.integrations.crawler_client", handler)


class TestFetchSignals:
    """Test signal fetching and error mapping."""

    @pytest.mark.asyncio
    async def test_success(self):
        def handler(request):
            assert request.url.path == "/signals"
            return httpx.Response(200, json={"success": True, "signals": perfect_page(PAGE_URL)})

        with crawler_transport(handler):
            signals = await CrawlerServiceClient(CRAWLER_URL).fetch_signals(PAGE_URL)

        assert isinstance(signals, PageSignals)
        assert signals.url == PAGE_URL
        assert signals.status_code == 200

    @pytest.mark.asyncio
    async def test_bare_payload_gets_url(self):
        with crawler_transport(lambda request: httpx.Response(200, json={"statusCode": 404})):
            signals = await CrawlerServiceClient(CRAWLER_URL).fetch_signals(PAGE_URL)

        assert signals.url == PAGE_URL
        assert signals.status_code == 404
        assert signals.title == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("handler,reason", [
        (lambda request: httpx.Response(503), "crawler returned HTTP 503"),
        (lambda request: httpx.Response(200, content=b"<html>"), "crawler returned a non-JSON response"),
        (lambda request: httpx.Response(200, json={"success": False, "error": "DNS lookup failed"}),
         "DNS lookup failed"),
        (lambda request: httpx.Response(200, json={"statusCode": "not-a-number"}), "invalid signal payload"),
    ])
    async def test_failures_become_fetch_failure(self, handler, reason):
        with crawler_transport(handler):
            with pytest.raises(FetchFailure) as exc_info:
                await CrawlerServiceClient(CRAWLER_URL).fetch_signals(PAGE_URL)

        assert exc_info.value.url == PAGE_URL
        assert reason in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with crawler_transport(handler):
            with pytest.raises(FetchFailure) as exc_info:
                await CrawlerServiceClient(CRAWLER_URL).fetch_signals(PAGE_URL)

        assert exc_info.value.reason.startswith("timed out after")


class TestDiscovery:
    """Test page discovery."""

    @pytest.mark.asyncio
    async def test_list(self):
        def handler(request):
            assert request.url.params["max_pages"] == "10"
            return httpx.Response(200, json={"urls": ["https://example.com/", 42, "https://example.com/a"]})

        with crawler_transport(handler):
            urls = await CrawlerServiceClient(CRAWLER_URL).discover("https://example.com", 10)

        assert urls == ["https://example.com/", "https://example.com/a"]

    @pytest.mark.parametrize("enabled", [True, False])
    def test_production_runner_follows_streaming_setting(self, enabled):
        with patch.object(settings, "CRAWLER_STREAMING_DISCOVERY", enabled):
            runner = build_runner(session_maker=None)

        assert runner.fetcher.streaming is enabled

    @pytest.mark.asyncio
    async def test_stream(self):
        body = b'{"url": "https://example.com/"}\n\n{"url": "https://example.com/a"}\n{"other": 1}\n'

        with crawler_transport(lambda request: httpx.Response(200, content=body)):
            stream = await CrawlerServiceClient(CRAWLER_URL, streaming=True).discover("https://example.com", 10)
            urls = [url async for url in stream]

        assert urls == ["https://example.com/", "https://example.com/a"]

    @pytest.mark.asyncio
    async def test_site_facts_unknown_on_error(self):
        with crawler_transport(lambda request: httpx.Response(500)):
            facts = await CrawlerServiceClient(CRAWLER_URL).site_facts("https://example.com")

        assert facts.robots_txt_present is None
        assert facts.sitemap_present is None


class TestNarrativeAnalysis:
    """Test analyzer response parsing."""

    def test_both_shapes_merge(self):
        analysis = parse_analysis({
            "findings": [
                {"issue_type": "redirect_loop"},
                {"issue_type": "not-a-type"},
                {"kind": "freeform", "text": "Thin content"},
            ],
            "criticalIssues": ["Missing canonical tag"],
            "opportunities": ["", "Add internal links"],
            "recommendations": ["Add an FAQ section"],
        })

        assert analysis.findings == [
            StructuredFinding(issue_type=IssueType.REDIRECT_LOOP),
            FreeformFinding(text="Thin content"),
            FreeformFinding(text="Missing canonical tag"),
            FreeformFinding(text="Add internal links"),
        ]
        assert analysis.recommendations == ["Add an FAQ section"]

    def test_from_settings_without_url(self):
        assert NarrativeAnalyzerClient.from_settings() is None

    @pytest.mark.asyncio
    async def test_analyze_error_returns_none(self, perfect_signals):
        client = NarrativeAnalyzerClient(base_url="http://analyzer.test")

        with mock_transport("siteaudit.integrations.narrative", lambda request: httpx.Response(502)):
            assert await client.analyze(perfect_signals.url, perfect_signals) is None
