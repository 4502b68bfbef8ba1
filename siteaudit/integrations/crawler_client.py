"""
Crawler service client: page discovery and per-page signal extraction.
"""
import json
import logging
import time
from typing import AsyncIterator

import httpx
from pydantic import ValidationError

from siteaudit.config import settings
from siteaudit.core.exceptions import FetchFailure
from siteaudit.schemas.signals import PageSignals, SiteFacts

logger = logging.getLogger(__name__)


class CrawlerServiceClient:
    """HTTP client for the crawling collaborator."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: int | None = None,
        streaming: bool = False,
    ):
        self.base_url = (base_url or settings.CRAWLER_SERVICE_URL).rstrip("/")
        self.timeout = timeout or settings.CRAWLER_SERVICE_TIMEOUT
        self.streaming = streaming
        logger.info(f"CrawlerServiceClient initialized: base_url={self.base_url}, timeout={self.timeout}s")

    async def discover(self, target_url: str, max_pages: int) -> list[str] | AsyncIterator[str]:
        """
        Discover page URLs for a site.

        Returns a finished list, or (with streaming enabled) an async
        iterator that yields URLs as the crawler finds them.
        """
        if self.streaming:
            return self._stream_urls(target_url, max_pages)

        logger.info(f"[DISCOVER] Discovering pages for: {target_url} (max {max_pages})")
        start_time = time.time()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.base_url}/discover",
                params={"url": target_url, "max_pages": max_pages},
            )
            response.raise_for_status()
            data = response.json()

        urls = [url for url in data.get("urls", []) if isinstance(url, str)]
        logger.info(f"[DISCOVER] {len(urls)} pages found in {time.time() - start_time:.2f}s")
        return urls

    async def _stream_urls(self, target_url: str, max_pages: int) -> AsyncIterator[str]:
        """Newline-delimited JSON stream: one {"url": ...} object per line."""
        logger.info(f"[DISCOVER] Streaming pages for: {target_url} (max {max_pages})")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "GET",
                f"{self.base_url}/discover/stream",
                params={"url": target_url, "max_pages": max_pages},
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    url = json.loads(line).get("url")
                    if url:
                        yield url

    async def fetch_signals(self, url: str) -> PageSignals:
        """Fetch one page's signals. Every failure surfaces as FetchFailure."""
        logger.debug(f"[FETCH] Requesting signals for: {url}")
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/signals", json={"url": url})
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            raise FetchFailure(url, f"timed out after {time.time() - start_time:.1f}s")
        except httpx.HTTPStatusError as e:
            raise FetchFailure(url, f"crawler returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            raise FetchFailure(url, f"{type(e).__name__}: {e}")
        except ValueError:
            raise FetchFailure(url, "crawler returned a non-JSON response")

        if isinstance(data, dict) and data.get("success") is False:
            raise FetchFailure(url, data.get("error") or "page could not be crawled")

        payload = data.get("signals", data) if isinstance(data, dict) else data
        if isinstance(payload, dict):
            payload.setdefault("url", url)
        try:
            signals = PageSignals.model_validate(payload)
        except ValidationError as e:
            raise FetchFailure(url, f"invalid signal payload ({e.error_count()} errors)")

        logger.debug(f"[FETCH] {url}: status={signals.status_code} in {time.time() - start_time:.2f}s")
        return signals

    async def site_facts(self, target_url: str) -> SiteFacts:
        """robots.txt and sitemap presence; unknown when the crawler cannot tell."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.base_url}/site-facts", params={"url": target_url})
                response.raise_for_status()
                return SiteFacts.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Site facts unavailable for {target_url}: {type(e).__name__}: {e}")
            return SiteFacts()
