"""
Narrative analyzer client.

The analyzer reviews a page's signals and answers with free-text lists
(criticalIssues, opportunities, recommendations) and, in newer versions,
typed findings. Both shapes are folded into one NarrativeAnalysis.
"""
import logging
import time

import httpx
from pydantic import ValidationError

from siteaudit.config import settings
from siteaudit.schemas.audit import FreeformFinding, NarrativeAnalysis, StructuredFinding
from siteaudit.schemas.signals import PageSignals

logger = logging.getLogger(__name__)


def parse_analysis(data: dict) -> NarrativeAnalysis:
    """Build a NarrativeAnalysis from either response shape; malformed findings are skipped."""
    legacy = NarrativeAnalysis.from_legacy(
        critical_issues=data.get("criticalIssues") or data.get("critical_issues"),
        opportunities=data.get("opportunities"),
        recommendations=data.get("recommendations"),
    )

    structured = []
    for raw in data.get("findings") or []:
        if not isinstance(raw, dict):
            continue
        try:
            if raw.get("kind", "structured") == "structured":
                structured.append(StructuredFinding.model_validate(raw))
            else:
                structured.append(FreeformFinding.model_validate(raw))
        except ValidationError as e:
            logger.debug(f"[ANALYZE] Skipping malformed finding {raw!r}: {e.error_count()} errors")

    return NarrativeAnalysis(
        findings=[*structured, *legacy.findings],
        recommendations=legacy.recommendations,
    )


class NarrativeAnalyzerClient:
    """HTTP client for the narrative analyzer service."""

    def __init__(self, base_url: str | None = None, timeout: int | None = None):
        self.base_url = (base_url or settings.NARRATIVE_ANALYZER_URL).rstrip("/")
        self.timeout = timeout or settings.NARRATIVE_ANALYZER_TIMEOUT

    @classmethod
    def from_settings(cls) -> "NarrativeAnalyzerClient | None":
        """The configured client, or None when no analyzer URL is set."""
        if not settings.NARRATIVE_ANALYZER_URL:
            return None
        return cls()

    async def analyze(self, url: str, signals: PageSignals) -> NarrativeAnalysis | None:
        logger.info(f"[ANALYZE] Requesting narrative analysis for: {url}")
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/analyze",
                    json={"url": url, "signals": signals.model_dump(mode="json", by_alias=True)},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"[ANALYZE] Failed after {time.time() - start_time:.2f}s: {type(e).__name__}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"[ANALYZE] Unexpected response type for {url}: {type(data).__name__}")
            return None

        analysis = parse_analysis(data)
        logger.info(
            f"[ANALYZE] {url}: {len(analysis.findings)} findings, "
            f"{len(analysis.recommendations)} recommendations in {time.time() - start_time:.2f}s"
        )
        return analysis
