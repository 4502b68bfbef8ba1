"""
SiteAudit Rule Engine - per-page SEO checks

Categories (report order):
Technical: Crawlability & Indexing, Performance, Mobile, Links, Security
On-Page: Meta Tags, Headings, Content, Images, Schema
Off-Page & Content Strategy: Social Sharing, Authority, Depth (advisory)

Every check is pass, fail or unknown. A check whose underlying signal was
not collected is unknown; it never defaults to pass or fail.
"""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from siteaudit.config import settings
from siteaudit.schemas.audit import Category, Check, CheckStatus
from siteaudit.schemas.signals import PageSignals, SiteFacts
from siteaudit.services import taxonomy

logger = logging.getLogger(__name__)

URL_SEGMENT_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*(?:\.[a-z0-9]+)?$")
OPEN_GRAPH_REQUIRED = ("og:title", "og:description", "og:image")


@dataclass(frozen=True)
class RuleThresholds:
    title_min_length: int = 50
    title_max_length: int = 60
    meta_description_min_length: int = 120
    meta_description_max_length: int = 160
    min_word_count: int = 300
    in_depth_word_count: int = 500
    max_load_time_ms: int = 2500
    max_url_length: int = 75
    max_page_size_bytes: int = 3 * 1024 * 1024

    @classmethod
    def from_settings(cls) -> "RuleThresholds":
        return cls(
            title_min_length=settings.TITLE_MIN_LENGTH,
            title_max_length=settings.TITLE_MAX_LENGTH,
            meta_description_min_length=settings.META_DESCRIPTION_MIN_LENGTH,
            meta_description_max_length=settings.META_DESCRIPTION_MAX_LENGTH,
            min_word_count=settings.MIN_WORD_COUNT,
            in_depth_word_count=settings.IN_DEPTH_WORD_COUNT,
            max_load_time_ms=settings.MAX_LOAD_TIME_MS,
            max_url_length=settings.MAX_URL_LENGTH,
            max_page_size_bytes=settings.MAX_PAGE_SIZE_BYTES,
        )


@dataclass
class RuleEvaluation:
    categories: list[Category] = field(default_factory=list)

    @property
    def fail_count(self) -> int:
        return sum(category.fail_count for category in self.categories)


def _status(passed: bool) -> CheckStatus:
    return CheckStatus.PASS if passed else CheckStatus.FAIL


def url_path_problems(url: str, max_length: int) -> list[str]:
    """Reasons a URL path is not SEO-friendly; empty when it is."""
    parsed = urlparse(url)
    path = parsed.path
    problems = []
    if parsed.query:
        problems.append("has a query string")
    if "_" in path:
        problems.append("contains underscores")
    if path != path.lower():
        problems.append("contains uppercase characters")
    if len(path) > max_length:
        problems.append(f"is longer than {max_length} characters")
    segments = [segment for segment in path.split("/") if segment]
    if any(not URL_SEGMENT_RE.match(segment.lower().replace("_", "-")) for segment in segments):
        problems.append("has segments that are not hyphen-separated words")
    return problems


class RuleEngine:
    """Evaluates one page's signals into the fixed, ordered category list."""

    def __init__(self, thresholds: RuleThresholds | None = None):
        self.thresholds = thresholds or RuleThresholds.from_settings()

    def evaluate(self, signals: PageSignals, site: SiteFacts | None = None) -> RuleEvaluation:
        """Run every check against one page."""
        site = site or SiteFacts()
        checks: dict[str, list[Check]] = {title: [] for title in taxonomy.CATEGORY_ORDER}

        self._run_crawlability_checks(signals, site, checks[taxonomy.CRAWLABILITY])
        self._run_performance_checks(signals, checks[taxonomy.PERFORMANCE])
        self._run_mobile_checks(signals, checks[taxonomy.MOBILE])
        self._run_link_checks(signals, checks[taxonomy.LINKS])
        self._run_security_checks(signals, checks[taxonomy.SECURITY])
        self._run_meta_tag_checks(signals, checks[taxonomy.META_TAGS])
        self._run_heading_checks(signals, checks[taxonomy.HEADINGS])
        self._run_content_checks(signals, checks[taxonomy.CONTENT])
        self._run_image_checks(signals, checks[taxonomy.IMAGES])
        self._run_schema_checks(signals, checks[taxonomy.SCHEMA])
        self._run_social_checks(signals, checks[taxonomy.SOCIAL])
        self._run_authority_checks(checks[taxonomy.AUTHORITY])
        self._run_content_strategy_checks(signals, checks[taxonomy.CONTENT_STRATEGY])

        evaluation = RuleEvaluation(
            categories=[Category(title=title, items=items) for title, items in checks.items()]
        )
        logger.debug(f"Evaluated {signals.url}: {evaluation.fail_count} failing checks")
        return evaluation

    def evaluate_unknown(self, url: str, note: str) -> RuleEvaluation:
        """The full taxonomy with every check unknown. Built from the label table; no rule runs."""
        return RuleEvaluation(categories=[
            Category(
                title=title,
                items=[
                    Check(category=title, label=label, status=CheckStatus.UNKNOWN, note=note)
                    for label in taxonomy.CHECK_LABELS[title]
                ],
            )
            for title in taxonomy.CATEGORY_ORDER
        ])

    # =========================================================================
    # Technical
    # =========================================================================
    def _run_crawlability_checks(self, signals: PageSignals, site: SiteFacts, out: list[Check]):
        cat = taxonomy.CRAWLABILITY

        code = signals.status_code
        if code == 0:
            out.append(Check(category=cat, label="HTTP status", status=CheckStatus.UNKNOWN,
                             note="No HTTP status recorded"))
        else:
            ok = 200 <= code < 400
            out.append(Check(category=cat, label="HTTP status", status=_status(ok),
                             note=None if ok else f"Page returned HTTP {code} error"))

        out.append(Check(
            category=cat, label="Indexable", status=_status(not signals.is_noindex),
            note="Page is blocked from indexing by a noindex robots directive" if signals.is_noindex else None,
        ))

        has_canonical = bool(signals.canonical_url)
        out.append(Check(
            category=cat, label="Canonical tag", status=_status(has_canonical),
            note=None if has_canonical else "Missing canonical tag",
        ))

        problems = url_path_problems(signals.url, self.thresholds.max_url_length)
        out.append(Check(
            category=cat, label="SEO-friendly URL", status=_status(not problems),
            note=f"URL {', '.join(problems)}" if problems else None,
        ))

        out.append(self._site_fact_check(cat, "robots.txt present", site.robots_txt_present,
                                         "robots.txt file is missing"))
        out.append(self._site_fact_check(cat, "XML sitemap present", site.sitemap_present,
                                         "XML sitemap is missing"))

    @staticmethod
    def _site_fact_check(cat: str, label: str, fact: bool | None, fail_note: str) -> Check:
        if fact is None:
            return Check(category=cat, label=label, status=CheckStatus.UNKNOWN, note="Not checked for this site")
        return Check(category=cat, label=label, status=_status(fact), note=None if fact else fail_note)

    def _run_performance_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.PERFORMANCE

        if signals.load_time_ms == 0:
            out.append(Check(category=cat, label="Page load time", status=CheckStatus.UNKNOWN,
                             note="Load time not measured"))
        else:
            fast = signals.load_time_ms <= self.thresholds.max_load_time_ms
            out.append(Check(
                category=cat, label="Page load time", status=_status(fast),
                note=None if fast else f"Slow page load ({signals.load_time_ms} ms)",
            ))

        if signals.content_length == 0:
            out.append(Check(category=cat, label="Page size", status=CheckStatus.UNKNOWN,
                             note="Page size not measured"))
        else:
            small = signals.content_length <= self.thresholds.max_page_size_bytes
            out.append(Check(
                category=cat, label="Page size", status=_status(small),
                note=None if small else f"Large page size ({signals.content_length // 1024} KB)",
            ))

        out.append(Check(category=cat, label="Core Web Vitals", status=CheckStatus.UNKNOWN,
                         note="Core Web Vitals are not collected"))

    def _run_mobile_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.MOBILE

        has_viewport = bool(signals.viewport)
        out.append(Check(
            category=cat, label="Viewport meta tag", status=_status(has_viewport),
            note=None if has_viewport else "Missing viewport meta tag",
        ))
        out.append(Check(category=cat, label="Mobile usability", status=CheckStatus.UNKNOWN,
                         note="Mobile usability requires a rendered page"))

    def _run_link_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.LINKS

        broken = signals.content.broken_link_count
        out.append(Check(
            category=cat, label="Broken links", status=_status(broken == 0),
            note=None if broken == 0 else f"{broken} broken link{'s' if broken != 1 else ''} on page",
        ))

        internal = signals.content.internal_link_count
        out.append(Check(
            category=cat, label="Internal links", status=_status(internal > 0),
            note=None if internal else "No internal links on page",
        ))

    def _run_security_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.SECURITY

        https = urlparse(signals.url).scheme == "https"
        out.append(Check(
            category=cat, label="HTTPS", status=_status(https),
            note=None if https else "Page is not served over HTTPS",
        ))

        if not signals.canonical_url:
            out.append(Check(category=cat, label="Secure canonical URL", status=CheckStatus.UNKNOWN,
                             note="No canonical URL to inspect"))
        else:
            secure = not signals.canonical_url.lower().startswith("http://")
            out.append(Check(
                category=cat, label="Secure canonical URL", status=_status(secure),
                note=None if secure else "Canonical URL points to an insecure http:// address",
            ))

    # =========================================================================
    # On-Page
    # =========================================================================
    def _run_meta_tag_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.META_TAGS
        t = self.thresholds

        title_len = len(signals.title)
        title_ok = t.title_min_length <= title_len <= t.title_max_length
        out.append(Check(
            category=cat, label="Title length", status=_status(title_ok),
            note=None if title_ok else f"Title is {title_len} characters "
                                      f"(recommended {t.title_min_length}-{t.title_max_length})",
        ))

        desc_len = len(signals.meta_description)
        desc_ok = t.meta_description_min_length <= desc_len <= t.meta_description_max_length
        out.append(Check(
            category=cat, label="Meta description length", status=_status(desc_ok),
            note=None if desc_ok else f"Meta description is {desc_len} characters "
                                      f"(recommended {t.meta_description_min_length}-{t.meta_description_max_length})",
        ))

    def _run_heading_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.HEADINGS

        h1_count = signals.h1_count
        out.append(Check(
            category=cat, label="Single H1", status=_status(h1_count == 1),
            note=None if h1_count == 1 else f"Page has {h1_count} H1 headings",
        ))

        if not signals.headings:
            out.append(Check(category=cat, label="Heading hierarchy", status=CheckStatus.UNKNOWN,
                             note="No heading outline collected"))
            return
        jumps = [
            (prev.level, curr.level)
            for prev, curr in zip(signals.headings, signals.headings[1:])
            if curr.level - prev.level > 1
        ]
        out.append(Check(
            category=cat, label="Heading hierarchy", status=_status(not jumps),
            note=None if not jumps else f"Heading level skips from H{jumps[0][0]} to H{jumps[0][1]}",
        ))

    def _run_content_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.CONTENT

        words = signals.content.word_count
        enough = words >= self.thresholds.min_word_count
        out.append(Check(
            category=cat, label="Word count", status=_status(enough),
            note=None if enough else f"Thin content ({words} words)",
        ))

        has_lang = bool(signals.lang)
        out.append(Check(
            category=cat, label="Language declared", status=_status(has_lang),
            note=None if has_lang else "Missing HTML lang attribute",
        ))

    def _run_image_checks(self, signals: PageSignals, out: list[Check]):
        missing = signals.images_missing_alt
        out.append(Check(
            category=taxonomy.IMAGES, label="Image alt text", status=_status(missing == 0),
            note=None if missing == 0 else f"{missing} images missing alt text",
        ))

    def _run_schema_checks(self, signals: PageSignals, out: list[Check]):
        has_schema = signals.structured_data_count > 0
        out.append(Check(
            category=taxonomy.SCHEMA, label="Structured data", status=_status(has_schema),
            note=None if has_schema else "No structured data found",
        ))

    # =========================================================================
    # Off-Page & Content Strategy (advisory)
    # =========================================================================
    def _run_social_checks(self, signals: PageSignals, out: list[Check]):
        cat = taxonomy.SOCIAL

        missing = [prop for prop in OPEN_GRAPH_REQUIRED if not signals.open_graph.get(prop)]
        out.append(Check(
            category=cat, label="Open Graph tags", status=_status(not missing),
            note=None if not missing else f"Incomplete Open Graph tags (missing {', '.join(missing)})",
        ))

        has_card = bool(signals.twitter_card)
        out.append(Check(
            category=cat, label="Twitter card", status=_status(has_card),
            note=None if has_card else "Missing Twitter card tags",
        ))

    def _run_authority_checks(self, out: list[Check]):
        out.append(Check(category=taxonomy.AUTHORITY, label="Backlink profile", status=CheckStatus.UNKNOWN,
                         note="Backlink data is not collected"))

    def _run_content_strategy_checks(self, signals: PageSignals, out: list[Check]):
        words = signals.content.word_count
        deep = words >= self.thresholds.in_depth_word_count
        out.append(Check(
            category=taxonomy.CONTENT_STRATEGY, label="In-depth content", status=_status(deep),
            note=None if deep else f"Content could be expanded ({words} words)",
        ))
