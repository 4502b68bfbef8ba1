"""
Static audit taxonomy: categories, their section and their issue priority.

Categories are listed in report order. Sections drive score rollups;
advisory categories are reported but never scored.
"""
from siteaudit.models.audit import IssuePriority
from siteaudit.schemas.audit import Section

CRAWLABILITY = "Technical • Crawlability & Indexing"
PERFORMANCE = "Technical • Performance"
MOBILE = "Technical • Mobile"
LINKS = "Technical • Links"
SECURITY = "Technical • Security"
META_TAGS = "On-Page • Meta Tags"
HEADINGS = "On-Page • Headings"
CONTENT = "On-Page • Content"
IMAGES = "On-Page • Images"
SCHEMA = "On-Page • Schema"
SOCIAL = "Off-Page • Social Sharing"
AUTHORITY = "Off-Page • Authority"
CONTENT_STRATEGY = "Content Strategy • Depth"

CATEGORY_ORDER: tuple[str, ...] = (
    CRAWLABILITY,
    PERFORMANCE,
    MOBILE,
    LINKS,
    SECURITY,
    META_TAGS,
    HEADINGS,
    CONTENT,
    IMAGES,
    SCHEMA,
    SOCIAL,
    AUTHORITY,
    CONTENT_STRATEGY,
)

CHECK_LABELS: dict[str, tuple[str, ...]] = {
    CRAWLABILITY: (
        "HTTP status",
        "Indexable",
        "Canonical tag",
        "SEO-friendly URL",
        "robots.txt present",
        "XML sitemap present",
    ),
    PERFORMANCE: ("Page load time", "Page size", "Core Web Vitals"),
    MOBILE: ("Viewport meta tag", "Mobile usability"),
    LINKS: ("Broken links", "Internal links"),
    SECURITY: ("HTTPS", "Secure canonical URL"),
    META_TAGS: ("Title length", "Meta description length"),
    HEADINGS: ("Single H1", "Heading hierarchy"),
    CONTENT: ("Word count", "Language declared"),
    IMAGES: ("Image alt text",),
    SCHEMA: ("Structured data",),
    SOCIAL: ("Open Graph tags", "Twitter card"),
    AUTHORITY: ("Backlink profile",),
    CONTENT_STRATEGY: ("In-depth content",),
}

SECTION_CATEGORIES: dict[Section, tuple[str, ...]] = {
    Section.TECHNICAL: (CRAWLABILITY, PERFORMANCE, MOBILE, LINKS, SECURITY),
    Section.ON_PAGE: (META_TAGS, HEADINGS, CONTENT, IMAGES, SCHEMA),
    Section.PERFORMANCE: (PERFORMANCE,),
}

ADVISORY_CATEGORIES: frozenset[str] = frozenset({SOCIAL, AUTHORITY, CONTENT_STRATEGY})

# Failing checks in these categories are already reported as signal-derived issues.
SUPPRESSED_CATEGORIES: frozenset[str] = frozenset({META_TAGS, HEADINGS, CONTENT, IMAGES})

CATEGORY_PRIORITIES: dict[str, IssuePriority] = {
    SECURITY: IssuePriority.CRITICAL,
    CRAWLABILITY: IssuePriority.HIGH,
    PERFORMANCE: IssuePriority.MEDIUM,
    MOBILE: IssuePriority.MEDIUM,
    LINKS: IssuePriority.MEDIUM,
    SCHEMA: IssuePriority.MEDIUM,
    SOCIAL: IssuePriority.LOW,
    AUTHORITY: IssuePriority.LOW,
    CONTENT_STRATEGY: IssuePriority.LOW,
}

# Links escalate when the failing check is about broken links.
BROKEN_LINK_PRIORITY = IssuePriority.HIGH


def sections_for(category: str) -> list[Section]:
    """Sections a category contributes to (empty for advisory categories)."""
    return [section for section, titles in SECTION_CATEGORIES.items() if category in titles]
