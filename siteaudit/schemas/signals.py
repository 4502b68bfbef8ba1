"""
Page signal contract.

Everything the rule engine reads from a crawled page. The crawling
collaborator may send camelCase or snake_case keys and may omit or null
any field; after validation every field is present with its documented
default (empty string, zero, empty list/map), never None.
"""
from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from siteaudit.schemas.common import BaseSchema


class SignalModel(BaseSchema):
    """Base for signal models: nulls fall back to field defaults."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class HeadingSignal(SignalModel):
    level: int = Field(default=1, ge=1, le=6)
    text: str = ""


class ImageSignal(SignalModel):
    src: str = ""
    has_alt: bool = False


class ContentStats(SignalModel):
    word_count: int = Field(default=0, ge=0)
    internal_link_count: int = Field(default=0, ge=0)
    external_link_count: int = Field(default=0, ge=0)
    broken_link_count: int = Field(default=0, ge=0)


class PageSignals(SignalModel):
    """Normalized observable attributes of one crawled page."""

    url: str
    status_code: int = 0
    title: str = ""
    meta_description: str = ""
    h1: str = ""
    headings: list[HeadingSignal] = Field(default_factory=list)
    images: list[ImageSignal] = Field(default_factory=list)
    content: ContentStats = Field(default_factory=ContentStats)
    canonical_url: str = ""
    robots: str = ""
    load_time_ms: int = Field(default=0, ge=0)  # 0 = not measured
    content_length: int = Field(default=0, ge=0)  # 0 = not measured
    viewport: str = ""
    lang: str = ""
    structured_data_count: int = Field(default=0, ge=0)
    open_graph: dict[str, str] = Field(default_factory=dict)
    twitter_card: str = ""

    @field_validator("title", "meta_description", "h1", "canonical_url", "robots", "viewport", "lang")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("headings", "images", mode="before")
    @classmethod
    def _drop_null_entries(cls, value):
        if isinstance(value, list):
            return [item for item in value if item is not None]
        return value

    @field_validator("open_graph", mode="before")
    @classmethod
    def _drop_null_properties(cls, value):
        if isinstance(value, dict):
            return {key: str(item) for key, item in value.items() if item is not None}
        return value

    @classmethod
    def empty(cls, url: str) -> "PageSignals":
        """Signals for a page nothing could be observed about."""
        return cls(url=url)

    @property
    def h1_count(self) -> int:
        count = sum(1 for heading in self.headings if heading.level == 1)
        # Outlines without a level-1 entry still report the page h1.
        if count == 0 and self.h1:
            return 1
        return count

    @property
    def images_missing_alt(self) -> int:
        return sum(1 for image in self.images if not image.has_alt)

    @property
    def is_noindex(self) -> bool:
        directives = {part.strip().lower() for part in self.robots.split(",")}
        return "noindex" in directives or "none" in directives


class SiteFacts(SignalModel):
    """Site-level facts; None means globally unknown."""

    robots_txt_present: bool | None = None
    sitemap_present: bool | None = None
