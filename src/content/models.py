"""Pure data models for site content.

All Pydantic models and enums for content files live here. No I/O;
``sitekit.content.services`` reads files and builds these.
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

WORDS_PER_MINUTE = 213


class PageKind(StrEnum):
    """What a content file renders as."""

    POST = "post"
    PAGE = "page"
    SECTION = "section"


class FrontMatterFormat(StrEnum):
    """Front matter syntax, named after its delimiter's language."""

    YAML = "yaml"
    TOML = "toml"
    NONE = "none"


def _coerce_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"not a date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v) for v in value]


class Cover(BaseModel):
    """Cover image shown on a post and its list entries."""

    image: str
    alt: str = ""
    caption: str = ""
    relative: bool = False


class FrontMatter(BaseModel):
    """Metadata block at the top of a content file.

    Keys not modelled here are kept in ``params`` so templates can use them.
    """

    title: str = ""
    date: datetime | None = None
    lastmod: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    draft: bool = False
    slug: str = ""
    summary: str = ""
    description: str = ""
    weight: int = 0
    layout: str = ""
    cover: Cover | None = None
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("date", "lastmod", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @field_validator("tags", "categories", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("cover", mode="before")
    @classmethod
    def _bare_cover(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"image": value} if value else None
        return value

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> FrontMatter:
        """Build front matter, moving unknown keys into ``params``."""
        known = set(cls.model_fields) - {"params"}
        fields = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        params = dict(data.get("params") or {})
        params.update(extra)
        params.pop("params", None)
        return cls.model_validate({**fields, "params": params})


class Page(BaseModel):
    """A parsed content file, ready for rendering."""

    source_path: Path
    rel_path: str
    kind: PageKind
    section: str = ""
    front_matter: FrontMatter = Field(default_factory=FrontMatter)
    body: str = ""
    slug: str = ""
    url: str = "/"
    bundle_dir: Path | None = None
    content_html: str = ""
    toc_html: str = ""
    summary: str = ""
    word_count: int = 0

    @property
    def title(self) -> str:
        return self.front_matter.title

    @property
    def date(self) -> datetime | None:
        return self.front_matter.date

    @property
    def tags(self) -> list[str]:
        return self.front_matter.tags

    @property
    def categories(self) -> list[str]:
        return self.front_matter.categories

    @property
    def draft(self) -> bool:
        return self.front_matter.draft

    @property
    def params(self) -> dict[str, Any]:
        return self.front_matter.params

    @property
    def reading_time(self) -> int:
        """Estimated reading time in whole minutes, at least one."""
        return max(1, math.ceil(self.word_count / WORDS_PER_MINUTE))

    def is_future(self, now: datetime) -> bool:
        return self.date is not None and self.date > now

    def taxonomy_terms(self, singular: str) -> list[str]:
        """Terms this page declares for a taxonomy (``tag`` → ``tags`` field)."""
        if singular == "tag":
            return self.tags
        if singular == "category":
            return self.categories
        plural_value = self.params.get(singular) or self.params.get(f"{singular}s")
        return _coerce_str_list(plural_value)


class Section(BaseModel):
    """Title and intro text for a section's list page, from ``_index.md``."""

    name: str
    title: str = ""
    body: str = ""
    content_html: str = ""


class TaxonomyTerm(BaseModel):
    """One term of a taxonomy with the posts that carry it."""

    taxonomy: str
    name: str
    slug: str
    url: str
    pages: list[Page] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.pages)


class ContentSet(BaseModel):
    """Everything read from a content directory."""

    posts: list[Page] = Field(default_factory=list)
    pages: list[Page] = Field(default_factory=list)
    sections: dict[str, Section] = Field(default_factory=dict)

    @property
    def all_pages(self) -> list[Page]:
        return [*self.posts, *self.pages]
