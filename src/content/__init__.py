"""Content domain: front matter, pages, and the content directory reader."""

from sitekit.content.frontmatter import parse_front_matter, split_front_matter
from sitekit.content.models import (
    ContentSet,
    Cover,
    FrontMatter,
    FrontMatterFormat,
    Page,
    PageKind,
    Section,
    TaxonomyTerm,
)
from sitekit.content.services import (
    ContentReader,
    filter_content,
    new_content,
    slugify,
)

__all__ = [
    "ContentReader",
    "ContentSet",
    "Cover",
    "FrontMatter",
    "FrontMatterFormat",
    "Page",
    "PageKind",
    "Section",
    "TaxonomyTerm",
    "filter_content",
    "new_content",
    "parse_front_matter",
    "slugify",
    "split_front_matter",
]
