"""Reading content files and creating new ones from archetypes.

Contains everything that touches the content directory on disk.
Imports models from ``sitekit.content.models``.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import UTC, datetime
from pathlib import Path

from jinja2 import Environment, StrictUndefined

from sitekit.config import SiteConfig, resolve_theme_dir
from sitekit.content.frontmatter import parse_front_matter
from sitekit.content.models import ContentSet, Page, PageKind, Section
from sitekit.errors import ContentError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SECTION_INDEX = "_index.md"
BUNDLE_INDEX = "index.md"
BUILTIN_ARCHETYPES = Path(__file__).parent / "archetypes"

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Lowercase ASCII slug: runs of non-alphanumerics become single dashes."""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _SLUG_STRIP.sub("-", normalized.lower()).strip("-")


def title_from_name(name: str) -> str:
    """``my-first_post`` → ``My First Post``."""
    words = re.split(r"[-_\s]+", name)
    return " ".join(w.capitalize() for w in words if w)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class ContentReader:
    """Discovers and parses Markdown files under the content directory."""

    def __init__(self, site_root: Path, config: SiteConfig) -> None:
        self.site_root = site_root
        self.config = config
        self.content_dir = site_root / config.content.content_dir

    def discover(self) -> list[Path]:
        """Markdown files to read, sorted, skipping hidden and partial files."""
        if not self.content_dir.is_dir():
            logger.warning("Content directory not found: %s", self.content_dir)
            return []

        found: list[Path] = []
        for path in sorted(self.content_dir.rglob("*.md")):
            rel_parts = path.relative_to(self.content_dir).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            if path.name.startswith("_") and path.name != SECTION_INDEX:
                continue
            found.append(path)
        return found

    def read_all(self) -> ContentSet:
        """Read every content file into posts, pages, and section indexes.

        Raises:
            FrontMatterError: If any file has malformed front matter.
            ContentError: If two files render to the same URL.
        """
        content = ContentSet()
        seen_urls: dict[str, Path] = {}

        for path in self.discover():
            rel = path.relative_to(self.content_dir)
            if path.name == SECTION_INDEX:
                section = self._read_section(path, rel)
                content.sections[section.name] = section
                continue

            page = self.read_page(path)
            if page.url in seen_urls:
                raise ContentError(
                    f"{rel} and {seen_urls[page.url].relative_to(self.content_dir)} "
                    f"both render to {page.url}"
                )
            seen_urls[page.url] = path

            if page.kind is PageKind.POST:
                content.posts.append(page)
            else:
                content.pages.append(page)

        content.posts = sort_posts(content.posts)
        content.pages = sort_pages(content.pages)
        logger.debug(
            "Read %d posts and %d pages from %s",
            len(content.posts),
            len(content.pages),
            self.content_dir,
        )
        return content

    def read_page(self, path: Path) -> Page:
        """Parse one content file into a Page."""
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ContentError(f"Could not read {path}: {exc}") from exc

        front_matter, body = parse_front_matter(text, path)
        rel = path.relative_to(self.content_dir)
        parts = rel.parts

        bundle_dir: Path | None = None
        dir_parts = list(parts[:-1])
        name = path.stem
        if path.name == BUNDLE_INDEX and dir_parts:
            bundle_dir = path.parent
            name = dir_parts.pop()

        section = parts[0] if len(parts) > 1 else ""
        posts_section = self.config.content.posts_section
        kind = PageKind.POST if section == posts_section else PageKind.PAGE

        slug = slugify(front_matter.slug or name)
        if not slug:
            raise ContentError(f"{rel}: cannot derive a URL slug from {name!r}")

        if kind is PageKind.POST:
            url = f"/{posts_section}/{slug}/"
        else:
            prefix = "".join(f"{slugify(d)}/" for d in dir_parts)
            url = f"/{prefix}{slug}/"

        if not front_matter.title:
            front_matter.title = title_from_name(name)

        return Page(
            source_path=path,
            rel_path=rel.as_posix(),
            kind=kind,
            section=section,
            front_matter=front_matter,
            body=body,
            slug=slug,
            url=url,
            bundle_dir=bundle_dir,
        )

    def _read_section(self, path: Path, rel: Path) -> Section:
        """Sections are keyed by their directory path, "" for the home page."""
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ContentError(f"Could not read {path}: {exc}") from exc
        front_matter, body = parse_front_matter(text, path)
        name = rel.parent.as_posix() if len(rel.parts) > 1 else ""
        default_title = title_from_name(rel.parent.name) if name else self.config.title
        return Section(
            name=name,
            title=front_matter.title or default_title,
            body=body,
        )


def sort_posts(posts: list[Page]) -> list[Page]:
    """Newest first; posts sharing a date are ordered by title."""
    floor = datetime.min.replace(tzinfo=UTC)
    by_title = sorted(posts, key=lambda p: p.title.lower())
    return sorted(by_title, key=lambda p: p.date or floor, reverse=True)


def sort_pages(pages: list[Page]) -> list[Page]:
    return sorted(pages, key=lambda p: (p.front_matter.weight, p.title.lower()))


def filter_content(
    content: ContentSet,
    *,
    include_drafts: bool = False,
    include_future: bool = False,
    now: datetime | None = None,
) -> ContentSet:
    """Drop drafts and future-dated content unless asked to keep them."""
    now = now or datetime.now(tz=UTC)

    def keep(page: Page) -> bool:
        if page.draft and not include_drafts:
            return False
        if page.is_future(now) and not include_future:
            return False
        return True

    return ContentSet(
        posts=[p for p in content.posts if keep(p)],
        pages=[p for p in content.pages if keep(p)],
        sections=dict(content.sections),
    )


# ---------------------------------------------------------------------------
# New content
# ---------------------------------------------------------------------------


def _archetype_candidates(site_root: Path, config: SiteConfig, kind: str) -> list[Path]:
    dirs = [site_root / config.content.archetypes_dir]
    theme_dir = resolve_theme_dir(site_root, config)
    if theme_dir is not None:
        dirs.append(theme_dir / "archetypes")

    candidates: list[Path] = []
    for d in dirs:
        candidates.append(d / f"{kind}.md")
        candidates.append(d / "default.md")
    candidates.append(BUILTIN_ARCHETYPES / "default.md")
    return candidates


def find_archetype(site_root: Path, config: SiteConfig, kind: str) -> Path:
    """First existing archetype for ``kind``, falling back to the built-in one."""
    for candidate in _archetype_candidates(site_root, config, kind):
        if candidate.is_file():
            return candidate
    raise ContentError(f"No archetype found for {kind!r}")


def new_content(
    site_root: Path,
    config: SiteConfig,
    relative_path: str,
    kind: str | None = None,
    now: datetime | None = None,
) -> Path:
    """Create a content file from an archetype.

    Args:
        site_root: Site directory.
        config: Site configuration.
        relative_path: Path under the content directory, e.g. ``posts/hello.md``.
        kind: Archetype name. Defaults to the first path component.
        now: Creation time written into the ``date`` field.

    Returns:
        Path of the created file.

    Raises:
        ContentError: If the path escapes the content directory or the file
            already exists.
    """
    rel = Path(relative_path)
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ContentError(
            f"Content path must be relative to the content directory: {relative_path}"
        )
    if rel.suffix != ".md":
        rel = rel.with_name(rel.name + ".md")

    content_dir = site_root / config.content.content_dir
    target = content_dir / rel
    if target.exists():
        raise ContentError(f"{target} already exists")

    if kind is None:
        kind = rel.parts[0] if len(rel.parts) > 1 else "default"

    archetype = find_archetype(site_root, config, kind)
    name = rel.parent.name if rel.name == BUNDLE_INDEX and len(rel.parts) > 1 else rel.stem
    created = (now or datetime.now(tz=UTC)).astimezone()

    env = Environment(keep_trailing_newline=True, undefined=StrictUndefined)
    template = env.from_string(archetype.read_text(encoding="utf-8"))
    text = template.render(
        title=title_from_name(name),
        date=created.isoformat(timespec="seconds"),
        slug=slugify(name),
        section=rel.parts[0] if len(rel.parts) > 1 else "",
        kind=kind,
    )

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    logger.info("Created %s from archetype %s", target, archetype)
    return target
