"""Static site builder: content + layouts + static files → output directory."""

from __future__ import annotations

import logging
import shutil
import time
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from sitekit.config import SiteConfig, resolve_theme_dir
from sitekit.content.models import ContentSet, Page, Section, TaxonomyTerm
from sitekit.content.services import (
    ContentReader,
    filter_content,
    slugify,
    sort_posts,
    title_from_name,
)
from sitekit.errors import BuildError
from sitekit.site.render import MarkdownRenderer, TemplateRenderer, syntax_css

logger = logging.getLogger(__name__)

FEED_SIZE = 20
SYNTAX_CSS_PATH = "css/syntax.css"


class Pager(BaseModel):
    """One page of the paginated home list."""

    number: int
    total: int
    items: list[Page] = Field(default_factory=list)
    url: str = "/"
    prev_url: str = ""
    next_url: str = ""


class SitemapEntry(BaseModel):
    url: str
    lastmod: datetime | None = None


class TermLink(BaseModel):
    name: str
    url: str


class BuildResult(BaseModel):
    """Summary of a finished build."""

    output_dir: Path
    posts: int = 0
    pages: int = 0
    terms: int = 0
    static_files: int = 0
    files: list[str] = Field(default_factory=list)
    elapsed_seconds: float = 0.0
    drafts_included: bool = False
    future_included: bool = False


def page_url(number: int) -> str:
    return "/" if number == 1 else f"/page/{number}/"


def paginate(posts: list[Page], per_page: int) -> list[Pager]:
    """Split posts into pagers; an empty list still yields one page."""
    chunks = [posts[i : i + per_page] for i in range(0, len(posts), per_page)] or [[]]
    total = len(chunks)
    pagers: list[Pager] = []
    for index, chunk in enumerate(chunks, start=1):
        pagers.append(
            Pager(
                number=index,
                total=total,
                items=chunk,
                url=page_url(index),
                prev_url=page_url(index - 1) if index > 1 else "",
                next_url=page_url(index + 1) if index < total else "",
            )
        )
    return pagers


def collect_taxonomy(pages: list[Page], singular: str, plural: str) -> list[TaxonomyTerm]:
    """Group pages by their terms for one taxonomy, sorted by term name.

    Terms that slugify to the same value are merged under the first
    spelling seen.
    """
    terms: dict[str, TaxonomyTerm] = {}
    for page in pages:
        for name in page.taxonomy_terms(singular):
            slug = slugify(name)
            if not slug:
                continue
            term = terms.get(slug)
            if term is None:
                term = TaxonomyTerm(
                    taxonomy=plural, name=name, slug=slug, url=f"/{plural}/{slug}/"
                )
                terms[slug] = term
            if not any(p is page for p in term.pages):
                term.pages.append(page)
    for term in terms.values():
        term.pages = sort_posts(term.pages)
    return sorted(terms.values(), key=lambda t: t.name.lower())


class SiteBuilder:
    """Builds a site directory into static HTML.

    Every build is a full rebuild. Content and layouts are rendered in
    memory first; the output directory is only touched once rendering has
    succeeded, so a failed build leaves the previous output in place. Its
    contents are replaced when ``clean_destination`` is set.
    """

    def __init__(
        self,
        site_root: Path,
        config: SiteConfig,
        now: datetime | None = None,
    ) -> None:
        self.site_root = site_root
        self.config = config
        self.now = now or datetime.now(tz=UTC)
        self.output_dir = site_root / config.build.output_dir
        self._written: list[str] = []
        self._rendered: dict[str, str] = {}

    # ── Public API ──────────────────────────────────────────────

    def build(
        self,
        include_drafts: bool | None = None,
        include_future: bool | None = None,
    ) -> BuildResult:
        """Render the whole site.

        Raises:
            BuildError: If the output directory would overwrite the site, or a
                layout fails to compile or render.
            FrontMatterError: If any content file is malformed.
            TemplateNotFoundError: If a required layout is missing.
        """
        started = time.perf_counter()
        drafts = self.config.build.build_drafts if include_drafts is None else include_drafts
        future = self.config.build.build_future if include_future is None else include_future

        self._check_output_dir()
        self._written = []
        self._rendered = {}

        content = ContentReader(self.site_root, self.config).read_all()
        content = filter_content(
            content, include_drafts=drafts, include_future=future, now=self.now
        )

        markdown = MarkdownRenderer(self.config.content.summary_length)
        for page in content.all_pages:
            markdown.render_page(page)
        for section in content.sections.values():
            markdown.render_section(section)

        templates = TemplateRenderer(self.site_root, self.config, self.now)
        templates.env.filters["slug"] = slugify

        taxonomies = {
            plural: collect_taxonomy(content.all_pages, singular, plural)
            for singular, plural in self.config.taxonomies.items()
        }

        self._render_posts(templates, content.posts)
        self._render_pages(templates, content.pages)
        self._render_home(templates, content)
        self._render_section(templates, content)
        term_count = self._render_taxonomies(templates, taxonomies)
        self._render_feeds(templates, content)
        self._write_text(SYNTAX_CSS_PATH, syntax_css(self.config.build.pygments_style))

        self._prepare_output_dir()
        self._flush_rendered()
        static_count = self._copy_static()
        static_count += self._copy_bundle_resources(content.all_pages)

        result = BuildResult(
            output_dir=self.output_dir,
            posts=len(content.posts),
            pages=len(content.pages),
            terms=term_count,
            static_files=static_count,
            files=sorted(set(self._written)),
            elapsed_seconds=round(time.perf_counter() - started, 3),
            drafts_included=drafts,
            future_included=future,
        )
        logger.info(
            "Built %d posts, %d pages, %d terms, %d static files into %s in %.2fs",
            result.posts,
            result.pages,
            result.terms,
            result.static_files,
            result.output_dir,
            result.elapsed_seconds,
        )
        return result

    # ── Output directory ────────────────────────────────────────

    def _check_output_dir(self) -> None:
        output = self.output_dir.resolve()
        protected = [
            self.site_root.resolve(),
            (self.site_root / self.config.content.content_dir).resolve(),
            (self.site_root / self.config.build.static_dir).resolve(),
            (self.site_root / self.config.build.layouts_dir).resolve(),
        ]
        for path in protected:
            if output == path or output in path.parents:
                raise BuildError(f"Refusing to build into {output}: it would overwrite {path}")

    def _prepare_output_dir(self) -> None:
        if self.output_dir.exists() and self.config.build.clean_destination:
            for child in self.output_dir.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _url_path(self, url: str) -> str:
        stripped = url.strip("/")
        return f"{stripped}/index.html" if stripped else "index.html"

    def _write_text(self, rel_path: str, text: str) -> None:
        self._rendered[rel_path] = text
        self._written.append(rel_path)

    def _flush_rendered(self) -> None:
        for rel_path, text in self._rendered.items():
            target = self.output_dir / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        self._rendered = {}

    def _write_url(self, url: str, text: str) -> None:
        self._write_text(self._url_path(url), text)

    # ── Rendering ───────────────────────────────────────────────

    def _term_links(self, page: Page) -> list[TermLink]:
        links: list[TermLink] = []
        for singular, plural in self.config.taxonomies.items():
            for name in page.taxonomy_terms(singular):
                slug = slugify(name)
                if slug:
                    links.append(TermLink(name=name, url=f"/{plural}/{slug}/"))
        return links

    def _render_posts(self, templates: TemplateRenderer, posts: list[Page]) -> None:
        for index, post in enumerate(posts):
            older = posts[index + 1] if index + 1 < len(posts) else None
            newer = posts[index - 1] if index > 0 else None
            html = templates.render(
                templates.layout_for(post, "single.html"),
                page=post,
                prev_post=older,
                next_post=newer,
                terms=self._term_links(post),
            )
            self._write_url(post.url, html)

    def _render_pages(self, templates: TemplateRenderer, pages: list[Page]) -> None:
        for page in pages:
            html = templates.render(
                templates.layout_for(page, "page.html"),
                page=page,
                terms=self._term_links(page),
            )
            self._write_url(page.url, html)

    def _render_home(self, templates: TemplateRenderer, content: ContentSet) -> None:
        home_section = content.sections.get("")
        for pager in paginate(content.posts, self.config.build.posts_per_page):
            html = templates.render("index.html", pager=pager, section=home_section)
            self._write_url(pager.url, html)

    def _render_section(self, templates: TemplateRenderer, content: ContentSet) -> None:
        name = self.config.content.posts_section
        section = content.sections.get(name) or Section(name=name, title=title_from_name(name))
        html = templates.render(
            "list.html",
            title=section.title,
            section=section,
            posts=content.posts,
            url=f"/{name}/",
        )
        self._write_url(f"/{name}/", html)

    def _render_taxonomies(
        self, templates: TemplateRenderer, taxonomies: dict[str, list[TaxonomyTerm]]
    ) -> int:
        count = 0
        for plural, terms in taxonomies.items():
            html = templates.render(
                "terms.html", title=title_from_name(plural), taxonomy=plural, terms=terms
            )
            self._write_url(f"/{plural}/", html)
            for term in terms:
                html = templates.render(
                    "list.html", title=term.name, term=term, posts=term.pages, url=term.url
                )
                self._write_url(term.url, html)
                count += 1
        return count

    def _render_feeds(self, templates: TemplateRenderer, content: ContentSet) -> None:
        self._write_text("index.xml", templates.render("rss.xml", posts=content.posts[:FEED_SIZE]))
        self._write_text("404.html", templates.render("404.html"))

        lastmods: dict[str, datetime | None] = {
            page.url: page.front_matter.lastmod or page.date for page in content.all_pages
        }
        entries = [
            SitemapEntry(url="/" + path.removesuffix("index.html"), lastmod=None)
            for path in self._written
            if path.endswith("index.html")
        ]
        for entry in entries:
            entry.lastmod = lastmods.get(entry.url)
        entries.sort(key=lambda e: e.url)
        self._write_text("sitemap.xml", templates.render("sitemap.xml", entries=entries))

    # ── Static files ────────────────────────────────────────────

    def _copy_tree(self, source: Path, destination: Path) -> int:
        if not source.is_dir():
            return 0
        copied = 0
        for path in sorted(source.rglob("*")):
            if not path.is_file():
                continue
            rel = path.relative_to(source)
            if any(part.startswith(".") for part in rel.parts):
                continue
            target = destination / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            self._written.append(target.relative_to(self.output_dir).as_posix())
            copied += 1
        return copied

    def _copy_static(self) -> int:
        copied = 0
        theme_dir = resolve_theme_dir(self.site_root, self.config)
        if theme_dir is not None:
            copied += self._copy_tree(theme_dir / "static", self.output_dir)
        copied += self._copy_tree(self.site_root / self.config.build.static_dir, self.output_dir)
        return copied

    def _copy_bundle_resources(self, pages: list[Page]) -> int:
        copied = 0
        for page in pages:
            if page.bundle_dir is None:
                continue
            destination = self.output_dir / page.url.strip("/")
            for path in sorted(page.bundle_dir.iterdir()):
                if path.is_file() and path.suffix != ".md" and not path.name.startswith("."):
                    destination.mkdir(parents=True, exist_ok=True)
                    target = destination / path.name
                    shutil.copy2(path, target)
                    self._written.append(target.relative_to(self.output_dir).as_posix())
                    copied += 1
        return copied
