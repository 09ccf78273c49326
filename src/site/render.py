"""Markdown conversion and layout rendering."""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime
from email.utils import format_datetime
from pathlib import Path
from typing import Any

import markdown
from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)
from pygments.formatters import HtmlFormatter
from pygments.util import ClassNotFound

from sitekit.config import SiteConfig, resolve_theme_dir
from sitekit.content.models import Page, Section
from sitekit.errors import BuildError, ConfigError, TemplateNotFoundError

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATES = Path(__file__).parent / "templates"
MORE_MARKER = "<!--more-->"
HIGHLIGHT_CLASS = "highlight"

_HEADERLINK_RE = re.compile(r"<a class=\"headerlink\"[^>]*>.*?</a>", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def plain_text(rendered: str) -> str:
    """Strip tags and collapse whitespace."""
    text = _HEADERLINK_RE.sub("", rendered)
    text = html.unescape(_TAG_RE.sub("", text))
    return " ".join(text.split())


def truncate_words(text: str, count: int) -> str:
    words = text.split()
    if len(words) <= count:
        return " ".join(words)
    return " ".join(words[:count]) + "…"


class MarkdownRenderer:
    """Converts page bodies to HTML with Pygments highlighting and a TOC."""

    def __init__(self, summary_length: int = 70) -> None:
        self.summary_length = summary_length
        self._md = markdown.Markdown(
            extensions=["extra", "codehilite", "toc", "sane_lists"],
            extension_configs={
                "codehilite": {"css_class": HIGHLIGHT_CLASS, "guess_lang": False},
                "toc": {"permalink": True},
            },
            output_format="html",
        )

    def convert(self, text: str) -> tuple[str, str]:
        """Return (html, toc_html) for a Markdown document."""
        self._md.reset()
        body = self._md.convert(text)
        toc = getattr(self._md, "toc", "")
        return body, toc

    def render_page(self, page: Page) -> Page:
        """Fill in ``content_html``, ``toc_html``, ``summary`` and ``word_count``."""
        body_html, toc_html = self.convert(page.body)
        text = plain_text(body_html)

        page.content_html = body_html
        page.toc_html = toc_html
        page.word_count = len(text.split())

        if page.front_matter.summary:
            page.summary = page.front_matter.summary
        elif MORE_MARKER in page.body:
            head = page.body.split(MORE_MARKER, 1)[0]
            page.summary = plain_text(self.convert(head)[0])
        else:
            page.summary = truncate_words(text, self.summary_length)
        return page

    def render_section(self, section: Section) -> Section:
        section.content_html = self.convert(section.body)[0] if section.body.strip() else ""
        return section


def syntax_css(style: str) -> str:
    """Stylesheet for highlighted code blocks.

    Raises:
        ConfigError: If Pygments has no style by that name.
    """
    try:
        formatter = HtmlFormatter(style=style)
    except ClassNotFound as exc:
        raise ConfigError(f"Unknown pygments_style {style!r}") from exc
    return formatter.get_style_defs(f".{HIGHLIGHT_CLASS}")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def absurl(base_url: str, path: str) -> str:
    """Join a site-relative path onto ``base_url``; full URLs pass through."""
    if not path:
        return base_url
    if _SCHEME_RE.match(path) or path.startswith("//"):
        return path
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def _format_date(value: datetime | None, fmt: str = "%Y-%m-%d") -> str:
    if value is None:
        return ""
    return value.strftime(fmt)


def _rfc822(value: datetime | None) -> str:
    if value is None:
        return ""
    return format_datetime(value)


def _template_error(name: str, exc: Exception) -> BuildError:
    if isinstance(exc, TemplateSyntaxError):
        where = exc.filename or exc.name or name
        return BuildError(f"Template {where} line {exc.lineno}: {exc.message}")
    return BuildError(f"Template {name!r} failed to render: {exc}")


class TemplateRenderer:
    """Jinja2 layouts looked up in the site, then the theme, then built-ins."""

    def __init__(self, site_root: Path, config: SiteConfig, build_time: datetime) -> None:
        self.config = config
        self.build_time = build_time

        search_dirs: list[Path] = [site_root / config.build.layouts_dir]
        theme_dir = resolve_theme_dir(site_root, config)
        if theme_dir is not None:
            search_dirs.append(theme_dir / "layouts")
        search_dirs.append(BUILTIN_TEMPLATES)
        self.search_dirs = [d for d in search_dirs if d.is_dir()]

        self.env = Environment(
            loader=ChoiceLoader([FileSystemLoader(str(d)) for d in self.search_dirs]),
            autoescape=select_autoescape(["html", "xml"]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        base_url = config.base_url
        self.env.filters["absurl"] = lambda path: absurl(base_url, path)
        self.env.filters["date"] = _format_date
        self.env.filters["rfc822"] = _rfc822
        self.env.globals["site"] = config.template_context()
        self.env.globals["now"] = build_time

    def has_template(self, name: str) -> bool:
        try:
            self.env.get_template(name)
        except TemplateNotFound:
            return False
        except TemplateError as exc:
            raise _template_error(name, exc) from exc
        return True

    def render(self, name: str, **context: Any) -> str:
        """Render a layout by name.

        Raises:
            TemplateNotFoundError: If no search directory has the layout.
            BuildError: If the layout fails to compile or render.
        """
        try:
            return self.env.get_template(name).render(**context)
        except TemplateNotFound as exc:
            searched = [str(d) for d in self.search_dirs]
            raise TemplateNotFoundError(exc.name or name, searched) from exc
        except TemplateError as exc:
            raise _template_error(name, exc) from exc

    def layout_for(self, page: Page, default: str) -> str:
        """Front matter ``layout`` when it names an existing template, else ``default``."""
        layout = page.front_matter.layout
        if layout:
            name = layout if layout.endswith(".html") else f"{layout}.html"
            if self.has_template(name):
                return name
            logger.warning("%s: layout %r not found, using %s", page.rel_path, layout, default)
        return default
