"""Tests for Markdown conversion, summaries, and template lookup."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
from sitekit.config import SiteConfig
from sitekit.content.models import FrontMatter, Page, PageKind
from sitekit.errors import BuildError, ConfigError, TemplateNotFoundError
from sitekit.site.render import (
    MarkdownRenderer,
    TemplateRenderer,
    absurl,
    plain_text,
    syntax_css,
    truncate_words,
)

BUILD_TIME = datetime(2024, 6, 1, tzinfo=UTC)
CDN_IMAGE = "https://cdn.example.net/a.png"


def _page(body: str, **fm: object) -> Page:
    return Page(
        source_path=Path("content/posts/x.md"),
        rel_path="posts/x.md",
        kind=PageKind.POST,
        section="posts",
        front_matter=FrontMatter(title="X", **fm),
        body=body,
        slug="x",
        url="/posts/x/",
    )


class TestHelpers:
    def test_plain_text_strips_tags_and_entities(self):
        assert plain_text("<p>Fish &amp; <em>chips</em></p>\n<p>again</p>") == "Fish & chips again"

    def test_truncate_words_short_text_untouched(self):
        assert truncate_words("one two", 5) == "one two"

    def test_truncate_words_adds_ellipsis(self):
        assert truncate_words("one two three four", 2) == "one two…"

    @pytest.mark.parametrize(
        ("base", "path", "expected"),
        [
            ("https://example.com/", "/posts/x/", "https://example.com/posts/x/"),
            ("https://example.com", "posts/x/", "https://example.com/posts/x/"),
            ("/", "/about/", "/about/"),
            ("https://example.com/", CDN_IMAGE, CDN_IMAGE),
            ("https://example.com/", "", "https://example.com/"),
        ],
    )
    def test_absurl(self, base: str, path: str, expected: str):
        assert absurl(base, path) == expected


class TestMarkdownRenderer:
    def test_headings_get_ids_and_toc(self):
        html, toc = MarkdownRenderer().convert("## Getting Started\n\nText.\n")
        assert 'id="getting-started"' in html
        assert "getting-started" in toc

    def test_code_is_highlighted(self):
        html, _ = MarkdownRenderer().convert("```python\nprint('hi')\n```\n")
        assert 'class="highlight"' in html

    def test_tables(self):
        html, _ = MarkdownRenderer().convert("| a | b |\n|---|---|\n| 1 | 2 |\n")
        assert "<table>" in html

    def test_renderer_is_reusable(self):
        renderer = MarkdownRenderer()
        renderer.convert("# One\n")
        _, toc = renderer.convert("# Two\n")
        assert 'href="#one"' not in toc

    def test_summary_from_words(self):
        page = _page(" ".join(f"w{i}" for i in range(100)))
        MarkdownRenderer(summary_length=5).render_page(page)
        assert page.summary == "w0 w1 w2 w3 w4…"
        assert page.word_count == 100

    def test_summary_from_more_marker(self):
        page = _page("Intro **bold**.\n\n<!--more-->\n\nThe rest.\n")
        MarkdownRenderer().render_page(page)
        assert page.summary == "Intro bold."
        assert "The rest." in page.content_html

    def test_explicit_summary_wins(self):
        page = _page("Body text.\n", summary="Hand written.")
        MarkdownRenderer().render_page(page)
        assert page.summary == "Hand written."

    def test_reading_time(self):
        page = _page(" ".join(["word"] * 500))
        MarkdownRenderer().render_page(page)
        assert page.reading_time == 3

    def test_reading_time_minimum(self):
        page = _page("")
        MarkdownRenderer().render_page(page)
        assert page.reading_time == 1


class TestSyntaxCss:
    def test_known_style(self):
        assert ".highlight" in syntax_css("monokai")

    def test_unknown_style_raises(self):
        with pytest.raises(ConfigError, match="pygments_style"):
            syntax_css("no-such-style")


class TestTemplateRenderer:
    def test_builtin_single(self, tmp_path: Path):
        renderer = TemplateRenderer(tmp_path, SiteConfig(title="Blog"), BUILD_TIME)
        page = _page("Hello")
        MarkdownRenderer().render_page(page)
        html = renderer.render("single.html", page=page, terms=[])
        assert "<h1>X</h1>" in html
        assert "Hello" in html
        assert "<title>X | Blog</title>" in html

    def test_site_layout_overrides_builtin(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "single.html").write_text("custom {{ page.title }}", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        assert renderer.render("single.html", page=_page("")) == "custom X"

    def test_theme_layout_between_site_and_builtin(self, tmp_path: Path):
        theme_layouts = tmp_path / "themes" / "paper" / "layouts"
        theme_layouts.mkdir(parents=True)
        (theme_layouts / "page.html").write_text("theme {{ page.title }}", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(theme="paper"), BUILD_TIME)
        assert renderer.render("page.html", page=_page("")) == "theme X"

    def test_missing_template_raises(self, tmp_path: Path):
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        with pytest.raises(TemplateNotFoundError, match="nope.html"):
            renderer.render("nope.html")

    def test_autoescape(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "t.html").write_text("{{ value }}", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        assert renderer.render("t.html", value="<b>") == "&lt;b&gt;"

    def test_absurl_filter_uses_base_url(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "t.html").write_text("{{ '/posts/' | absurl }}", encoding="utf-8")
        config = SiteConfig(base_url="https://blog.example.com/")
        renderer = TemplateRenderer(tmp_path, config, BUILD_TIME)
        assert renderer.render("t.html") == "https://blog.example.com/posts/"

    def test_layout_for_front_matter(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "wide.html").write_text("wide", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        assert renderer.layout_for(_page("", layout="wide"), "single.html") == "wide.html"
        assert renderer.layout_for(_page("", layout="missing"), "single.html") == "single.html"
        assert renderer.layout_for(_page(""), "single.html") == "single.html"

    def test_syntax_error_names_template_and_line(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "t.html").write_text("ok\n{% if %}broken", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        with pytest.raises(BuildError, match=r"t\.html line 2"):
            renderer.render("t.html")

    def test_undefined_attribute_raises_build_error(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "t.html").write_text("{{ page.nothing.here }}", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        with pytest.raises(BuildError, match="t.html"):
            renderer.render("t.html", page=_page(""))

    def test_missing_include_raises_not_found(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "t.html").write_text('{% include "partial.html" %}', encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        with pytest.raises(TemplateNotFoundError, match="partial.html"):
            renderer.render("t.html")

    def test_layout_for_broken_layout_raises(self, tmp_path: Path):
        layouts = tmp_path / "layouts"
        layouts.mkdir()
        (layouts / "wide.html").write_text("{% for %}", encoding="utf-8")
        renderer = TemplateRenderer(tmp_path, SiteConfig(), BUILD_TIME)
        with pytest.raises(BuildError, match="wide.html"):
            renderer.layout_for(_page("", layout="wide"), "single.html")
