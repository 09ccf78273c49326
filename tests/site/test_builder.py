"""Tests for the full site build."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
from sitekit.config import SiteConfig
from sitekit.content.models import FrontMatter, Page, PageKind
from sitekit.errors import BuildError, FrontMatterError
from sitekit.site.builder import (
    FEED_SIZE,
    SiteBuilder,
    collect_taxonomy,
    page_url,
    paginate,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _post(title: str, date: str, tags: str = "[]", draft: bool = False) -> str:
    return (
        f"---\ntitle: {title}\ndate: {date}\ntags: {tags}\ncategories: [notes]\n"
        f"draft: {str(draft).lower()}\n---\n\nThis is {title}.\n"
    )


def _page(slug: str, tags: list[str] | None = None, date: datetime | None = None) -> Page:
    return Page(
        source_path=Path(f"content/posts/{slug}.md"),
        rel_path=f"posts/{slug}.md",
        kind=PageKind.POST,
        section="posts",
        front_matter=FrontMatter(title=slug, date=date, tags=tags or []),
        slug=slug,
        url=f"/posts/{slug}/",
    )


@pytest.fixture
def site(tmp_path: Path) -> Path:
    _write(tmp_path, "content/posts/hello.md", _post("Hello", "2024-01-10", "[python, Web]"))
    _write(tmp_path, "content/posts/second.md", _post("Second", "2024-02-10", "[python]"))
    _write(tmp_path, "content/posts/wip.md", _post("Work In Progress", "2024-03-10", draft=True))
    _write(tmp_path, "content/about.md", "---\ntitle: About\n---\nAbout me.\n")
    _write(tmp_path, "content/now.md", "---\ntitle: Now\n---\nCurrently building things.\n")
    return tmp_path


def _read(root: Path, rel: str) -> str:
    return (root / "public" / rel).read_text(encoding="utf-8")


class TestPaginate:
    def test_page_urls(self):
        assert page_url(1) == "/"
        assert page_url(3) == "/page/3/"

    def test_splits_and_links(self):
        posts = [_page(f"p{i}") for i in range(5)]
        pagers = paginate(posts, 2)
        assert [len(p.items) for p in pagers] == [2, 2, 1]
        assert pagers[0].prev_url == ""
        assert pagers[0].next_url == "/page/2/"
        assert pagers[2].prev_url == "/page/2/"
        assert pagers[2].next_url == ""
        assert {p.total for p in pagers} == {3}

    def test_empty_still_has_home(self):
        pagers = paginate([], 10)
        assert len(pagers) == 1
        assert pagers[0].url == "/"
        assert pagers[0].items == []


class TestCollectTaxonomy:
    def test_groups_and_sorts(self):
        a = _page("a", ["Python", "web"], datetime(2024, 1, 1, tzinfo=UTC))
        b = _page("b", ["python"], datetime(2024, 2, 1, tzinfo=UTC))
        terms = collect_taxonomy([a, b], "tag", "tags")

        assert [t.slug for t in terms] == ["python", "web"]
        python = terms[0]
        assert python.name == "Python"
        assert python.url == "/tags/python/"
        assert python.count == 2
        assert [p.slug for p in python.pages] == ["b", "a"]

    def test_duplicate_term_on_one_page_counted_once(self):
        page = _page("a", ["python", "Python"])
        assert collect_taxonomy([page], "tag", "tags")[0].count == 1

    def test_unsluggable_term_skipped(self):
        assert collect_taxonomy([_page("a", ["!!!"])], "tag", "tags") == []


class TestSiteBuilder:
    def test_writes_core_files(self, site: Path):
        result = SiteBuilder(site, SiteConfig(title="My Blog"), now=NOW).build()

        for rel in (
            "index.html",
            "posts/index.html",
            "posts/hello/index.html",
            "posts/second/index.html",
            "about/index.html",
            "now/index.html",
            "tags/index.html",
            "tags/python/index.html",
            "categories/notes/index.html",
            "index.xml",
            "sitemap.xml",
            "404.html",
            "css/syntax.css",
        ):
            assert (site / "public" / rel).is_file(), rel
            assert rel in result.files

        assert result.posts == 2
        assert result.pages == 2
        assert result.output_dir == site / "public"

    def test_drafts_excluded_by_default(self, site: Path):
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        assert not (site / "public" / "posts" / "wip").exists()
        assert "Work In Progress" not in _read(site, "index.html")

    def test_drafts_included_on_request(self, site: Path):
        result = SiteBuilder(site, SiteConfig(), now=NOW).build(include_drafts=True)
        assert (site / "public" / "posts" / "wip" / "index.html").is_file()
        assert result.drafts_included is True

    def test_build_drafts_from_config(self, site: Path):
        config = SiteConfig.model_validate({"build": {"build_drafts": True}})
        SiteBuilder(site, config, now=NOW).build()
        assert (site / "public" / "posts" / "wip" / "index.html").is_file()

    def test_future_posts_excluded(self, site: Path):
        _write(site, "content/posts/later.md", _post("Later", "2030-01-01"))
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        assert not (site / "public" / "posts" / "later").exists()

    def test_post_page_content(self, site: Path):
        SiteBuilder(site, SiteConfig(title="My Blog"), now=NOW).build()
        html = _read(site, "posts/hello/index.html")
        assert "<h1>Hello</h1>" in html
        assert "This is Hello." in html
        assert 'href="/tags/python/"' in html
        # the newer post links forward from the older one
        assert 'href="/posts/second/"' in html

    def test_home_lists_newest_first(self, site: Path):
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        html = _read(site, "index.html")
        assert html.index("Second") < html.index("Hello")

    def test_home_pagination(self, site: Path):
        config = SiteConfig.model_validate({"build": {"posts_per_page": 1}})
        SiteBuilder(site, config, now=NOW).build()
        assert (site / "public" / "page" / "2" / "index.html").is_file()
        assert "Page 2 of 2" in _read(site, "page/2/index.html")

    def test_term_page_lists_posts(self, site: Path):
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        html = _read(site, "tags/web/index.html")
        assert "Hello" in html
        assert "Second" not in html

    def test_rss_uses_absolute_links(self, site: Path):
        config = SiteConfig(title="My Blog", base_url="https://blog.example.com/")
        SiteBuilder(site, config, now=NOW).build()
        feed = _read(site, "index.xml")
        assert "<link>https://blog.example.com/posts/hello/</link>" in feed
        assert "<title>My Blog</title>" in feed

    def test_sitemap_lists_pages(self, site: Path):
        config = SiteConfig(base_url="https://blog.example.com/")
        SiteBuilder(site, config, now=NOW).build()
        sitemap = _read(site, "sitemap.xml")
        assert "<loc>https://blog.example.com/about/</loc>" in sitemap
        assert "<lastmod>2024-01-10</lastmod>" in sitemap
        assert "404" not in sitemap

    def test_static_files_site_overrides_theme(self, site: Path):
        _write(site, "themes/paper/static/css/site.css", "theme")
        _write(site, "themes/paper/static/img/logo.svg", "logo")
        _write(site, "static/css/site.css", "site")
        _write(site, "static/.DS_Store", "junk")

        result = SiteBuilder(site, SiteConfig(theme="paper"), now=NOW).build()

        assert _read(site, "css/site.css") == "site"
        assert _read(site, "img/logo.svg") == "logo"
        assert not (site / "public" / ".DS_Store").exists()
        assert result.static_files == 3

    def test_bundle_resources_copied(self, site: Path):
        _write(site, "content/posts/trip/index.md", _post("Trip", "2024-04-01"))
        (site / "content" / "posts" / "trip" / "photo.jpg").write_bytes(b"jpg")

        SiteBuilder(site, SiteConfig(), now=NOW).build()

        assert (site / "public" / "posts" / "trip" / "photo.jpg").read_bytes() == b"jpg"
        assert not (site / "public" / "posts" / "trip" / "index.md").exists()

    def test_cleans_stale_output(self, site: Path):
        _write(site, "public/old.html", "stale")
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        assert not (site / "public" / "old.html").exists()

    def test_keeps_stale_output_when_not_cleaning(self, site: Path):
        _write(site, "public/old.html", "stale")
        config = SiteConfig.model_validate({"build": {"clean_destination": False}})
        SiteBuilder(site, config, now=NOW).build()
        assert (site / "public" / "old.html").exists()

    def test_site_layout_overrides_builtin(self, site: Path):
        _write(site, "layouts/page.html", "custom {{ page.title }}")
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        assert _read(site, "about/index.html") == "custom About"

    def test_empty_site_builds(self, tmp_path: Path):
        result = SiteBuilder(tmp_path, SiteConfig(), now=NOW).build()
        assert result.posts == 0
        assert "No posts yet." in (tmp_path / "public" / "index.html").read_text(encoding="utf-8")

    @pytest.mark.parametrize("output_dir", [".", "content", "static"])
    def test_refuses_to_overwrite_sources(self, site: Path, output_dir: str):
        config = SiteConfig.model_validate({"build": {"output_dir": output_dir}})
        with pytest.raises(BuildError, match="Refusing to build"):
            SiteBuilder(site, config, now=NOW).build()
        assert (site / "content" / "about.md").exists()

    def test_build_is_deterministic(self, site: Path):
        _write(site, "content/posts/trip/index.md", _post("Trip", "2024-04-01", "[travel]"))
        (site / "content" / "posts" / "trip" / "photo.jpg").write_bytes(b"jpg")

        first = SiteBuilder(site, SiteConfig(), now=NOW).build()
        snapshot = {rel: (site / "public" / rel).read_bytes() for rel in first.files}
        second = SiteBuilder(site, SiteConfig(), now=NOW).build()

        assert second.files == first.files
        assert {rel: (site / "public" / rel).read_bytes() for rel in second.files} == snapshot

    def test_feed_keeps_newest_posts(self, tmp_path: Path):
        for day in range(1, FEED_SIZE + 6):
            post = _post(f"Post {day:02d}", f"2024-01-{day:02d}")
            _write(tmp_path, f"content/posts/p{day:02d}.md", post)

        SiteBuilder(tmp_path, SiteConfig(), now=NOW).build()

        feed = _read(tmp_path, "index.xml")
        assert feed.count("<item>") == FEED_SIZE
        assert f"<title>Post {FEED_SIZE + 5:02d}</title>" in feed
        assert "<title>Post 06</title>" in feed
        assert "<title>Post 05</title>" not in feed


class TestFailedBuild:
    def test_bad_front_matter_keeps_previous_output(self, site: Path):
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        _write(site, "content/posts/bad.md", "---\ntitle: [oops\n---\n")

        with pytest.raises(FrontMatterError):
            SiteBuilder(site, SiteConfig(), now=NOW).build()

        assert "About me." in _read(site, "about/index.html")
        assert (site / "public" / "posts" / "hello" / "index.html").is_file()

    def test_broken_layout_keeps_previous_output(self, site: Path):
        SiteBuilder(site, SiteConfig(), now=NOW).build()
        _write(site, "layouts/page.html", "{% if %}broken")

        with pytest.raises(BuildError, match="page.html"):
            SiteBuilder(site, SiteConfig(), now=NOW).build()

        assert "About me." in _read(site, "about/index.html")
        assert (site / "public" / "index.xml").is_file()

    def test_undefined_value_in_layout(self, site: Path):
        _write(site, "layouts/page.html", "{{ page.missing.deeper }}")
        with pytest.raises(BuildError, match="failed to render"):
            SiteBuilder(site, SiteConfig(), now=NOW).build()
        assert not (site / "public").exists()
