"""Local preview server with polling rebuilds."""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections.abc import Callable
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from sitekit.config import CONFIG_FILENAMES, SiteConfig
from sitekit.errors import SitekitError
from sitekit.site.builder import BuildResult, SiteBuilder

logger = logging.getLogger(__name__)

DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 1313


class SiteRequestHandler(SimpleHTTPRequestHandler):
    """Static file handler that serves the site's 404 page and logs quietly."""

    def send_error(self, code: int, message: str | None = None, explain: str | None = None) -> None:
        not_found = Path(self.directory) / "404.html"
        if code == HTTPStatus.NOT_FOUND and not_found.is_file():
            body = not_found.read_bytes()
            self.send_response(code)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)
            return
        super().send_error(code, message, explain)

    def end_headers(self) -> None:
        self.send_header("Cache-Control", "no-store")
        super().end_headers()

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class SiteWatcher:
    """Detects changes to site sources by comparing modification times."""

    def __init__(self, site_root: Path, config: SiteConfig) -> None:
        self.site_root = site_root
        self.config = config
        self._snapshot = self.snapshot()

    def watched_paths(self) -> list[Path]:
        build = self.config.build
        dirs = [
            self.site_root / self.config.content.content_dir,
            self.site_root / self.config.content.archetypes_dir,
            self.site_root / build.layouts_dir,
            self.site_root / build.static_dir,
            self.site_root / build.themes_dir,
        ]
        files = [self.site_root / name for name in CONFIG_FILENAMES]
        return dirs + files

    def snapshot(self) -> dict[Path, float]:
        mtimes: dict[Path, float] = {}
        for root in self.watched_paths():
            if root.is_file():
                mtimes[root] = root.stat().st_mtime
            elif root.is_dir():
                for path in root.rglob("*"):
                    try:
                        if path.is_file():
                            mtimes[path] = path.stat().st_mtime
                    except OSError:
                        # Deleted between listing and stat; the next poll sees it gone.
                        continue
        return mtimes

    def poll(self) -> list[Path]:
        """Paths added, removed, or modified since the previous poll."""
        current = self.snapshot()
        previous = self._snapshot
        self._snapshot = current
        changed = {p for p in current.keys() | previous.keys() if current.get(p) != previous.get(p)}
        return sorted(changed)


class DevServer:
    """Builds the site, serves it, and rebuilds when sources change.

    ``load_config`` is called before every rebuild so edits to the config
    file take effect without a restart.
    """

    def __init__(
        self,
        site_root: Path,
        load_config: Callable[[], SiteConfig],
        *,
        bind: str = DEFAULT_BIND,
        port: int = DEFAULT_PORT,
        include_drafts: bool = False,
        include_future: bool = False,
        poll_interval: float = 1.0,
    ) -> None:
        self.site_root = site_root
        self._load_config = load_config
        self.bind = bind
        self.port = port
        self.include_drafts = include_drafts
        self.include_future = include_future
        self.poll_interval = poll_interval
        self.config = self._server_config()
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def url(self) -> str:
        return f"http://{self.bind}:{self.port}/"

    def _server_config(self) -> SiteConfig:
        config = self._load_config()
        return config.model_copy(update={"base_url": self.url})

    def build(self) -> BuildResult:
        builder = SiteBuilder(self.site_root, self.config)
        return builder.build(include_drafts=self.include_drafts, include_future=self.include_future)

    def rebuild(self) -> BuildResult | None:
        """Rebuild after a change; errors are logged and the last output kept."""
        try:
            self.config = self._server_config()
            return self.build()
        except SitekitError as exc:
            logger.error("Rebuild failed: %s", exc)
            return None

    def _make_server(self) -> ThreadingHTTPServer:
        output_dir = self.site_root / self.config.build.output_dir
        handler = functools.partial(SiteRequestHandler, directory=str(output_dir))
        return ThreadingHTTPServer((self.bind, self.port), handler)

    def serve_forever(self) -> None:
        """Build once, then serve until interrupted."""
        self.build()
        watcher = SiteWatcher(self.site_root, self.config)
        self._httpd = self._make_server()
        thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)
        thread.start()
        logger.info("Serving %s at %s (Ctrl-C to stop)", self.site_root, self.url)

        try:
            while True:
                time.sleep(self.poll_interval)
                changed = watcher.poll()
                if not changed:
                    continue
                logger.info("Change detected in %s, rebuilding", changed[0])
                self.rebuild()
                watcher.config = self.config
        except KeyboardInterrupt:
            logger.info("Stopping server")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
