"""Static site rendering, building, and local preview."""

from sitekit.site.builder import BuildResult, SiteBuilder
from sitekit.site.server import DevServer

__all__ = ["BuildResult", "DevServer", "SiteBuilder"]
