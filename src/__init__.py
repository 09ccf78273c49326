"""sitekit - build a Markdown blog into a static site and manage its Cloudflare hosting."""

__version__ = "0.1.0"
