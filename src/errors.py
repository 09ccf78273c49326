"""Exception hierarchy for sitekit.

Library code raises these; only the CLI turns them into exit codes.
"""

from __future__ import annotations

from pathlib import Path


class SitekitError(Exception):
    """Base class for all errors raised by sitekit."""


class ConfigError(SitekitError):
    """Site configuration is malformed or missing a required value."""


class ContentError(SitekitError):
    """A content file cannot be read, created, or placed."""


class FrontMatterError(ContentError):
    """The front matter block of a content file is malformed."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path}: invalid front matter: {reason}")


class TemplateNotFoundError(SitekitError):
    """No layout matched in the site, theme, or built-in templates."""

    def __init__(self, name: str, searched: list[str] | None = None) -> None:
        self.name = name
        self.searched = searched or []
        where = ", ".join(self.searched) if self.searched else "any layout directory"
        super().__init__(f"Template {name!r} not found in {where}")


class BuildError(SitekitError):
    """The site cannot be built into the requested destination."""


class CloudflareAPIError(SitekitError):
    """The Cloudflare API rejected a request."""

    def __init__(
        self,
        status: int,
        errors: list[dict] | None = None,
        message: str = "",
    ) -> None:
        self.status = status
        self.errors = errors or []
        if not message:
            details = "; ".join(
                f"[{e.get('code', '?')}] {e.get('message', '')}".strip() for e in self.errors
            )
            message = f"Cloudflare API error (HTTP {status})"
            if details:
                message = f"{message}: {details}"
        super().__init__(message)


class CloudflareAuthError(CloudflareAPIError):
    """Authentication with the Cloudflare API failed."""

    def __init__(self, status: int, errors: list[dict] | None = None) -> None:
        super().__init__(
            status,
            errors,
            message=(
                f"Cloudflare rejected the API token (HTTP {status}). "
                "Check CLOUDFLARE_API_TOKEN and its zone/account permissions."
            ),
        )
