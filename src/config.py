"""Unified site configuration loaded from sitekit.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from sitekit.errors import ConfigError

if TYPE_CHECKING:
    from sitekit.integrations.cloudflare import CloudflareConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ["sitekit.toml", "config.toml"]


class ContentSectionConfig(BaseModel):
    """[content] section."""

    content_dir: str = "content"
    posts_section: str = "posts"
    archetypes_dir: str = "archetypes"
    summary_length: int = 70


class BuildSectionConfig(BaseModel):
    """[build] section."""

    output_dir: str = "public"
    static_dir: str = "static"
    layouts_dir: str = "layouts"
    themes_dir: str = "themes"
    posts_per_page: int = 10
    build_drafts: bool = False
    build_future: bool = False
    clean_destination: bool = True
    pygments_style: str = "monokai"

    @field_validator("posts_per_page")
    @classmethod
    def _positive_page_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("posts_per_page must be at least 1")
        return value


class MenuItem(BaseModel):
    """One entry of a navigation menu."""

    name: str
    url: str
    weight: int = 0


class MenuConfig(BaseModel):
    """[menu] section."""

    main: list[MenuItem] = Field(default_factory=list)

    def sorted(self, name: str = "main") -> list[MenuItem]:
        items: list[MenuItem] = getattr(self, name, [])
        return sorted(items, key=lambda m: (m.weight, m.name))


class PagesSectionConfig(BaseModel):
    """[cloudflare.pages] section."""

    project_name: str = ""
    production_branch: str = "main"
    build_command: str = "sitekit build"
    destination_dir: str = "public"
    root_dir: str = ""
    source_type: str = "github"
    repo_owner: str = ""
    repo_name: str = ""
    production_env: dict[str, str] = Field(default_factory=dict)
    preview_env: dict[str, str] = Field(default_factory=dict)


class DnsSectionConfig(BaseModel):
    """[cloudflare.dns] section."""

    proxied: bool = True
    ttl: int = 1
    include_www: bool = True
    target: str = ""


class CloudflareSectionConfig(BaseModel):
    """[cloudflare] section.

    The API token is normally supplied through ``CLOUDFLARE_API_TOKEN``
    rather than committed to the config file.
    """

    account_id: str = ""
    zone_id: str = ""
    api_token: str = Field(default="", repr=False)
    domain: str = ""
    api_base: str = "https://api.cloudflare.com/client/v4"
    pages: PagesSectionConfig = Field(default_factory=PagesSectionConfig)
    dns: DnsSectionConfig = Field(default_factory=DnsSectionConfig)

    @property
    def cname_target(self) -> str:
        """Where the root and www records point."""
        if self.dns.target:
            return self.dns.target
        if self.pages.project_name:
            return f"{self.pages.project_name}.pages.dev"
        return ""


def _default_taxonomies() -> dict[str, str]:
    return {"tag": "tags", "category": "categories"}


class SiteConfig(BaseModel):
    """Top-level configuration model for a site."""

    base_url: str = "/"
    title: str = "My Site"
    language_code: str = "en-us"
    theme: str = ""
    author: str = ""
    description: str = ""
    content: ContentSectionConfig = Field(default_factory=ContentSectionConfig)
    build: BuildSectionConfig = Field(default_factory=BuildSectionConfig)
    taxonomies: dict[str, str] = Field(default_factory=_default_taxonomies)
    params: dict[str, Any] = Field(default_factory=dict)
    menu: MenuConfig = Field(default_factory=MenuConfig)
    cloudflare: CloudflareSectionConfig = Field(default_factory=CloudflareSectionConfig)

    def template_context(self) -> dict[str, Any]:
        """Site values exposed to templates as ``site``."""
        return {
            "base_url": self.base_url,
            "title": self.title,
            "language_code": self.language_code,
            "author": self.author,
            "description": self.description,
            "params": dict(self.params),
            "menu": self.menu.sorted("main"),
            "taxonomies": dict(self.taxonomies),
            "posts_section": self.content.posts_section,
        }

    def to_cloudflare_config(self) -> CloudflareConfig:
        """Convert to CloudflareConfig for the Cloudflare API client."""
        from sitekit.integrations.cloudflare import CloudflareConfig

        return CloudflareConfig(
            api_token=self.cloudflare.api_token,
            account_id=self.cloudflare.account_id,
            zone_id=self.cloudflare.zone_id,
            api_base=self.cloudflare.api_base,
        )


def resolve_theme_dir(site_root: Path, config: SiteConfig) -> Path | None:
    """Directory of the configured theme, or None when no theme is set.

    A configured theme that does not exist on disk is logged and ignored,
    which is the usual state of a fresh clone without submodules.
    """
    if not config.theme:
        return None
    theme_dir = site_root / config.build.themes_dir / config.theme
    if not theme_dir.is_dir():
        logger.warning(
            "Theme %r not found at %s (is the submodule checked out?)", config.theme, theme_dir
        )
        return None
    return theme_dir


def find_config_file(site_root: Path) -> Path | None:
    """Return the first config file present in ``site_root``."""
    for name in CONFIG_FILENAMES:
        candidate = site_root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(site_root: str | Path = ".", path: str | Path | None = None) -> SiteConfig:
    """Load site configuration.

    Search order:
    1. Explicit path (if provided)
    2. sitekit.toml in the site root
    3. config.toml in the site root

    Then overlay environment variables.

    Args:
        site_root: Directory containing the site.
        path: Explicit path to a TOML file.

    Returns:
        Merged SiteConfig.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    root = Path(site_root)
    data: dict[str, Any] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        candidate = find_config_file(root)
        if candidate is not None:
            data = _load_toml(candidate)
            logger.debug("Loaded config from %s", candidate)

    try:
        config = SiteConfig.model_validate(data) if data else SiteConfig()
    except ValidationError as exc:
        raise ConfigError(f"Invalid site configuration: {exc}") from exc

    return _apply_env_vars(config)


def merge_cli_overrides(config: SiteConfig, **cli_kwargs: object) -> SiteConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, ...]] = {
        "base_url": ("base_url",),
        "output_dir": ("build", "output_dir"),
        "build_drafts": ("build", "build_drafts"),
        "build_future": ("build", "build_future"),
        "theme": ("theme",),
    }

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        _set_path(data, mapping[key], value)

    return SiteConfig.model_validate(data)


def _set_path(data: dict[str, Any], keys: tuple[str, ...], value: object) -> None:
    target = data
    for key in keys[:-1]:
        target = target[key]
    target[keys[-1]] = value


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc


def _apply_env_vars(config: SiteConfig) -> SiteConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, ...]] = {
        "CLOUDFLARE_API_TOKEN": ("cloudflare", "api_token"),
        "CLOUDFLARE_ACCOUNT_ID": ("cloudflare", "account_id"),
        "CLOUDFLARE_ZONE_ID": ("cloudflare", "zone_id"),
        "SITEKIT_BASE_URL": ("base_url",),
        "SITEKIT_OUTPUT_DIR": ("build", "output_dir"),
    }

    for env_var, keys in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_path(data, keys, value)

    return SiteConfig.model_validate(data)
