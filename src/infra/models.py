"""Pure data models for hosting infrastructure.

Desired resources, recorded state, and plans. No I/O; the API calls and
state file handling live in ``sitekit.infra.services``.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Desired resources
# ---------------------------------------------------------------------------


class ResourceType(StrEnum):
    """Kinds of managed resources, named as their state addresses are prefixed."""

    DNS_RECORD = "cloudflare_record"
    PAGES_PROJECT = "cloudflare_pages_project"


class DnsRecordSpec(BaseModel):
    """A DNS record in the site's zone."""

    name: str
    type: str = "CNAME"
    content: str
    proxied: bool = True
    ttl: int = 1

    def attributes(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "content": self.content,
            "proxied": self.proxied,
            "ttl": self.ttl,
        }

    def to_api(self) -> dict[str, Any]:
        return self.attributes()


class PagesProjectSpec(BaseModel):
    """A Cloudflare Pages project built from the site's repository."""

    name: str
    production_branch: str = "main"
    build_command: str = ""
    destination_dir: str = "public"
    root_dir: str = ""
    source_type: str = "github"
    repo_owner: str = ""
    repo_name: str = ""
    production_env: dict[str, str] = Field(default_factory=dict)
    preview_env: dict[str, str] = Field(default_factory=dict)

    @property
    def subdomain(self) -> str:
        return f"{self.name}.pages.dev"

    def environments(self) -> list[tuple[str, dict[str, str]]]:
        return [("production", self.production_env), ("preview", self.preview_env)]

    @property
    def has_source(self) -> bool:
        return bool(self.repo_owner and self.repo_name)

    def attributes(self) -> dict[str, Any]:
        """Flat, comparable view of the project."""
        attrs: dict[str, Any] = {
            "name": self.name,
            "production_branch": self.production_branch,
            "build_config.build_command": self.build_command,
            "build_config.destination_dir": self.destination_dir,
            "build_config.root_dir": self.root_dir,
        }
        if self.has_source:
            attrs["source.type"] = self.source_type
            attrs["source.owner"] = self.repo_owner
            attrs["source.repo_name"] = self.repo_name
        for env_name, variables in self.environments():
            for key, value in variables.items():
                attrs[f"env.{env_name}.{key}"] = value
        return attrs

    def to_api(self, remove_env: dict[str, list[str]] | None = None) -> dict[str, Any]:
        """Request body for create and update.

        Args:
            remove_env: Per-environment variable names to clear; the API
                deletes a variable when it is sent as null.
        """
        remove_env = remove_env or {}
        deployment_configs: dict[str, Any] = {}
        for env_name, variables in self.environments():
            env_vars: dict[str, Any] = {
                key: {"type": "plain_text", "value": value} for key, value in variables.items()
            }
            for key in remove_env.get(env_name, []):
                env_vars.setdefault(key, None)
            deployment_configs[env_name] = {"env_vars": env_vars}

        body: dict[str, Any] = {
            "name": self.name,
            "production_branch": self.production_branch,
            "build_config": {
                "build_command": self.build_command,
                "destination_dir": self.destination_dir,
                "root_dir": self.root_dir,
            },
            "deployment_configs": deployment_configs,
        }
        if self.has_source:
            body["source"] = {
                "type": self.source_type,
                "config": {
                    "owner": self.repo_owner,
                    "repo_name": self.repo_name,
                    "production_branch": self.production_branch,
                    "deployments_enabled": True,
                    "pr_comments_enabled": True,
                },
            }
        return body


class Resource(BaseModel):
    """A desired resource and the state address it is tracked under."""

    address: str
    type: ResourceType
    spec: PagesProjectSpec | DnsRecordSpec

    def attributes(self) -> dict[str, Any]:
        return self.spec.attributes()


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class ResourceState(BaseModel):
    """What was last applied for one address."""

    address: str
    type: ResourceType
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None


class InfraState(BaseModel):
    """Tracks the remote objects this site manages, keyed by address."""

    version: int = 1
    resources: dict[str, ResourceState] = Field(default_factory=dict)

    def get(self, address: str) -> ResourceState | None:
        return self.resources.get(address)

    def record(self, entry: ResourceState) -> None:
        self.resources[entry.address] = entry

    def forget(self, address: str) -> None:
        self.resources.pop(address, None)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class ChangeAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


_ACTION_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DELETE: "-",
    ChangeAction.NOOP: " ",
}


class Change(BaseModel):
    """One planned action against one address."""

    address: str
    type: ResourceType
    action: ChangeAction
    remote_id: str = ""
    before: dict[str, Any] = Field(default_factory=dict)
    after: dict[str, Any] = Field(default_factory=dict)
    resource: Resource | None = None

    @property
    def symbol(self) -> str:
        return _ACTION_SYMBOLS[self.action]

    def diff(self) -> dict[str, tuple[Any, Any]]:
        """Fields whose value differs, as (before, after)."""
        keys = sorted(self.before.keys() | self.after.keys())
        return {
            k: (self.before.get(k), self.after.get(k))
            for k in keys
            if self.before.get(k) != self.after.get(k)
        }


class Plan(BaseModel):
    """Ordered changes that bring the remote side to the desired state."""

    changes: list[Change] = Field(default_factory=list)
    stale_addresses: list[str] = Field(default_factory=list)

    def count(self, action: ChangeAction) -> int:
        return sum(1 for c in self.changes if c.action is action)

    @property
    def has_changes(self) -> bool:
        return any(c.action is not ChangeAction.NOOP for c in self.changes)

    def summary(self) -> str:
        return (
            f"{self.count(ChangeAction.CREATE)} to add, "
            f"{self.count(ChangeAction.UPDATE)} to change, "
            f"{self.count(ChangeAction.DELETE)} to destroy"
        )


class ApplyResult(BaseModel):
    """Changes applied, in execution order."""

    applied: list[Change] = Field(default_factory=list)

    def summary(self) -> str:
        added = sum(1 for c in self.applied if c.action is ChangeAction.CREATE)
        changed = sum(1 for c in self.applied if c.action is ChangeAction.UPDATE)
        destroyed = sum(1 for c in self.applied if c.action is ChangeAction.DELETE)
        return f"{added} added, {changed} changed, {destroyed} destroyed"
