"""Planning and applying the site's Cloudflare resources.

Contains everything that performs I/O for infrastructure: the state
file and calls through ``CloudflareAPIClient``. Imports models from
``sitekit.infra.models``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sitekit.config import SiteConfig
from sitekit.errors import ConfigError
from sitekit.infra.models import (
    ApplyResult,
    Change,
    ChangeAction,
    DnsRecordSpec,
    InfraState,
    PagesProjectSpec,
    Plan,
    Resource,
    ResourceState,
    ResourceType,
)
from sitekit.integrations.cloudflare import CloudflareAPIClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STATE_DIRNAME = ".sitekit"
STATE_FILENAME = "infra-state.json"

PAGES_ADDRESS = "cloudflare_pages_project.site"
ROOT_RECORD_ADDRESS = "cloudflare_record.root"
WWW_RECORD_ADDRESS = "cloudflare_record.www"


# ---------------------------------------------------------------------------
# State I/O
# ---------------------------------------------------------------------------


def state_path(site_root: Path) -> Path:
    return site_root / STATE_DIRNAME / STATE_FILENAME


def load_infra_state(site_root: Path) -> InfraState:
    """Load infra state from disk.

    Returns empty InfraState if file doesn't exist or is corrupt.
    """
    path = state_path(site_root)
    if not path.exists():
        return InfraState()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return InfraState.model_validate(data)
    except (json.JSONDecodeError, ValueError, KeyError):
        logger.warning("Corrupt infra state at %s, starting fresh", path)
        return InfraState()


def save_infra_state(state: InfraState, site_root: Path) -> None:
    """Save infra state to disk."""
    path = state_path(site_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(state.model_dump_json(indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# Desired state
# ---------------------------------------------------------------------------


def desired_resources(config: SiteConfig) -> list[Resource]:
    """Resources the site should have, Pages project first.

    Raises:
        ConfigError: If the domain or Pages project name is missing.
    """
    cf = config.cloudflare
    if not cf.domain:
        raise ConfigError("cloudflare.domain is not set")
    if not cf.pages.project_name:
        raise ConfigError("cloudflare.pages.project_name is not set")

    pages = cf.pages
    project = PagesProjectSpec(
        name=pages.project_name,
        production_branch=pages.production_branch,
        build_command=pages.build_command,
        destination_dir=pages.destination_dir,
        root_dir=pages.root_dir,
        source_type=pages.source_type,
        repo_owner=pages.repo_owner,
        repo_name=pages.repo_name,
        production_env=dict(pages.production_env),
        preview_env=dict(pages.preview_env),
    )
    resources = [
        Resource(address=PAGES_ADDRESS, type=ResourceType.PAGES_PROJECT, spec=project),
    ]

    domain = cf.domain.rstrip(".").lower()
    target = cf.cname_target
    record_names = [(ROOT_RECORD_ADDRESS, domain)]
    if cf.dns.include_www:
        record_names.append((WWW_RECORD_ADDRESS, f"www.{domain}"))
    for address, name in record_names:
        record = DnsRecordSpec(
            name=name,
            type="CNAME",
            content=target,
            proxied=cf.dns.proxied,
            ttl=cf.dns.ttl,
        )
        resources.append(Resource(address=address, type=ResourceType.DNS_RECORD, spec=record))
    return resources


# ---------------------------------------------------------------------------
# Remote → comparable attributes
# ---------------------------------------------------------------------------


def dns_attributes(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": record.get("name", ""),
        "type": record.get("type", ""),
        "content": record.get("content", ""),
        "proxied": bool(record.get("proxied", False)),
        "ttl": int(record.get("ttl", 1)),
    }


def pages_attributes(project: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Pages project response the way ``PagesProjectSpec.attributes`` does."""
    build = project.get("build_config") or {}
    attrs: dict[str, Any] = {
        "name": project.get("name", ""),
        "production_branch": project.get("production_branch", ""),
        "build_config.build_command": build.get("build_command") or "",
        "build_config.destination_dir": build.get("destination_dir") or "",
        "build_config.root_dir": build.get("root_dir") or "",
    }
    source = project.get("source")
    if source:
        source_config = source.get("config") or {}
        attrs["source.type"] = source.get("type", "")
        attrs["source.owner"] = source_config.get("owner", "")
        attrs["source.repo_name"] = source_config.get("repo_name", "")
    deployment_configs = project.get("deployment_configs") or {}
    for env_name in ("production", "preview"):
        env_vars = (deployment_configs.get(env_name) or {}).get("env_vars") or {}
        for key, var in env_vars.items():
            if var is None:
                continue
            attrs[f"env.{env_name}.{key}"] = var.get("value", "")
    return attrs


def _comparable(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """Remote attributes restricted to what the desired side can express.

    Source settings are only compared when the desired project declares
    a source; everything else (including extra env vars) is compared.
    """
    if "source.type" in after:
        return before
    return {k: v for k, v in before.items() if not k.startswith("source.")}


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


def _find_dns_record(
    client: CloudflareAPIClient, spec: DnsRecordSpec, tracked: ResourceState | None
) -> dict | None:
    if tracked is not None:
        record = client.get_dns_record(tracked.id)
        if record is not None:
            return record
        logger.info("Tracked record %s no longer exists", tracked.id)
    matches = client.list_dns_records(name=spec.name, type=spec.type)
    return matches[0] if matches else None


def _plan_resource(
    resource: Resource, client: CloudflareAPIClient, state: InfraState
) -> Change:
    tracked = state.get(resource.address)
    after = resource.attributes()

    if isinstance(resource.spec, PagesProjectSpec):
        if tracked is not None and tracked.id != resource.spec.name:
            logger.warning(
                "%s was tracked as project %r; it will no longer be managed",
                resource.address,
                tracked.id,
            )
        remote = client.get_pages_project(resource.spec.name)
        remote_id = resource.spec.name
        before = _comparable(pages_attributes(remote), after) if remote is not None else {}
    else:
        remote = _find_dns_record(client, resource.spec, tracked)
        remote_id = remote.get("id", "") if remote is not None else ""
        before = dns_attributes(remote) if remote is not None else {}

    if remote is None:
        action = ChangeAction.CREATE
        remote_id = ""
    elif before != after:
        action = ChangeAction.UPDATE
    else:
        action = ChangeAction.NOOP

    return Change(
        address=resource.address,
        type=resource.type,
        action=action,
        remote_id=remote_id,
        before=before,
        after=after,
        resource=resource,
    )


def _plan_removal(
    tracked: ResourceState, client: CloudflareAPIClient
) -> Change | None:
    """Delete change for an address that is no longer desired, if it still exists."""
    if tracked.type is ResourceType.PAGES_PROJECT:
        remote = client.get_pages_project(tracked.id)
        before = pages_attributes(remote) if remote is not None else {}
    else:
        remote = client.get_dns_record(tracked.id)
        before = dns_attributes(remote) if remote is not None else {}
    if remote is None:
        return None
    return Change(
        address=tracked.address,
        type=tracked.type,
        action=ChangeAction.DELETE,
        remote_id=tracked.id,
        before=before,
    )


def plan(
    desired: list[Resource], client: CloudflareAPIClient, state: InfraState
) -> Plan:
    """Compare desired resources against Cloudflare and recorded state.

    Remote objects are found by the id recorded in state, else adopted by
    natural key (record name and type, project name).
    """
    result = Plan()
    for resource in desired:
        result.changes.append(_plan_resource(resource, client, state))

    desired_addresses = {r.address for r in desired}
    for address, tracked in sorted(state.resources.items()):
        if address in desired_addresses:
            continue
        change = _plan_removal(tracked, client)
        if change is None:
            result.stale_addresses.append(address)
        else:
            result.changes.append(change)

    logger.info("Plan: %s", result.summary())
    return result


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


def _removed_env(change: Change) -> dict[str, list[str]]:
    removed: dict[str, list[str]] = {}
    for key in change.before:
        if key.startswith("env.") and key not in change.after:
            _, env_name, var = key.split(".", 2)
            removed.setdefault(env_name, []).append(var)
    return removed


def _apply_change(change: Change, client: CloudflareAPIClient) -> str:
    """Execute one change; returns the remote id of the affected object."""
    spec = change.resource.spec if change.resource is not None else None

    if change.action is ChangeAction.DELETE:
        if change.type is ResourceType.PAGES_PROJECT:
            client.delete_pages_project(change.remote_id)
        else:
            client.delete_dns_record(change.remote_id)
        return change.remote_id

    if isinstance(spec, PagesProjectSpec):
        if change.action is ChangeAction.CREATE:
            client.create_pages_project(spec.to_api())
        else:
            client.update_pages_project(spec.name, spec.to_api(remove_env=_removed_env(change)))
        return spec.name

    if isinstance(spec, DnsRecordSpec):
        if change.action is ChangeAction.CREATE:
            created = client.create_dns_record(spec.to_api())
            return created["id"]
        client.update_dns_record(change.remote_id, spec.to_api())
        return change.remote_id

    raise ValueError(f"Nothing to apply for {change.address}")


def apply(
    plan_: Plan,
    client: CloudflareAPIClient,
    state: InfraState,
    save: Callable[[InfraState], None] | None = None,
) -> ApplyResult:
    """Execute a plan: creates, then updates, then deletes, each in plan order.

    Plan order puts the Pages project ahead of the DNS records, so a new
    project exists before the records that point at it.

    State is updated (and ``save`` called) after every successful change,
    so a failure part-way keeps a record of what was applied. The first
    API error is re-raised.
    """
    result = ApplyResult()

    for address in plan_.stale_addresses:
        state.forget(address)
    if plan_.stale_addresses and save is not None:
        save(state)

    pending = [
        change
        for action in (ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.DELETE)
        for change in plan_.changes
        if change.action is action
    ]

    for change in pending:
        logger.info("%s %s", change.action.value.capitalize(), change.address)
        remote_id = _apply_change(change, client)

        if change.action is ChangeAction.DELETE:
            state.forget(change.address)
        else:
            state.record(
                ResourceState(
                    address=change.address,
                    type=change.type,
                    id=remote_id,
                    attributes=change.after,
                    updated_at=datetime.now(tz=UTC),
                )
            )
        if save is not None:
            save(state)
        result.applied.append(change)

    # Adopted resources that needed no change still get tracked.
    for change in plan_.changes:
        if change.action is not ChangeAction.NOOP:
            continue
        tracked = state.get(change.address)
        if tracked is None or tracked.id != change.remote_id:
            state.record(
                ResourceState(
                    address=change.address,
                    type=change.type,
                    id=change.remote_id,
                    attributes=change.after,
                    updated_at=datetime.now(tz=UTC),
                )
            )
            if save is not None:
                save(state)

    logger.info("Apply complete: %s", result.summary())
    return result
