"""Hosting infrastructure: Cloudflare DNS records and the Pages project."""

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
from sitekit.infra.services import (
    apply,
    desired_resources,
    load_infra_state,
    plan,
    save_infra_state,
)

__all__ = [
    "ApplyResult",
    "Change",
    "ChangeAction",
    "DnsRecordSpec",
    "InfraState",
    "PagesProjectSpec",
    "Plan",
    "Resource",
    "ResourceState",
    "ResourceType",
    "apply",
    "desired_resources",
    "load_infra_state",
    "plan",
    "save_infra_state",
]
