"""Cloudflare integration: config and API client.

Covers the two resource families the site needs: DNS records in a zone
and a Pages project in an account.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from pydantic import BaseModel, Field

from sitekit.errors import CloudflareAPIError, CloudflareAuthError, ConfigError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


class CloudflareConfig(BaseModel):
    """Credentials and scope for Cloudflare API calls."""

    api_token: str = Field(default="", repr=False)
    account_id: str = ""
    zone_id: str = ""
    api_base: str = DEFAULT_API_BASE
    timeout: float = 30.0


class CloudflareAPIClient:
    """Client for the Cloudflare v4 REST API.

    Authenticates with a bearer API token and unwraps the
    ``{"success", "errors", "result"}`` envelope via urllib.
    """

    def __init__(self, config: CloudflareConfig) -> None:
        """Raises ConfigError if the token, zone id or account id is missing."""
        if not config.api_token:
            raise ConfigError("Cloudflare API token is not set (CLOUDFLARE_API_TOKEN)")
        if not config.zone_id:
            raise ConfigError("Cloudflare zone id is not set (CLOUDFLARE_ZONE_ID)")
        if not config.account_id:
            raise ConfigError("Cloudflare account id is not set (CLOUDFLARE_ACCOUNT_ID)")
        self.config = config
        self.base_url = config.api_base.rstrip("/")

    # ── Transport ───────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        data: dict | None = None,
        query: dict[str, Any] | None = None,
    ) -> dict:
        """Make an authenticated request and return the response envelope."""
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"

        body = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url,
            data=body,
            method=method,
            headers={
                "Authorization": f"Bearer {self.config.api_token}",
                "Content-Type": "application/json",
            },
        )
        logger.debug("%s %s", method, url)

        try:
            with urllib.request.urlopen(req, timeout=self.config.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            errors = _error_details(exc)
            if exc.code in (401, 403):
                raise CloudflareAuthError(exc.code, errors) from exc
            raise CloudflareAPIError(exc.code, errors) from exc
        except urllib.error.URLError as exc:
            raise CloudflareAPIError(
                0, message=f"Cannot reach {self.base_url}: {exc.reason}"
            ) from exc

        if not payload.get("success", False):
            raise CloudflareAPIError(200, payload.get("errors") or [])
        return payload

    def _zone_path(self, suffix: str = "") -> str:
        return f"/zones/{self.config.zone_id}{suffix}"

    def _pages_path(self, suffix: str = "") -> str:
        return f"/accounts/{self.config.account_id}/pages/projects{suffix}"

    # ── Tokens ──────────────────────────────────────────────────

    def verify_token(self) -> dict:
        """Check that the token is valid and active."""
        return self._request("GET", "/user/tokens/verify")["result"]

    # ── DNS records ─────────────────────────────────────────────

    def list_dns_records(
        self, name: str | None = None, type: str | None = None
    ) -> list[dict]:
        """List DNS records in the zone, following pagination."""
        query: dict[str, Any] = {"per_page": 100}
        if name:
            query["name"] = name
        if type:
            query["type"] = type

        records: list[dict] = []
        page = 1
        while True:
            query["page"] = page
            payload = self._request("GET", self._zone_path("/dns_records"), query=query)
            records.extend(payload.get("result") or [])
            info = payload.get("result_info") or {}
            if page >= int(info.get("total_pages", 1) or 1):
                return records
            page += 1

    def get_dns_record(self, record_id: str) -> dict | None:
        """Fetch one record, or None if it no longer exists."""
        try:
            return self._request("GET", self._zone_path(f"/dns_records/{record_id}"))["result"]
        except CloudflareAPIError as exc:
            if exc.status == 404:
                return None
            raise

    def create_dns_record(self, record: dict) -> dict:
        return self._request("POST", self._zone_path("/dns_records"), record)["result"]

    def update_dns_record(self, record_id: str, record: dict) -> dict:
        return self._request(
            "PUT", self._zone_path(f"/dns_records/{record_id}"), record
        )["result"]

    def delete_dns_record(self, record_id: str) -> None:
        self._request("DELETE", self._zone_path(f"/dns_records/{record_id}"))

    # ── Pages projects ──────────────────────────────────────────

    def get_pages_project(self, name: str) -> dict | None:
        """Fetch a Pages project, or None if it does not exist."""
        try:
            return self._request("GET", self._pages_path(f"/{name}"))["result"]
        except CloudflareAPIError as exc:
            if exc.status == 404:
                return None
            raise

    def create_pages_project(self, project: dict) -> dict:
        return self._request("POST", self._pages_path(), project)["result"]

    def update_pages_project(self, name: str, project: dict) -> dict:
        return self._request("PATCH", self._pages_path(f"/{name}"), project)["result"]

    def delete_pages_project(self, name: str) -> None:
        self._request("DELETE", self._pages_path(f"/{name}"))


def _error_details(exc: urllib.error.HTTPError) -> list[dict]:
    """Error list from an HTTP error body, when it carries the API envelope."""
    try:
        payload = json.loads(exc.read().decode("utf-8"))
    except (ValueError, OSError):
        return []
    if isinstance(payload, dict):
        return list(payload.get("errors") or [])
    return []
