"""REST client for the Scaleway compute API."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import APIConfig
from ..exceptions import APIError, ConflictError, NotFoundError
from .models import IP, SecurityGroupRule, Server, Volume

logger = logging.getLogger(__name__)


class ScalewayClient:
    """Thin wrapper around the compute API; satisfies ``ComputeGateway``."""

    def __init__(self, config: APIConfig):
        self._base = config.base_url.rstrip("/")
        self._organization = config.organization
        self._session = requests.Session()
        self._session.headers["X-Auth-Token"] = config.token
        self._session.headers["Content-Type"] = "application/json"
        self._session.verify = config.verify_ssl
        self._timeout = config.timeout

    @property
    def organization(self) -> str:
        return self._organization

    # ── Servers ─────────────────────────────────────────────────────

    def get_server(self, server_id: str) -> Server:
        resp = self._get(f"/servers/{server_id}")
        return Server.from_api(resp.json()["server"])

    def post_server(self, definition: dict[str, Any]) -> Server:
        body = {"organization": self._organization, **definition}
        resp = self._post("/servers", json=body)
        return Server.from_api(resp.json()["server"])

    def patch_server(self, server_id: str, changes: dict[str, Any]) -> None:
        self._patch(f"/servers/{server_id}", json=changes)

    def delete_server(self, server_id: str) -> None:
        self._delete(f"/servers/{server_id}")

    def server_action(self, server_id: str, action: str) -> None:
        """Run a lifecycle action: poweron, poweroff, reboot or terminate."""
        self._post(f"/servers/{server_id}/action", json={"action": action})

    # ── Volumes ─────────────────────────────────────────────────────

    def post_volume(self, definition: dict[str, Any]) -> Volume:
        body = {"organization": self._organization, **definition}
        resp = self._post("/volumes", json=body)
        return Volume.from_api(resp.json()["volume"])

    def delete_volume(self, volume_id: str) -> None:
        self._delete(f"/volumes/{volume_id}")

    # ── IPs ─────────────────────────────────────────────────────────

    def get_ips(self) -> list[IP]:
        resp = self._get("/ips")
        return [IP.from_api(raw) for raw in resp.json().get("ips", [])]

    def get_ip(self, ip_id: str) -> IP:
        resp = self._get(f"/ips/{ip_id}")
        return IP.from_api(resp.json()["ip"])

    def post_ip(self) -> IP:
        resp = self._post("/ips", json={"organization": self._organization})
        return IP.from_api(resp.json()["ip"])

    def attach_ip(self, ip_id: str, server_id: str) -> None:
        self._patch(f"/ips/{ip_id}", json={"server": server_id})

    def detach_ip(self, ip_id: str) -> None:
        self._patch(f"/ips/{ip_id}", json={"server": None})

    def delete_ip(self, ip_id: str) -> None:
        self._delete(f"/ips/{ip_id}")

    # ── User data ───────────────────────────────────────────────────

    def get_user_data_keys(self, server_id: str) -> list[str]:
        resp = self._get(f"/servers/{server_id}/user_data")
        return list(resp.json().get("user_data", []))

    def get_user_data(self, server_id: str, key: str) -> str:
        resp = self._get(f"/servers/{server_id}/user_data/{key}")
        return resp.text

    def patch_user_data(self, server_id: str, key: str, value: str) -> None:
        self._patch(
            f"/servers/{server_id}/user_data/{key}",
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )

    def delete_user_data(self, server_id: str, key: str) -> None:
        self._delete(f"/servers/{server_id}/user_data/{key}")

    # ── Security group rules ────────────────────────────────────────

    def get_security_group_rule(self, security_group: str, rule_id: str) -> SecurityGroupRule:
        resp = self._get(f"/security_groups/{security_group}/rules/{rule_id}")
        return SecurityGroupRule.from_api(security_group, resp.json()["rule"])

    def post_security_group_rule(self, security_group: str, definition: dict[str, Any]) -> SecurityGroupRule:
        resp = self._post(f"/security_groups/{security_group}/rules", json=definition)
        return SecurityGroupRule.from_api(security_group, resp.json()["rule"])

    def delete_security_group_rule(self, security_group: str, rule_id: str) -> None:
        self._delete(f"/security_groups/{security_group}/rules/{rule_id}")

    # ── Internal HTTP helpers ───────────────────────────────────────

    def _get(self, path: str, params: dict | None = None) -> requests.Response:
        return self._request("GET", path, params=params)

    def _post(self, path: str, json: Any = None) -> requests.Response:
        return self._request("POST", path, json=json)

    def _patch(self, path: str, **kwargs) -> requests.Response:
        return self._request("PATCH", path, **kwargs)

    def _delete(self, path: str) -> requests.Response:
        return self._request("DELETE", path)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self._base}{path}"
        kwargs.setdefault("timeout", self._timeout)
        logger.debug("%s %s", method, path)

        try:
            resp = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise APIError(f"Request failed: {exc}") from exc

        if resp.status_code == 404:
            raise NotFoundError(f"HTTP 404 on {method} {path}", response_body=resp.text)

        if resp.status_code == 409:
            raise ConflictError(f"HTTP 409 on {method} {path}: {resp.text}", response_body=resp.text)

        if resp.status_code >= 400:
            raise APIError(
                f"HTTP {resp.status_code} on {method} {path}: {resp.text}",
                status_code=resp.status_code,
                response_body=resp.text,
            )

        return resp
