"""Shared fixtures: an in-memory compute API and fast retry policies."""

from __future__ import annotations

import copy
import itertools
import threading
import time
from typing import Any

import pytest

from scaleway_reconciler.api.models import IP, SecurityGroupRule, Server, Volume
from scaleway_reconciler.config import RetryConfig, StateWaitConfig
from scaleway_reconciler.engine.retry import RetryPolicy
from scaleway_reconciler.engine.serializer import MutationSerializer
from scaleway_reconciler.exceptions import APIError, NotFoundError

MUTATING = frozenset({
    "post_server", "patch_server", "delete_server", "server_action",
    "post_volume", "delete_volume",
    "post_ip", "attach_ip", "detach_ip", "delete_ip",
    "patch_user_data", "delete_user_data",
    "post_security_group_rule", "delete_security_group_rule",
})


class FakeComputeAPI:
    """In-memory stand-in for the compute API.

    Records every call, lets tests queue failures per method, and tracks how
    many mutating calls were ever in flight at the same time.
    """

    def __init__(self, mutation_delay: float = 0.0):
        self.servers: dict[str, dict[str, Any]] = {}
        self.volumes: dict[str, dict[str, Any]] = {}
        self.ips: dict[str, dict[str, Any]] = {}
        self.user_data: dict[str, dict[str, str]] = {}
        self.rules: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, list[Exception]] = {}
        self.power_on_state = "running"
        self.max_concurrent_mutations = 0
        self._mutation_delay = mutation_delay
        self._in_flight = 0
        self._guard = threading.Lock()
        self._ids = itertools.count(1)

    # ── Test helpers ────────────────────────────────────────────────

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def add_ip(self, address: str, server_id: str | None = None) -> str:
        ip_id = self._new_id("ip")
        self.ips[ip_id] = {"id": ip_id, "address": address, "server": self._server_ref(server_id)}
        return ip_id

    def add_rule(self, security_group: str) -> None:
        self.rules.setdefault(security_group, {})

    def mutating_calls(self) -> list[tuple[str, tuple]]:
        return [c for c in self.calls if c[0] in MUTATING]

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _server_ref(self, server_id: str | None) -> dict[str, str] | None:
        if server_id is None:
            return None
        return {"id": server_id, "name": self.servers.get(server_id, {}).get("name", "")}

    def _enter(self, method: str, *args: Any) -> None:
        with self._guard:
            self.calls.append((method, args))
            queued = self.failures.get(method)
            if queued:
                raise queued.pop(0)
            if method in MUTATING:
                self._in_flight += 1
                self.max_concurrent_mutations = max(self.max_concurrent_mutations, self._in_flight)
        if method in MUTATING and self._mutation_delay:
            time.sleep(self._mutation_delay)

    def _exit(self, method: str) -> None:
        if method in MUTATING:
            with self._guard:
                self._in_flight -= 1

    def _server(self, server_id: str) -> dict[str, Any]:
        if server_id not in self.servers:
            raise NotFoundError(f"server {server_id} not found")
        return self.servers[server_id]

    def _ip(self, ip_id: str) -> dict[str, Any]:
        if ip_id not in self.ips:
            raise NotFoundError(f"ip {ip_id} not found")
        return self.ips[ip_id]

    def _sync_public_ip(self, server_id: str) -> None:
        server = self.servers.get(server_id)
        if server is None:
            return
        attached = [ip for ip in self.ips.values() if ip["server"] and ip["server"]["id"] == server_id]
        server["public_ip"] = {"id": attached[0]["id"], "address": attached[0]["address"]} if attached else None

    # ── Servers ─────────────────────────────────────────────────────

    def get_server(self, server_id: str) -> Server:
        self._enter("get_server", server_id)
        return Server.from_api(copy.deepcopy(self._server(server_id)))

    def post_server(self, definition: dict[str, Any]) -> Server:
        self._enter("post_server", definition)
        try:
            server_id = self._new_id("srv")
            root_id = self._new_id("vol")
            self.volumes[root_id] = {"id": root_id, "name": "root", "size": 20 * 10**9, "volume_type": "l_ssd"}
            volumes = {"0": copy.deepcopy(self.volumes[root_id])}
            for slot, volume_id in (definition.get("volumes") or {}).items():
                volumes[slot] = copy.deepcopy(self.volumes[volume_id])
            group = definition.get("security_group")
            self.servers[server_id] = {
                "id": server_id,
                "name": definition["name"],
                "image": {"id": definition["image"]},
                "commercial_type": definition["commercial_type"],
                "state": "stopped",
                "state_detail": "",
                "enable_ipv6": definition.get("enable_ipv6", False),
                "dynamic_ip_required": definition.get("dynamic_ip_required", False),
                "private_ip": "10.1.0.%d" % len(self.servers),
                "public_ip": None,
                "ipv6": {"address": "2001:db8::%d" % len(self.servers)} if definition.get("enable_ipv6") else None,
                "bootscript": {"id": definition["bootscript"]} if definition.get("bootscript") else None,
                "security_group": {"id": group} if group else None,
                "tags": list(definition.get("tags") or []),
                "volumes": volumes,
            }
            self.user_data[server_id] = {}
            return Server.from_api(copy.deepcopy(self.servers[server_id]))
        finally:
            self._exit("post_server")

    def patch_server(self, server_id: str, changes: dict[str, Any]) -> None:
        self._enter("patch_server", server_id, changes)
        try:
            server = self._server(server_id)
            for key, value in changes.items():
                server[key] = value
            if "enable_ipv6" in changes:
                server["ipv6"] = {"address": "2001:db8::ff"} if changes["enable_ipv6"] else None
        finally:
            self._exit("patch_server")

    def delete_server(self, server_id: str) -> None:
        self._enter("delete_server", server_id)
        try:
            self._server(server_id)
            del self.servers[server_id]
            self.user_data.pop(server_id, None)
        finally:
            self._exit("delete_server")

    def server_action(self, server_id: str, action: str) -> None:
        self._enter("server_action", server_id, action)
        try:
            server = self._server(server_id)
            if action == "poweron":
                server["state"] = self.power_on_state
            elif action == "poweroff":
                server["state"] = "stopped"
            elif action == "terminate":
                for volume in server["volumes"].values():
                    self.volumes.pop(volume["id"], None)
                for ip in self.ips.values():
                    if ip["server"] and ip["server"]["id"] == server_id:
                        ip["server"] = None
                del self.servers[server_id]
                self.user_data.pop(server_id, None)
            else:
                raise APIError(f"unknown action {action}", status_code=400)
        finally:
            self._exit("server_action")

    # ── Volumes ─────────────────────────────────────────────────────

    def post_volume(self, definition: dict[str, Any]) -> Volume:
        self._enter("post_volume", definition)
        try:
            volume_id = self._new_id("vol")
            self.volumes[volume_id] = {
                "id": volume_id,
                "name": definition["name"],
                "size": definition["size"],
                "volume_type": definition["volume_type"],
            }
            return Volume.from_api(self.volumes[volume_id])
        finally:
            self._exit("post_volume")

    def delete_volume(self, volume_id: str) -> None:
        self._enter("delete_volume", volume_id)
        try:
            if self.volumes.pop(volume_id, None) is None:
                raise NotFoundError(f"volume {volume_id} not found")
        finally:
            self._exit("delete_volume")

    # ── IPs ─────────────────────────────────────────────────────────

    def get_ips(self) -> list[IP]:
        self._enter("get_ips")
        return [IP.from_api(copy.deepcopy(ip)) for ip in self.ips.values()]

    def get_ip(self, ip_id: str) -> IP:
        self._enter("get_ip", ip_id)
        return IP.from_api(copy.deepcopy(self._ip(ip_id)))

    def post_ip(self) -> IP:
        self._enter("post_ip")
        try:
            ip_id = self._new_id("ip")
            self.ips[ip_id] = {"id": ip_id, "address": "51.15.0.%d" % len(self.ips), "server": None}
            return IP.from_api(copy.deepcopy(self.ips[ip_id]))
        finally:
            self._exit("post_ip")

    def attach_ip(self, ip_id: str, server_id: str) -> None:
        self._enter("attach_ip", ip_id, server_id)
        try:
            ip = self._ip(ip_id)
            self._server(server_id)
            previous = ip["server"]["id"] if ip["server"] else None
            ip["server"] = self._server_ref(server_id)
            if previous:
                self._sync_public_ip(previous)
            self._sync_public_ip(server_id)
        finally:
            self._exit("attach_ip")

    def detach_ip(self, ip_id: str) -> None:
        self._enter("detach_ip", ip_id)
        try:
            ip = self._ip(ip_id)
            previous = ip["server"]["id"] if ip["server"] else None
            ip["server"] = None
            if previous:
                self._sync_public_ip(previous)
        finally:
            self._exit("detach_ip")

    def delete_ip(self, ip_id: str) -> None:
        self._enter("delete_ip", ip_id)
        try:
            self._ip(ip_id)
            del self.ips[ip_id]
        finally:
            self._exit("delete_ip")

    # ── User data ───────────────────────────────────────────────────

    def get_user_data_keys(self, server_id: str) -> list[str]:
        self._enter("get_user_data_keys", server_id)
        self._server(server_id)
        return sorted(self.user_data.get(server_id, {}))

    def get_user_data(self, server_id: str, key: str) -> str:
        self._enter("get_user_data", server_id, key)
        data = self.user_data.get(server_id, {})
        if key not in data:
            raise NotFoundError(f"user data {key} not found")
        return data[key]

    def patch_user_data(self, server_id: str, key: str, value: str) -> None:
        self._enter("patch_user_data", server_id, key, value)
        try:
            self._server(server_id)
            self.user_data.setdefault(server_id, {})[key] = value
        finally:
            self._exit("patch_user_data")

    def delete_user_data(self, server_id: str, key: str) -> None:
        self._enter("delete_user_data", server_id, key)
        try:
            self.user_data.get(server_id, {}).pop(key, None)
        finally:
            self._exit("delete_user_data")

    # ── Security group rules ────────────────────────────────────────

    def get_security_group_rule(self, security_group: str, rule_id: str) -> SecurityGroupRule:
        self._enter("get_security_group_rule", security_group, rule_id)
        rule = self.rules.get(security_group, {}).get(rule_id)
        if rule is None:
            raise NotFoundError(f"rule {rule_id} not found")
        return SecurityGroupRule.from_api(security_group, copy.deepcopy(rule))

    def post_security_group_rule(self, security_group: str, definition: dict[str, Any]) -> SecurityGroupRule:
        self._enter("post_security_group_rule", security_group, definition)
        try:
            if security_group not in self.rules:
                raise NotFoundError(f"security group {security_group} not found")
            rule_id = self._new_id("rule")
            self.rules[security_group][rule_id] = {"id": rule_id, **definition}
            return SecurityGroupRule.from_api(security_group, copy.deepcopy(self.rules[security_group][rule_id]))
        finally:
            self._exit("post_security_group_rule")

    def delete_security_group_rule(self, security_group: str, rule_id: str) -> None:
        self._enter("delete_security_group_rule", security_group, rule_id)
        try:
            if rule_id not in self.rules.get(security_group, {}):
                raise NotFoundError(f"rule {rule_id} not found")
            del self.rules[security_group][rule_id]
        finally:
            self._exit("delete_security_group_rule")


@pytest.fixture
def fake_api():
    return FakeComputeAPI()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry(sleeps):
    return RetryPolicy(
        RetryConfig(max_attempts=4, base_delay_seconds=1.0, backoff_factor=2.0, max_delay_seconds=10.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def wait(sleeps):
    return RetryPolicy(StateWaitConfig(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0), sleep=sleeps.append)


@pytest.fixture
def serializer():
    return MutationSerializer()
