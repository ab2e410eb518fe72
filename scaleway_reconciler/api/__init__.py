"""Compute API package: gateway Protocol and public exports."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import IP, SecurityGroupRule, Server, Volume


@runtime_checkable
class ComputeGateway(Protocol):
    """Typed operations the reconcilers issue against the provider.

    Every method raises an ``APIError`` subclass on failure; a 404 is
    surfaced as ``NotFoundError``.
    """

    # Servers
    def get_server(self, server_id: str) -> Server: ...
    def post_server(self, definition: dict[str, Any]) -> Server: ...
    def patch_server(self, server_id: str, changes: dict[str, Any]) -> None: ...
    def delete_server(self, server_id: str) -> None: ...
    def server_action(self, server_id: str, action: str) -> None: ...

    # Volumes
    def post_volume(self, definition: dict[str, Any]) -> Volume: ...
    def delete_volume(self, volume_id: str) -> None: ...

    # IPs
    def get_ips(self) -> list[IP]: ...
    def get_ip(self, ip_id: str) -> IP: ...
    def post_ip(self) -> IP: ...
    def attach_ip(self, ip_id: str, server_id: str) -> None: ...
    def detach_ip(self, ip_id: str) -> None: ...
    def delete_ip(self, ip_id: str) -> None: ...

    # User data
    def get_user_data_keys(self, server_id: str) -> list[str]: ...
    def get_user_data(self, server_id: str, key: str) -> str: ...
    def patch_user_data(self, server_id: str, key: str, value: str) -> None: ...
    def delete_user_data(self, server_id: str, key: str) -> None: ...

    # Security group rules
    def get_security_group_rule(self, security_group: str, rule_id: str) -> SecurityGroupRule: ...
    def post_security_group_rule(self, security_group: str, definition: dict[str, Any]) -> SecurityGroupRule: ...
    def delete_security_group_rule(self, security_group: str, rule_id: str) -> None: ...
