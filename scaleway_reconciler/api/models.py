"""Observed-state models built from compute API responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Volume:
    """A block volume as reported by the provider."""

    id: str
    size: int  # bytes
    volume_type: str
    name: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Volume:
        return cls(
            id=data["id"],
            size=int(data.get("size", 0)),
            volume_type=data.get("volume_type", ""),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class Server:
    """A server as reported by the provider."""

    id: str
    name: str
    image: str
    commercial_type: str
    state: str
    state_detail: str = ""
    enable_ipv6: bool = False
    dynamic_ip_required: bool = False
    private_ip: str | None = None
    public_ip: str | None = None
    public_ipv6: str | None = None
    bootscript: str | None = None
    security_group: str | None = None
    tags: tuple[str, ...] = ()
    # Keyed by the provider's slot index ("0" is the root volume)
    volumes: dict[str, Volume] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Server:
        public = data.get("public_ip") or {}
        ipv6 = data.get("ipv6") or {}
        image = data.get("image") or {}
        bootscript = data.get("bootscript") or {}
        group = data.get("security_group") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            image=image.get("id", ""),
            commercial_type=data.get("commercial_type", ""),
            state=data.get("state", ""),
            state_detail=data.get("state_detail", ""),
            enable_ipv6=bool(data.get("enable_ipv6", False)),
            dynamic_ip_required=bool(data.get("dynamic_ip_required", False)),
            private_ip=data.get("private_ip"),
            public_ip=public.get("address"),
            public_ipv6=ipv6.get("address"),
            bootscript=bootscript.get("id"),
            security_group=group.get("id"),
            tags=tuple(data.get("tags") or ()),
            volumes={
                slot: Volume.from_api(vol)
                for slot, vol in (data.get("volumes") or {}).items()
            },
        )


@dataclass(frozen=True)
class IP:
    """A reserved public IP; ``server_id`` is None while unattached."""

    id: str
    address: str
    server_id: str | None = None

    @property
    def attached(self) -> bool:
        return self.server_id is not None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> IP:
        server = data.get("server") or {}
        return cls(
            id=data["id"],
            address=data.get("address", ""),
            server_id=server.get("id"),
        )


@dataclass(frozen=True)
class SecurityGroupRule:
    """A single rule inside a security group."""

    id: str
    security_group: str
    action: str
    direction: str
    ip_range: str
    protocol: str
    port: int | None = None

    @classmethod
    def from_api(cls, security_group: str, data: dict[str, Any]) -> SecurityGroupRule:
        port = data.get("dest_port_from")
        return cls(
            id=data["id"],
            security_group=security_group,
            action=data.get("action", ""),
            direction=data.get("direction", ""),
            ip_range=data.get("ip_range", ""),
            protocol=data.get("protocol", ""),
            port=int(port) if port is not None else None,
        )
