"""Desired-state records and the reconciled state returned to callers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from ..config import ProviderConfig
from ..exceptions import ValidationError

GB = 1000 * 1000 * 1000

RULE_ACTIONS = ("accept", "drop")
RULE_DIRECTIONS = ("inbound", "outbound")
RULE_PROTOCOLS = ("TCP", "UDP", "ICMP")


def _require(data: dict[str, Any], key: str, what: str) -> Any:
    if key not in data or data[key] in (None, ""):
        raise ValidationError(f"{what}: '{key}' is required")
    return data[key]


def _as_bool(value: Any, key: str, what: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{what}: '{key}' must be a boolean, got {value!r}")


def _as_int(value: Any, key: str, what: str) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{what}: '{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{what}: '{key}' must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class VolumeSpec:
    """An additional volume, created together with its server."""

    size_in_gb: int
    type: str
    volume_id: str | None = None

    @property
    def size_bytes(self) -> int:
        return self.size_in_gb * GB

    def validate(self, provider: ProviderConfig = ProviderConfig()) -> None:
        if self.size_in_gb < 1:
            raise ValidationError(f"volume size_in_gb must be at least 1, got {self.size_in_gb}")
        if self.size_in_gb > provider.max_volume_size_gb:
            raise ValidationError(
                f"volume size_in_gb must be at most {provider.max_volume_size_gb}, got {self.size_in_gb}"
            )
        if self.type not in provider.volume_types:
            raise ValidationError(
                f"volume type {self.type!r} is not one of {', '.join(provider.volume_types)}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VolumeSpec:
        what = "volume"
        return cls(
            size_in_gb=_as_int(_require(data, "size_in_gb", what), "size_in_gb", what),
            type=str(_require(data, "type", what)),
            volume_id=data.get("volume_id"),
        )


@dataclass(frozen=True)
class ServerSpec:
    """Desired attributes of one server."""

    name: str
    image: str
    type: str
    tags: tuple[str, ...] = ()
    security_group: str | None = None
    volumes: tuple[VolumeSpec, ...] = ()
    enable_ipv6: bool = False
    dynamic_ip_required: bool = False
    public_ip: str | None = None
    user_data: dict[str, str] = field(default_factory=dict)
    state: str | None = None
    bootscript: str | None = None

    def validate(self, provider: ProviderConfig = ProviderConfig()) -> None:
        if not self.name:
            raise ValidationError("server: 'name' is required")
        if not self.image:
            raise ValidationError(f"server {self.name}: 'image' is required")
        if self.type not in provider.server_types:
            raise ValidationError(f"server {self.name}: type {self.type!r} is not a known commercial type")
        if self.state not in (None, "running", "stopped"):
            raise ValidationError(f"server {self.name}: state must be 'running' or 'stopped'")
        for volume in self.volumes:
            volume.validate(provider)

    def with_volumes(self, volumes: tuple[VolumeSpec, ...]) -> ServerSpec:
        return replace(self, volumes=volumes)

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str | None = None) -> ServerSpec:
        what = f"server {name or data.get('name', '')}".strip()
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise ValidationError(f"{what}: 'tags' must be a list")
        volumes = data.get("volume") or data.get("volumes") or []
        if not isinstance(volumes, list):
            raise ValidationError(f"{what}: 'volumes' must be a list of mappings")
        user_data = data.get("user_data") or {}
        if not isinstance(user_data, dict):
            raise ValidationError(f"{what}: 'user_data' must be a mapping")
        return cls(
            name=str(data.get("name") or name or ""),
            image=str(_require(data, "image", what)),
            type=str(_require(data, "type", what)),
            tags=tuple(str(t) for t in tags),
            security_group=data.get("security_group") or None,
            volumes=tuple(VolumeSpec.from_dict(v) for v in volumes),
            enable_ipv6=_as_bool(data.get("enable_ipv6", False), "enable_ipv6", what),
            dynamic_ip_required=_as_bool(data.get("dynamic_ip_required", False), "dynamic_ip_required", what),
            public_ip=data.get("public_ip") or None,
            user_data={str(k): str(v) for k, v in user_data.items()},
            state=data.get("state") or None,
            bootscript=data.get("bootscript") or None,
        )


@dataclass(frozen=True)
class IPSpec:
    """Desired attachment of a reserved IP (None means unattached)."""

    server: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IPSpec:
        return cls(server=data.get("server") or None)


@dataclass(frozen=True)
class SecurityGroupRuleSpec:
    security_group: str
    action: str
    direction: str
    ip_range: str
    protocol: str
    port: int | None = None

    def validate(self) -> None:
        what = f"security group rule in {self.security_group or '?'}"
        if not self.security_group:
            raise ValidationError(f"{what}: 'security_group' is required")
        if self.action not in RULE_ACTIONS:
            raise ValidationError(f"{what}: action must be one of {', '.join(RULE_ACTIONS)}")
        if self.direction not in RULE_DIRECTIONS:
            raise ValidationError(f"{what}: direction must be one of {', '.join(RULE_DIRECTIONS)}")
        if self.protocol not in RULE_PROTOCOLS:
            raise ValidationError(f"{what}: protocol must be one of {', '.join(RULE_PROTOCOLS)}")
        if self.port is not None and not 0 < self.port < 65536:
            raise ValidationError(f"{what}: port {self.port} is out of range")

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "action": self.action,
            "direction": self.direction,
            "ip_range": self.ip_range,
            "protocol": self.protocol,
        }
        if self.port is not None:
            body["dest_port_from"] = self.port
        return body

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityGroupRuleSpec:
        what = "security group rule"
        port = data.get("port")
        return cls(
            security_group=str(_require(data, "security_group", what)),
            action=str(_require(data, "action", what)),
            direction=str(_require(data, "direction", what)),
            ip_range=str(_require(data, "ip_range", what)),
            protocol=str(_require(data, "protocol", what)),
            port=_as_int(port, "port", what) if port is not None else None,
        )


# ── Reconciled state ────────────────────────────────────────────────


@dataclass(frozen=True)
class ServerState:
    """Observed attributes of a server, mirrored for the caller."""

    id: str
    name: str
    image: str
    type: str
    state: str
    state_detail: str = ""
    tags: tuple[str, ...] = ()
    security_group: str | None = None
    enable_ipv6: bool = False
    dynamic_ip_required: bool = False
    private_ip: str | None = None
    public_ip: str | None = None
    public_ipv6: str | None = None
    bootscript: str | None = None
    volumes: tuple[VolumeSpec, ...] = ()
    user_data: dict[str, str] = field(default_factory=dict)

    @property
    def connection_info(self) -> dict[str, str]:
        return {"type": "ssh", "host": self.public_ip or ""}

    def to_spec(self) -> ServerSpec:
        return ServerSpec(
            name=self.name,
            image=self.image,
            type=self.type,
            tags=self.tags,
            security_group=self.security_group,
            volumes=self.volumes,
            enable_ipv6=self.enable_ipv6,
            dynamic_ip_required=self.dynamic_ip_required,
            public_ip=self.public_ip,
            user_data=dict(self.user_data),
            # Transient provider states (starting, stopping...) are not desirable
            state=self.state if self.state in ("running", "stopped") else None,
            bootscript=self.bootscript,
        )


@dataclass(frozen=True)
class IPState:
    id: str
    address: str
    server: str | None = None

    def to_spec(self) -> IPSpec:
        return IPSpec(server=self.server)


@dataclass(frozen=True)
class SecurityGroupRuleState:
    id: str
    security_group: str
    action: str
    direction: str
    ip_range: str
    protocol: str
    port: int | None = None

    def to_spec(self) -> SecurityGroupRuleSpec:
        return SecurityGroupRuleSpec(
            security_group=self.security_group,
            action=self.action,
            direction=self.direction,
            ip_range=self.ip_range,
            protocol=self.protocol,
            port=self.port,
        )
