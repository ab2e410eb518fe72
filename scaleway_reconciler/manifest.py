"""YAML manifest of desired resources, validated at load time."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import ProviderConfig
from .exceptions import ValidationError
from .resources.records import IPSpec, SecurityGroupRuleSpec, ServerSpec


@dataclass
class Manifest:
    servers: dict[str, ServerSpec] = field(default_factory=dict)
    ips: dict[str, IPSpec] = field(default_factory=dict)
    security_group_rules: dict[str, SecurityGroupRuleSpec] = field(default_factory=dict)

    @property
    def resource_count(self) -> int:
        return len(self.servers) + len(self.ips) + len(self.security_group_rules)


def _section(raw: dict[str, Any], name: str) -> dict[str, dict[str, Any]]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ValidationError(f"'{name}' must be a mapping of resource name to attributes")
    for key, attrs in section.items():
        if not isinstance(attrs, dict):
            raise ValidationError(f"{name}.{key} must be a mapping")
    return section


def parse_manifest(raw: dict[str, Any], provider: ProviderConfig | None = None) -> Manifest:
    """Turn a loosely-typed mapping into validated desired-state records."""
    provider = provider or ProviderConfig()
    manifest = Manifest()

    for key, attrs in _section(raw, "servers").items():
        try:
            spec = ServerSpec.from_dict(attrs, name=key)
            spec.validate(provider)
        except ValidationError as exc:
            raise ValidationError(f"servers.{key}: {exc}") from exc
        manifest.servers[key] = spec

    for key, attrs in _section(raw, "ips").items():
        manifest.ips[key] = IPSpec.from_dict(attrs)

    for key, attrs in _section(raw, "security_group_rules").items():
        try:
            rule = SecurityGroupRuleSpec.from_dict(attrs)
            rule.validate()
        except ValidationError as exc:
            raise ValidationError(f"security_group_rules.{key}: {exc}") from exc
        manifest.security_group_rules[key] = rule

    return manifest


def load_manifest(path: str | Path, provider: ProviderConfig | None = None) -> Manifest:
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Manifest file not found: {path}")

    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValidationError(f"Manifest {path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValidationError("Manifest must be a YAML mapping")

    return parse_manifest(raw, provider)
