"""Pure diff engines between desired and observed sub-resource collections."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ..api.models import IP, Volume
from ..resources.records import VolumeSpec

logger = logging.getLogger(__name__)

ATTACH = "attach"
DETACH = "detach"


# ── IP attachment ───────────────────────────────────────────────────


@dataclass(frozen=True)
class IPAction:
    """One attach or detach call against the IP pool."""

    kind: str  # ATTACH or DETACH
    ip_id: str
    address: str
    server_id: str


def diff_ip_attachment(
    desired_address: str | None,
    server_id: str,
    pool: Iterable[IP],
) -> IPAction | None:
    """Compute at most one attach/detach action for ``server_id``.

    Addresses are unique within the pool, so scanning stops at the first
    matching entry.
    """
    pool = list(pool)

    if desired_address:
        for ip in pool:
            if ip.address != desired_address:
                continue
            if ip.server_id == server_id:
                logger.debug("IP %s already attached to server %s", ip.address, server_id)
                return None
            return IPAction(ATTACH, ip.id, ip.address, server_id)
        logger.debug("IP %s is not in the pool", desired_address)
        return None

    for ip in pool:
        if ip.server_id == server_id:
            return IPAction(DETACH, ip.id, ip.address, server_id)
    return None


# ── User data ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class UserDataDelta:
    deletes: tuple[str, ...] = ()
    patches: dict[str, str] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.deletes and not self.patches


def diff_user_data(desired: Mapping[str, str], observed: Mapping[str, str]) -> UserDataDelta:
    """Keys only observed are deleted; new or differing keys are patched."""
    deletes = tuple(sorted(set(observed) - set(desired)))
    patches = {
        key: desired[key]
        for key in sorted(desired)
        if key not in observed or observed[key] != desired[key]
    }
    if deletes or patches:
        logger.debug("User data delta: -%d ~%d", len(deletes), len(patches))
    return UserDataDelta(deletes=deletes, patches=patches)


# ── Volumes ─────────────────────────────────────────────────────────


def volumes_to_create(desired: Iterable[VolumeSpec]) -> list[tuple[int, VolumeSpec]]:
    """Return (position, volume) pairs for the volumes that need creating."""
    return [(i, vol) for i, vol in enumerate(desired) if vol.size_in_gb > 0]


def volume_set_changed(desired: Iterable[VolumeSpec], observed: Iterable[VolumeSpec | Volume]) -> bool:
    """True when the (size, type) multiset differs between desired and observed."""

    def _key(vol: VolumeSpec | Volume) -> tuple[int, str]:
        if isinstance(vol, Volume):
            return vol.size, vol.volume_type
        return vol.size_bytes, vol.type

    return Counter(_key(v) for v in desired) != Counter(_key(v) for v in observed)
