"""Server reconciliation: volumes, power state, public IP and user data."""

from __future__ import annotations

import logging
from typing import Any

from ..api import ComputeGateway
from ..api.models import Server
from ..config import ProviderConfig
from ..engine.diff import ATTACH, IPAction, diff_ip_attachment, diff_user_data, volume_set_changed, volumes_to_create
from ..engine.retry import RetryPolicy
from ..engine.serializer import MutationSerializer
from ..exceptions import (
    APIError,
    NotFoundError,
    PartialFailureError,
    ReconcileError,
    ReconcilerError,
    ResourcePendingError,
    ValidationError,
)
from .base import ResourceReconciler
from .records import GB, ServerSpec, ServerState, VolumeSpec

logger = logging.getLogger(__name__)

STOPPED = "stopped"
RUNNING = "running"


# ── Deletion strategies ─────────────────────────────────────────────


class DeletionStrategy:
    """Ordered steps that remove a server in a given lifecycle state."""

    name = ""

    def execute(self, reconciler: ServerReconciler, server: Server) -> None:
        raise NotImplementedError


class StoppedDeletion(DeletionStrategy):
    """Delete the stopped server, then every volume it held."""

    name = STOPPED

    def execute(self, reconciler: ServerReconciler, server: Server) -> None:
        reconciler._mutate(lambda: reconciler._gateway.delete_server(server.id), f"delete server {server.id}")
        for slot in sorted(server.volumes, key=int):
            volume = server.volumes[slot]
            try:
                reconciler._mutate(
                    lambda: reconciler._gateway.delete_volume(volume.id), f"delete volume {volume.id}",
                )
            except NotFoundError:
                logger.debug("Volume %s already gone", volume.id)


class RunningDeletion(DeletionStrategy):
    """Release the reserved IP, terminate, then wait for the server to vanish."""

    name = RUNNING

    def execute(self, reconciler: ServerReconciler, server: Server) -> None:
        reconciler._reconcile_ip(server.id, None)
        reconciler._mutate(
            lambda: reconciler._gateway.server_action(server.id, "terminate"), f"terminate server {server.id}",
        )
        reconciler._wait_until_gone(server.id)


def select_deletion_strategy(server: Server) -> DeletionStrategy:
    if server.state == STOPPED:
        return StoppedDeletion()
    return RunningDeletion()


# ── Reconciler ──────────────────────────────────────────────────────


class ServerReconciler(ResourceReconciler):
    """Create / read / update / delete for servers."""

    kind = "server"

    def __init__(
        self,
        gateway: ComputeGateway,
        retry: RetryPolicy,
        serializer: MutationSerializer,
        wait: RetryPolicy | None = None,
        provider: ProviderConfig | None = None,
    ):
        super().__init__(gateway, retry, serializer)
        self._wait = wait or retry
        self._provider = provider or ProviderConfig()

    # ── Create ──────────────────────────────────────────────────────

    def create(self, spec: ServerSpec) -> ServerState:
        """Create the server and converge its sub-resources.

        Steps run strictly in order: volumes, server, user data, power-on,
        IP attach. Anything failing before the server exists raises
        ``ReconcileError`` without an identifier; later failures raise
        ``PartialFailureError`` carrying the new identifier.
        """
        try:
            spec.validate(self._provider)
            volumes = self._create_volumes(spec)
            server = self._mutate(
                lambda: self._gateway.post_server(self._server_definition(spec, volumes)),
                f"create server {spec.name}",
            )
        except ReconcilerError as exc:
            raise self._fail("create", exc) from exc

        server_id = server.id
        logger.info(
            "Created server %s (%s)", spec.name, server_id,
            extra={"kind": self.kind, "resource_id": server_id, "operation": "create"},
        )

        try:
            for key, value in sorted(spec.user_data.items()):
                self._mutate(
                    lambda k=key, v=value: self._gateway.patch_user_data(server_id, k, v),
                    f"write user data {key}",
                )
        except APIError as exc:
            raise PartialFailureError(self.kind, "create", server_id, [exc]) from exc

        errors: list[ReconcilerError] = []
        if spec.state != STOPPED:
            try:
                self._power_on(server_id)
            except APIError as exc:
                logger.warning("Power-on of server %s failed: %s", server_id, exc)
                errors.append(exc)
            if spec.public_ip:
                try:
                    self._reconcile_ip(server_id, spec.public_ip, require_known=True)
                except (APIError, ValidationError) as exc:
                    logger.warning("Attaching %s to server %s failed: %s", spec.public_ip, server_id, exc)
                    errors.append(exc)

        if errors:
            raise PartialFailureError(self.kind, "create", server_id, errors)

        return self._reload(server_id, "create")

    def _create_volumes(self, spec: ServerSpec) -> tuple[VolumeSpec, ...]:
        """Create declared volumes; return the specs with provider ids filled in."""
        volumes = list(spec.volumes)
        for i, vol in volumes_to_create(spec.volumes):
            created = self._mutate(
                lambda v=vol: self._gateway.post_volume({
                    "name": f"{spec.name}-{v.size_in_gb}",
                    "size": v.size_bytes,
                    "volume_type": v.type,
                }),
                f"create volume {i + 1} for {spec.name}",
            )
            logger.debug("Created volume %s (%dGB) for server %s", created.id, vol.size_in_gb, spec.name)
            volumes[i] = VolumeSpec(size_in_gb=vol.size_in_gb, type=vol.type, volume_id=created.id)
        return tuple(volumes)

    @staticmethod
    def _server_definition(spec: ServerSpec, volumes: tuple[VolumeSpec, ...]) -> dict[str, Any]:
        definition: dict[str, Any] = {
            "name": spec.name,
            "image": spec.image,
            "commercial_type": spec.type,
            "enable_ipv6": spec.enable_ipv6,
            "dynamic_ip_required": spec.dynamic_ip_required,
            "tags": list(spec.tags),
        }
        if spec.security_group:
            definition["security_group"] = spec.security_group
        if spec.bootscript:
            definition["bootscript"] = spec.bootscript
        attached = [v.volume_id for v in volumes if v.volume_id]
        if attached:
            # Slot "0" is the root volume from the image
            definition["volumes"] = {str(i + 1): vid for i, vid in enumerate(attached)}
        return definition

    # ── Read ────────────────────────────────────────────────────────

    def read(self, server_id: str) -> ServerState | None:
        """Return the observed state, or None when the server no longer exists."""
        try:
            server = self._call(lambda: self._gateway.get_server(server_id), f"read server {server_id}")
        except NotFoundError:
            logger.info(
                "Server %s no longer exists", server_id,
                extra={"kind": self.kind, "resource_id": server_id, "operation": "read"},
            )
            return None
        except APIError as exc:
            raise self._fail("read", exc, server_id) from exc

        try:
            user_data = self._read_user_data(server_id)
        except APIError as exc:
            raise self._fail("read", exc, server_id) from exc

        return self._state_from(server, user_data)

    def _read_user_data(self, server_id: str) -> dict[str, str]:
        keys = self._call(lambda: self._gateway.get_user_data_keys(server_id), f"list user data of {server_id}")
        return {
            key: self._call(
                lambda k=key: self._gateway.get_user_data(server_id, k), f"read user data {key}",
            )
            for key in keys
        }

    @staticmethod
    def _state_from(server: Server, user_data: dict[str, str]) -> ServerState:
        volumes = tuple(
            VolumeSpec(
                size_in_gb=server.volumes[slot].size // GB,
                type=server.volumes[slot].volume_type,
                volume_id=server.volumes[slot].id,
            )
            for slot in sorted(server.volumes, key=int)
            if slot != "0"
        )
        return ServerState(
            id=server.id,
            name=server.name,
            image=server.image,
            type=server.commercial_type,
            state=server.state,
            state_detail=server.state_detail,
            tags=server.tags,
            security_group=server.security_group,
            enable_ipv6=server.enable_ipv6,
            dynamic_ip_required=server.dynamic_ip_required,
            private_ip=server.private_ip,
            public_ip=server.public_ip,
            public_ipv6=server.public_ipv6 if server.enable_ipv6 else None,
            bootscript=server.bootscript,
            volumes=volumes,
            user_data=user_data,
        )

    def _reload(self, server_id: str, operation: str) -> ServerState:
        state = self.read(server_id)
        if state is None:
            raise ReconcileError("server disappeared", kind=self.kind, operation=operation, resource_id=server_id)
        return state

    # ── Update ──────────────────────────────────────────────────────

    def update(self, server_id: str, spec: ServerSpec, previous: ServerSpec | None = None) -> ServerState:
        """Converge an existing server towards ``spec``.

        ``previous`` is the last applied record; without it the observed
        state is the baseline. Attribute changes are batched into a single
        patch, the public IP goes through the pool diff and user data
        through the key/value diff.
        """
        try:
            spec.validate(self._provider)
        except ValidationError as exc:
            raise self._fail("update", exc, server_id) from exc

        observed_user_data: dict[str, str] | None = None
        if previous is None:
            current = self._reload(server_id, "update")
            baseline = current.to_spec()
            observed_user_data = current.user_data
        else:
            baseline = previous

        try:
            if volume_set_changed(spec.volumes, baseline.volumes):
                raise ValidationError("volumes can only be set when the server is created")

            changes = self._patch_payload(baseline, spec)
            if changes:
                logger.info(
                    "Patching server %s: %s", server_id, ", ".join(sorted(changes)),
                    extra={"kind": self.kind, "resource_id": server_id, "operation": "update"},
                )
                self._mutate(lambda: self._gateway.patch_server(server_id, changes), f"patch server {server_id}")

            if spec.public_ip != baseline.public_ip:
                self._reconcile_ip(server_id, spec.public_ip)

            if spec.user_data != baseline.user_data:
                if observed_user_data is None:
                    observed_user_data = self._read_user_data(server_id)
                self._apply_user_data(server_id, spec.user_data, observed_user_data)
        except ReconcilerError as exc:
            raise self._fail("update", exc, server_id) from exc

        return self._reload(server_id, "update")

    @staticmethod
    def _patch_payload(baseline: ServerSpec, spec: ServerSpec) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        if spec.name != baseline.name:
            changes["name"] = spec.name
        if spec.tags != baseline.tags:
            changes["tags"] = list(spec.tags)
        if spec.enable_ipv6 != baseline.enable_ipv6:
            changes["enable_ipv6"] = spec.enable_ipv6
        if spec.dynamic_ip_required != baseline.dynamic_ip_required:
            changes["dynamic_ip_required"] = spec.dynamic_ip_required
        if spec.security_group != baseline.security_group:
            changes["security_group"] = {"id": spec.security_group} if spec.security_group else None
        return changes

    def _apply_user_data(self, server_id: str, desired: dict[str, str], observed: dict[str, str]) -> None:
        delta = diff_user_data(desired, observed)
        for key in delta.deletes:
            self._mutate(lambda k=key: self._gateway.delete_user_data(server_id, k), f"delete user data {key}")
        for key, value in delta.patches.items():
            self._mutate(
                lambda k=key, v=value: self._gateway.patch_user_data(server_id, k, v), f"write user data {key}",
            )

    # ── Delete ──────────────────────────────────────────────────────

    def delete(self, server_id: str) -> None:
        """Remove the server; an already-absent server counts as deleted."""
        try:
            server = self._call(lambda: self._gateway.get_server(server_id), f"read server {server_id}")
        except NotFoundError:
            logger.info("Server %s already absent", server_id)
            return
        except APIError as exc:
            raise self._fail("delete", exc, server_id) from exc

        strategy = select_deletion_strategy(server)
        logger.info(
            "Deleting %s server %s", strategy.name, server_id,
            extra={"kind": self.kind, "resource_id": server_id, "operation": "delete"},
        )
        try:
            strategy.execute(self, server)
        except ReconcilerError as exc:
            raise self._fail("delete", exc, server_id) from exc

    def import_state(self, server_id: str) -> ServerSpec:
        state = self.read(server_id)
        if state is None:
            raise ReconcileError("server not found", kind=self.kind, operation="import", resource_id=server_id)
        return state.to_spec()

    # ── Power state and IP pool ─────────────────────────────────────

    def _power_on(self, server_id: str) -> None:
        self._mutate(lambda: self._gateway.server_action(server_id, "poweron"), f"power on {server_id}")
        self._wait_for_state(server_id, RUNNING)

    def _wait_for_state(self, server_id: str, target: str) -> Server:
        def _check() -> Server:
            server = self._gateway.get_server(server_id)
            if server.state != target:
                raise ResourcePendingError(f"server {server_id} is {server.state}, waiting for {target}")
            return server

        return self._wait.call(_check, f"wait for server {server_id} to be {target}")

    def _wait_until_gone(self, server_id: str) -> None:
        def _check() -> None:
            try:
                server = self._gateway.get_server(server_id)
            except NotFoundError:
                return
            raise ResourcePendingError(f"server {server_id} is {server.state}, waiting for removal")

        self._wait.call(_check, f"wait for server {server_id} removal")

    def _reconcile_ip(self, server_id: str, address: str | None, require_known: bool = False) -> IPAction | None:
        """Scan the pool and attach/detach under a single exclusive section.

        With ``require_known`` a desired address missing from the pool is an
        error; otherwise it is left alone.
        """
        with self._serializer.exclusive():
            pool = self._retry.call(self._gateway.get_ips, description="list IPs")
            if require_known and address and all(ip.address != address for ip in pool):
                raise ValidationError(f"Failed to find IP with address {address!r} to attach")
            action = diff_ip_attachment(address, server_id, pool)
            if action is None:
                return None
            if action.kind == ATTACH:
                logger.debug("Attaching IP %s to server %s", action.ip_id, server_id)
                self._retry.call(
                    lambda: self._gateway.attach_ip(action.ip_id, server_id), description=f"attach IP {action.ip_id}",
                )
            else:
                logger.debug("Detaching IP %s from server %s", action.ip_id, server_id)
                self._retry.call(
                    lambda: self._gateway.detach_ip(action.ip_id), description=f"detach IP {action.ip_id}",
                )
        logger.info(
            "%s IP %s for server %s", action.kind.capitalize(), action.address, server_id,
            extra={"kind": self.kind, "resource_id": server_id, "operation": action.kind},
        )
        return action
