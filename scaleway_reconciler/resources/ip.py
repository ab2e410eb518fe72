"""Reserved IP reconciliation."""

from __future__ import annotations

import logging

from ..exceptions import APIError, NotFoundError, ReconcileError, ReconcilerError
from .base import ResourceReconciler
from .records import IPSpec, IPState

logger = logging.getLogger(__name__)


class IPReconciler(ResourceReconciler):
    """Allocates reserved IPs and keeps their server attachment converged."""

    kind = "ip"

    def create(self, spec: IPSpec) -> IPState:
        try:
            ip = self._mutate(self._gateway.post_ip, "allocate IP")
        except APIError as exc:
            raise self._fail("create", exc) from exc

        logger.info(
            "Allocated IP %s (%s)", ip.address, ip.id,
            extra={"kind": self.kind, "resource_id": ip.id, "operation": "create"},
        )
        return self.update(ip.id, spec)

    def read(self, ip_id: str) -> IPState | None:
        try:
            ip = self._call(lambda: self._gateway.get_ip(ip_id), f"read IP {ip_id}")
        except NotFoundError:
            logger.info(
                "IP %s no longer exists", ip_id,
                extra={"kind": self.kind, "resource_id": ip_id, "operation": "read"},
            )
            return None
        except APIError as exc:
            raise self._fail("read", exc, ip_id) from exc
        return IPState(id=ip.id, address=ip.address, server=ip.server_id)

    def update(self, ip_id: str, spec: IPSpec) -> IPState:
        """Attach to ``spec.server`` or detach when no server is desired."""
        current = self.read(ip_id)
        if current is None:
            raise ReconcileError("IP no longer exists", kind=self.kind, operation="update", resource_id=ip_id)

        try:
            if spec.server and spec.server != current.server:
                logger.info("Attaching IP %s to server %s", ip_id, spec.server)
                self._mutate(lambda: self._gateway.attach_ip(ip_id, spec.server), f"attach IP {ip_id}")
            elif not spec.server and current.server:
                logger.info("Detaching IP %s from server %s", ip_id, current.server)
                self._mutate(lambda: self._gateway.detach_ip(ip_id), f"detach IP {ip_id}")
        except ReconcilerError as exc:
            raise self._fail("update", exc, ip_id) from exc

        state = self.read(ip_id)
        if state is None:
            raise ReconcileError("IP disappeared", kind=self.kind, operation="update", resource_id=ip_id)
        return state

    def delete(self, ip_id: str) -> None:
        try:
            self._mutate(lambda: self._gateway.delete_ip(ip_id), f"delete IP {ip_id}")
        except NotFoundError:
            logger.info("IP %s already absent", ip_id)
        except APIError as exc:
            raise self._fail("delete", exc, ip_id) from exc

    def import_state(self, ip_id: str) -> IPSpec:
        state = self.read(ip_id)
        if state is None:
            raise ReconcileError("IP not found", kind=self.kind, operation="import", resource_id=ip_id)
        return state.to_spec()
