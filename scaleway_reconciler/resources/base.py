"""Shared plumbing for resource reconcilers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from ..api import ComputeGateway
from ..engine.retry import RetryPolicy
from ..engine.serializer import MutationSerializer
from ..exceptions import ReconcileError, ReconcilerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceReconciler:
    """Composes the gateway with the retry policy and the mutation serializer.

    Reads go through ``_call`` (retry only). Provider mutations go through
    ``_mutate``, which holds the serializer for the duration of one retried
    call.
    """

    kind = "resource"

    def __init__(self, gateway: ComputeGateway, retry: RetryPolicy, serializer: MutationSerializer):
        self._gateway = gateway
        self._retry = retry
        self._serializer = serializer

    def _call(self, operation: Callable[[], T], description: str) -> T:
        return self._retry.call(operation, description=description)

    def _mutate(self, operation: Callable[[], T], description: str) -> T:
        with self._serializer.exclusive():
            return self._retry.call(operation, description=description)

    def _fail(
        self,
        operation: str,
        exc: ReconcilerError,
        resource_id: str | None = None,
    ) -> ReconcileError:
        """Wrap ``exc`` with the resource context, logging it once."""
        if isinstance(exc, ReconcileError):
            return exc
        logger.error(
            "%s %s failed: %s", operation, self.kind, exc,
            extra={"kind": self.kind, "resource_id": resource_id, "operation": operation},
        )
        return ReconcileError(str(exc), kind=self.kind, operation=operation, resource_id=resource_id, cause=exc)
