"""Security-group rule reconciliation. Rules are immutable once created."""

from __future__ import annotations

import logging

from ..api.models import SecurityGroupRule
from ..exceptions import APIError, NotFoundError, ReconcileError, ReconcilerError
from .base import ResourceReconciler
from .records import SecurityGroupRuleSpec, SecurityGroupRuleState

logger = logging.getLogger(__name__)


def split_rule_id(composite: str) -> tuple[str, str]:
    """Split an import identifier of the form ``<security_group>/<rule_id>``."""
    group, sep, rule_id = composite.partition("/")
    if not sep or not group or not rule_id:
        raise ReconcileError(
            "expected '<security_group>/<rule_id>'",
            kind=SecurityGroupRuleReconciler.kind, operation="import", resource_id=composite,
        )
    return group, rule_id


class SecurityGroupRuleReconciler(ResourceReconciler):
    kind = "security_group_rule"

    def create(self, spec: SecurityGroupRuleSpec) -> SecurityGroupRuleState:
        try:
            spec.validate()
            rule = self._mutate(
                lambda: self._gateway.post_security_group_rule(spec.security_group, spec.to_api()),
                f"create rule in {spec.security_group}",
            )
        except ReconcilerError as exc:
            raise self._fail("create", exc) from exc

        logger.info(
            "Created %s %s rule %s in %s", spec.direction, spec.protocol, rule.id, spec.security_group,
            extra={"kind": self.kind, "resource_id": rule.id, "operation": "create"},
        )
        state = self.read(spec.security_group, rule.id)
        if state is None:
            raise ReconcileError("rule disappeared", kind=self.kind, operation="create", resource_id=rule.id)
        return state

    def read(self, security_group: str, rule_id: str) -> SecurityGroupRuleState | None:
        try:
            rule = self._call(
                lambda: self._gateway.get_security_group_rule(security_group, rule_id), f"read rule {rule_id}",
            )
        except NotFoundError:
            logger.info(
                "Rule %s in %s no longer exists", rule_id, security_group,
                extra={"kind": self.kind, "resource_id": rule_id, "operation": "read"},
            )
            return None
        except APIError as exc:
            raise self._fail("read", exc, rule_id) from exc
        return self._state_from(rule)

    def delete(self, security_group: str, rule_id: str) -> None:
        try:
            self._mutate(
                lambda: self._gateway.delete_security_group_rule(security_group, rule_id), f"delete rule {rule_id}",
            )
        except NotFoundError:
            logger.info("Rule %s already absent", rule_id)
        except APIError as exc:
            raise self._fail("delete", exc, rule_id) from exc

    def import_state(self, composite_id: str) -> SecurityGroupRuleSpec:
        security_group, rule_id = split_rule_id(composite_id)
        state = self.read(security_group, rule_id)
        if state is None:
            raise ReconcileError("rule not found", kind=self.kind, operation="import", resource_id=composite_id)
        return state.to_spec()

    @staticmethod
    def _state_from(rule: SecurityGroupRule) -> SecurityGroupRuleState:
        return SecurityGroupRuleState(
            id=rule.id,
            security_group=rule.security_group,
            action=rule.action,
            direction=rule.direction,
            ip_range=rule.ip_range,
            protocol=rule.protocol,
            port=rule.port,
        )
