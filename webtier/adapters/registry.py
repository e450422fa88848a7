"""
Provisioner registry — central dispatch for launches and terminations.

The Capacity Manager never calls a provisioner directly. The registry
resolves the provisioner named on the action, validates, guards the
call with a per-provisioner circuit breaker, times it, and always
returns a Receipt.
"""

from __future__ import annotations

import logging
import time

from webtier.adapters.base import ProvisionContext, Provisioner
from webtier.core.models.action import Receipt, ScalingAction
from webtier.core.models.member import PoolMember
from webtier.core.models.tier import MemberTemplate
from webtier.core.reliability.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)


class ProvisionerRegistry:
    """Registry and dispatcher for provisioners.

    Launches are guarded by a circuit breaker per provisioner.
    """

    def __init__(self, circuit_breakers: CircuitBreakerRegistry | None = None):
        self._provisioners: dict[str, Provisioner] = {}
        self._circuit_breakers = circuit_breakers

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry | None:
        return self._circuit_breakers

    def register(self, provisioner: Provisioner) -> None:
        name = provisioner.name
        if name in self._provisioners:
            logger.warning("Overwriting existing provisioner: %s", name)
        self._provisioners[name] = provisioner
        logger.debug("Registered provisioner: %s", name)

    def execute_action(
        self,
        action: ScalingAction,
        template: MemberTemplate,
        server_port: int,
        member: PoolMember | None = None,
    ) -> Receipt:
        """Run a scaling action through its provisioner (never raises).

        Args:
            action: The launch or terminate to perform.
            template: Launch template for new members.
            server_port: Port members listen on.
            member: The member being terminated (terminate only).
        """
        start_time = time.monotonic()

        context = ProvisionContext(
            action=action,
            template=template,
            server_port=server_port,
            member=member,
        )

        provisioner = self._provisioners.get(action.provisioner)
        if provisioner is None:
            return Receipt.failure(
                provisioner=action.provisioner,
                action_id=action.id,
                error=f"No provisioner registered for '{action.provisioner}'",
            )

        try:
            is_valid, error_msg = provisioner.validate(context)
        except Exception as e:
            return Receipt.failure(
                provisioner=action.provisioner,
                action_id=action.id,
                error=f"Validation error: {e}",
            )
        if not is_valid:
            return Receipt.failure(
                provisioner=action.provisioner,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
            )

        # Terminations always go through: a stuck member must be removable
        breaker = None
        if self._circuit_breakers is not None and action.kind == "launch":
            breaker = self._circuit_breakers.get_or_create(action.provisioner)
            if not breaker.allow_request():
                return Receipt.failure(
                    provisioner=action.provisioner,
                    action_id=action.id,
                    error=f"Circuit breaker OPEN for provisioner '{action.provisioner}'",
                )

        try:
            receipt = provisioner.execute(context)
        except Exception as e:
            logger.error("Provisioner %s raised during %s: %s", action.provisioner, action.kind, e)
            receipt = Receipt.failure(
                provisioner=action.provisioner,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        if breaker is not None:
            if receipt.ok:
                breaker.record_success()
            elif receipt.failed:
                breaker.record_failure()

        receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt
