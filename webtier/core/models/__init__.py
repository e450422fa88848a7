"""
Domain models — Pydantic types for the web tier.

All models are re-exported here for convenient access:

    from webtier.core.models import TierConfig, PoolMember, RoutingRule, Receipt
"""

from webtier.core.models.action import Receipt, ScalingAction
from webtier.core.models.health import HealthCheckPolicy, HealthStatus, ProbeResult
from webtier.core.models.member import PoolMember
from webtier.core.models.routing import FixedResponse, Listener, RoutingRule
from webtier.core.models.state import PoolState
from webtier.core.models.tier import CapacityPolicy, MemberTemplate, TierConfig
from webtier.core.models.traffic import Request, Response

__all__ = [
    "CapacityPolicy",
    "FixedResponse",
    "HealthCheckPolicy",
    "HealthStatus",
    "Listener",
    "MemberTemplate",
    "PoolMember",
    "PoolState",
    "ProbeResult",
    "Receipt",
    "Request",
    "Response",
    "RoutingRule",
    "ScalingAction",
    "TierConfig",
]
