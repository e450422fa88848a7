"""
TierConfig — the root configuration, loaded from webtier.yml.

This is the whole declared web tier: the member launch template,
the capacity bounds, the health check policy, the listener and its
routing rules. Defaults reproduce the reference deployment
(2-10 members on port 8080 behind a listener on port 80).
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from webtier.core.models.health import HealthCheckPolicy
from webtier.core.models.routing import Listener, RoutingRule


class MemberTemplate(BaseModel):
    """Launch template — how every member is started.

    A member runs the same startup procedure: bind an address and
    serve ``body`` as plain text on ``server_port``.
    """

    host: str = "127.0.0.1"
    body: str = "Hello, World"
    content_type: str = "text/plain"


class CapacityPolicy(BaseModel):
    """Size bounds of the pool and the zones members are spread across."""

    min_size: int = Field(default=2, ge=0)
    max_size: int = Field(default=10, ge=1)
    desired_capacity: int | None = None
    zones: list[str] = Field(default_factory=lambda: ["zone-a", "zone-b"], min_length=1)

    @model_validator(mode="after")
    def _bounds_ordered(self) -> CapacityPolicy:
        if self.min_size > self.max_size:
            raise ValueError(
                f"min_size ({self.min_size}) exceeds max_size ({self.max_size})"
            )
        if self.desired_capacity is not None and not (
            self.min_size <= self.desired_capacity <= self.max_size
        ):
            raise ValueError(
                f"desired_capacity ({self.desired_capacity}) must be within "
                f"[{self.min_size}, {self.max_size}]"
            )
        return self

    @field_validator("zones")
    @classmethod
    def _zones_unique(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError(f"duplicate zone names: {value}")
        return value

    @property
    def effective_desired(self) -> int:
        """Target size when no explicit desired capacity is set."""
        if self.desired_capacity is None:
            return self.min_size
        return self.desired_capacity


def _default_rules() -> list[RoutingRule]:
    return [RoutingRule(priority=100, path_patterns=["*"], target="web")]


class TierConfig(BaseModel):
    """Root configuration of the web tier."""

    version: int = 1
    name: str = "terraform-asg-example"

    server_port: int = Field(default=8080, ge=1, le=65535)
    lb_port: int = Field(default=80, ge=1, le=65535)
    lb_host: str = "127.0.0.1"

    target_group: str = "web"
    member: MemberTemplate = Field(default_factory=MemberTemplate)
    capacity: CapacityPolicy = Field(default_factory=CapacityPolicy)
    health_check: HealthCheckPolicy = Field(default_factory=HealthCheckPolicy)
    listener: Listener = Field(default_factory=Listener)
    rules: list[RoutingRule] = Field(default_factory=_default_rules)

    @model_validator(mode="after")
    def _wire_listener(self) -> TierConfig:
        # The listener always binds lb_port; only its protocol and
        # default action are configurable.
        if self.listener.port != self.lb_port:
            self.listener = self.listener.model_copy(update={"port": self.lb_port})
        return self

    @model_validator(mode="after")
    def _rules_consistent(self) -> TierConfig:
        priorities = [r.priority for r in self.rules]
        dupes = sorted({p for p in priorities if priorities.count(p) > 1})
        if dupes:
            raise ValueError(f"duplicate rule priorities: {dupes}")
        for rule in self.rules:
            if rule.target != self.target_group:
                raise ValueError(
                    f"rule {rule.priority} targets unknown pool '{rule.target}' "
                    f"(expected '{self.target_group}')"
                )
        return self

    @property
    def sorted_rules(self) -> list[RoutingRule]:
        return sorted(self.rules, key=lambda r: r.priority)
