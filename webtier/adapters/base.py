"""
Adapter base — the contracts between the engine and the outside world.

Three seams:
    Provisioner  creates and destroys members (returns Receipts, never raises)
    Prober       runs one health check against a member
    Forwarder    relays a routed request to a member

The engine only talks to provisioners through the ProvisionerRegistry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel

from webtier.core.models.action import Receipt, ScalingAction
from webtier.core.models.health import HealthCheckPolicy, ProbeResult
from webtier.core.models.member import PoolMember
from webtier.core.models.tier import MemberTemplate
from webtier.core.models.traffic import Request, Response


class UpstreamError(Exception):
    """A forwarded request could not be completed by the member."""


class UpstreamTimeout(UpstreamError):
    """The member did not answer within the forwarding timeout."""


class ProvisionContext(BaseModel):
    """Everything a provisioner needs to launch or terminate a member."""

    action: ScalingAction
    template: MemberTemplate
    server_port: int = 8080
    member: PoolMember | None = None    # set for terminate


class Provisioner(ABC):
    """Abstract base class for member provisioners.

    Provisioners perform side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.
    A successful launch receipt carries the member's ``host`` and ``port``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The provisioner identifier (e.g., 'local', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this provisioner can currently create members."""

    def validate(self, context: ProvisionContext) -> tuple[bool, str]:
        """Check the action before running it.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        if context.action.kind == "terminate" and context.member is None:
            return False, "terminate requires the member being terminated"
        return True, ""

    @abstractmethod
    def execute(self, context: ProvisionContext) -> Receipt:
        """Launch or terminate, as ``context.action.kind`` says."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class Prober(ABC):
    """Runs a single health check. May block; the Health Gate times it out."""

    @abstractmethod
    def probe(self, member: PoolMember, policy: HealthCheckPolicy) -> ProbeResult:
        """Probe ``member`` according to ``policy``."""


class Forwarder(ABC):
    """Relays a request to the member chosen by the Traffic Director."""

    @abstractmethod
    def forward(self, member: PoolMember, request: Request) -> Response:
        """Return the member's response.

        Raises:
            UpstreamTimeout: The member did not answer in time.
            UpstreamError: The member could not be reached.
        """
