"""
Mock adapters — in-memory test doubles for provisioning, probing and forwarding.

Used by `webtier simulate`, `webtier serve --mock` and the test suite
to run the whole tier without opening sockets. Each double can be
scripted to fail.
"""

from __future__ import annotations

import random
import threading

from webtier.adapters.base import (
    Forwarder,
    Prober,
    ProvisionContext,
    Provisioner,
    UpstreamError,
    UpstreamTimeout,
)
from webtier.core.models.action import Receipt
from webtier.core.models.health import HealthCheckPolicy, ProbeResult
from webtier.core.models.member import PoolMember
from webtier.core.models.traffic import Request, Response


class MockProvisioner(Provisioner):
    """Provisioner that only keeps a set of running member ids.

    By default every launch succeeds. ``fail_next(n)`` makes the next
    ``n`` launches fail; ``available=False`` fails them all.
    """

    def __init__(self, provisioner_name: str = "mock", available: bool = True):
        self._name = provisioner_name
        self._available = available
        self._fail_remaining = 0
        self._running: set[str] = set()
        self._next_host = 0
        self._call_log: list[ProvisionContext] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ProvisionContext]:
        """All contexts this mock has received."""
        return self._call_log

    @property
    def running(self) -> set[str]:
        """Ids of members currently launched and not terminated."""
        return set(self._running)

    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        self._available = available

    def fail_next(self, count: int = 1) -> None:
        """Fail the next ``count`` launches."""
        self._fail_remaining = count

    def launches(self) -> list[ProvisionContext]:
        return [c for c in self._call_log if c.action.kind == "launch"]

    def terminations(self) -> list[ProvisionContext]:
        return [c for c in self._call_log if c.action.kind == "terminate"]

    def execute(self, context: ProvisionContext) -> Receipt:
        action = context.action
        with self._lock:
            self._call_log.append(context)

            if action.kind == "terminate":
                self._running.discard(action.member_id)
                return Receipt.success(
                    provisioner=self._name,
                    action_id=action.id,
                    output=f"[mock] terminated {action.member_id}",
                )

            if not self._available:
                return Receipt.failure(
                    provisioner=self._name,
                    action_id=action.id,
                    error="[mock] provisioner unavailable",
                )
            if self._fail_remaining > 0:
                self._fail_remaining -= 1
                return Receipt.failure(
                    provisioner=self._name,
                    action_id=action.id,
                    error="[mock] launch failed",
                )

            self._next_host += 1
            host = f"10.0.{self._next_host // 250}.{self._next_host % 250 + 1}"
            self._running.add(action.member_id)

        return Receipt.success(
            provisioner=self._name,
            action_id=action.id,
            output=f"[mock] launched {action.member_id}",
            host=host,
            port=context.server_port,
        )


class MockProber(Prober):
    """Prober whose answers are scripted per member.

    Members without a script pass. ``failure_rate`` adds random
    failures on top, drawn from ``rng`` so runs are reproducible.
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        latency: float = 0.001,
        rng: random.Random | None = None,
    ):
        self._outcomes: dict[str, bool] = {}
        self._latencies: dict[str, float] = {}
        self._failure_rate = failure_rate
        self._latency = latency
        self._rng = rng or random.Random(0)
        self.probe_count = 0
        self._lock = threading.Lock()

    def set_outcome(self, member_id: str, success: bool) -> None:
        self._outcomes[member_id] = success

    def set_latency(self, member_id: str, seconds: float) -> None:
        """Report ``seconds`` of latency for this member's probes."""
        self._latencies[member_id] = seconds

    def clear(self, member_id: str | None = None) -> None:
        if member_id is None:
            self._outcomes.clear()
            self._latencies.clear()
        else:
            self._outcomes.pop(member_id, None)
            self._latencies.pop(member_id, None)

    def probe(self, member: PoolMember, policy: HealthCheckPolicy) -> ProbeResult:
        with self._lock:
            self.probe_count += 1
            roll = self._rng.random()
        latency = self._latencies.get(member.id, self._latency)
        success = self._outcomes.get(member.id, True)
        if success and roll < self._failure_rate:
            success = False
        if success:
            return ProbeResult(success=True, latency=latency, status_code=200)
        return ProbeResult(success=False, latency=latency, status_code=500, error="[mock] probe failed")


class MockForwarder(Forwarder):
    """Forwarder that answers for the member without any I/O."""

    def __init__(self, body: str = "Hello, World"):
        self._body = body
        self._errors: dict[str, type[UpstreamError]] = {}
        self.forwarded: list[tuple[str, Request]] = []

    def break_member(self, member_id: str, timeout: bool = False) -> None:
        """Make forwarding to ``member_id`` raise."""
        self._errors[member_id] = UpstreamTimeout if timeout else UpstreamError

    def forward(self, member: PoolMember, request: Request) -> Response:
        self.forwarded.append((member.id, request))
        error = self._errors.get(member.id)
        if error is not None:
            raise error(f"[mock] {member.id} unreachable")
        return Response(
            status_code=200,
            body=self._body.encode("utf-8"),
            content_type="text/plain",
            member_id=member.id,
        )
