"""
Traffic Director — routes listener requests to healthy members.

For each request:
    1. evaluate rules in ascending priority; the first match wins
    2. no match           → the listener's fixed default response (404)
    3. no healthy member  → 503
    4. otherwise forward to the next healthy member, round-robin

Routing takes one roster snapshot per request and holds no lock, so
any number of requests route in parallel. Upstream failures map to
502 (unreachable) and 504 (timed out).
"""

from __future__ import annotations

import itertools
import logging
import time

from webtier.adapters.base import Forwarder, UpstreamError, UpstreamTimeout
from webtier.core.engine.roster import PoolSnapshot, Roster
from webtier.core.models.member import PoolMember
from webtier.core.models.routing import FixedResponse, Listener, RoutingRule
from webtier.core.models.traffic import Request, Response
from webtier.core.observability.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

NO_HEALTHY_TARGETS = FixedResponse(status_code=503, body="503: service unavailable")
BAD_GATEWAY = FixedResponse(status_code=502, body="502: bad gateway")
GATEWAY_TIMEOUT = FixedResponse(status_code=504, body="504: gateway timeout")


class TrafficDirector:
    """Listener plus rules in front of the roster.

    Args:
        listener: Port, protocol and default action.
        rules: Routing rules; sorted by priority here.
        roster: Source of healthy-member snapshots.
        forwarder: Delivers a request to the chosen member.
        metrics: Optional metrics registry.
    """

    def __init__(
        self,
        listener: Listener,
        rules: list[RoutingRule],
        roster: Roster,
        forwarder: Forwarder,
        metrics: MetricsRegistry | None = None,
    ):
        self.listener = listener
        self.rules = tuple(sorted(rules, key=lambda r: r.priority))
        self._roster = roster
        self._forwarder = forwarder
        self._metrics = metrics
        # next() on itertools.count is atomic under the GIL
        self._cursor = itertools.count()

    def select_rule(self, path: str) -> RoutingRule | None:
        """The first rule, by priority, whose pattern matches ``path``."""
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    def pick_member(self, snapshot: PoolSnapshot) -> PoolMember | None:
        """Next healthy member round-robin, or None when there is none."""
        healthy = snapshot.healthy_members
        if not healthy:
            return None
        return healthy[next(self._cursor) % len(healthy)]

    def route(self, request: Request) -> Response:
        """Answer one request. Never raises for upstream failures."""
        start = time.monotonic()
        response = self._route(request)
        if self._metrics is not None:
            self._metrics.inc("requests_total", status=str(response.status_code))
            self._metrics.histogram("route_latency_seconds").observe(time.monotonic() - start)
        return response

    def _route(self, request: Request) -> Response:
        rule = self.select_rule(request.path)
        if rule is None:
            return _fixed(self.listener.default_action)

        member = self.pick_member(self._roster.snapshot())
        if member is None:
            logger.warning("No healthy members for %s (rule %d)", request.path, rule.priority)
            return _fixed(NO_HEALTHY_TARGETS)

        try:
            return self._forwarder.forward(member, request)
        except UpstreamTimeout as e:
            logger.warning("Member %s timed out: %s", member.id, e)
            return _fixed(GATEWAY_TIMEOUT, member_id=member.id)
        except UpstreamError as e:
            logger.warning("Member %s unreachable: %s", member.id, e)
            return _fixed(BAD_GATEWAY, member_id=member.id)


def _fixed(action: FixedResponse, member_id: str | None = None) -> Response:
    return Response(
        status_code=action.status_code,
        body=action.body.encode("utf-8"),
        content_type=action.content_type,
        member_id=member_id,
    )
