"""
HTTP adapters — probe and forward over real sockets with urllib.

HttpProber issues the target-group style health check (GET on the
policy path, success when the status matches the matcher).
HttpForwarder relays a routed request to the chosen member.
"""

from __future__ import annotations

import logging
import socket
import time
import urllib.error
import urllib.request

from webtier.adapters.base import Forwarder, Prober, UpstreamError, UpstreamTimeout
from webtier.core.models.health import HealthCheckPolicy, ProbeResult
from webtier.core.models.member import PoolMember
from webtier.core.models.traffic import Request, Response

logger = logging.getLogger(__name__)

# Request headers that must not be relayed hop to hop
_HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
})

# Response headers the director sets itself
_REGENERATED = frozenset({"content-type", "server", "date"})


class HttpProber(Prober):
    """Health check over HTTP(S) with urllib."""

    def probe(self, member: PoolMember, policy: HealthCheckPolicy) -> ProbeResult:
        scheme = policy.protocol.lower()
        url = f"{scheme}://{member.address}{policy.path}"
        req = urllib.request.Request(url, method="GET", headers={"User-Agent": "webtier-health/1"})
        start = time.monotonic()
        try:
            with urllib.request.urlopen(req, timeout=policy.timeout) as resp:
                status = resp.status
        except urllib.error.HTTPError as e:
            status = e.code
        except (urllib.error.URLError, OSError) as e:
            latency = time.monotonic() - start
            reason = getattr(e, "reason", e)
            return ProbeResult.failed(f"{url}: {reason}", latency=latency)

        latency = time.monotonic() - start
        if policy.matches(status):
            return ProbeResult(success=True, latency=latency, status_code=status)
        return ProbeResult(
            success=False,
            latency=latency,
            status_code=status,
            error=f"{url}: status {status} does not match '{policy.matcher}'",
        )


class HttpForwarder(Forwarder):
    """Relay requests to members over plain HTTP.

    Args:
        timeout: Seconds to wait for the member's response.
    """

    def __init__(self, timeout: float = 30.0):
        self._timeout = timeout

    def forward(self, member: PoolMember, request: Request) -> Response:
        url = f"http://{member.address}{request.target}"
        headers = {
            k: v for k, v in request.headers.items() if k.lower() not in _HOP_BY_HOP
        }
        headers["X-Forwarded-Proto"] = "http"
        req = urllib.request.Request(
            url,
            data=request.body or None,
            method=request.method,
            headers=headers,
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                return _to_response(member, resp.status, resp.headers, resp.read())
        except urllib.error.HTTPError as e:
            # A 4xx/5xx from the member is still the member's answer
            return _to_response(member, e.code, e.headers, e.read())
        except (TimeoutError, socket.timeout) as e:
            raise UpstreamTimeout(f"{url}: {e}") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                raise UpstreamTimeout(f"{url}: {e.reason}") from e
            raise UpstreamError(f"{url}: {e.reason}") from e
        except OSError as e:
            raise UpstreamError(f"{url}: {e}") from e


def _to_response(member: PoolMember, status: int, headers, body: bytes) -> Response:  # type: ignore[no-untyped-def]
    content_type = headers.get("Content-Type", "text/plain") if headers else "text/plain"
    passthrough = {}
    if headers:
        passthrough = {
            k: v for k, v in headers.items()
            if k.lower() not in _HOP_BY_HOP and k.lower() not in _REGENERATED
        }
    return Response(
        status_code=status,
        body=body,
        content_type=content_type,
        headers=passthrough,
        member_id=member.id,
    )
