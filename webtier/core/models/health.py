"""
Health check policy — how the Health Gate probes pool members.

Mirrors a load balancer target group health check: one HTTP path,
an expected status matcher, a probe interval with a per-attempt
timeout, and the consecutive-probe thresholds that flip a member
between healthy and unhealthy.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class HealthStatus(StrEnum):
    """Traffic eligibility of a pool member."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthCheckPolicy(BaseModel):
    """Probe configuration, fixed at configuration time.

    ``matcher`` accepts the target-group syntax: a single code
    (``"200"``), a comma list (``"200,202"``) or a range
    (``"200-299"``).
    """

    model_config = ConfigDict(frozen=True)

    path: str = "/"
    protocol: str = "HTTP"
    matcher: str = "200"
    interval: float = Field(default=15.0, gt=0)
    timeout: float = Field(default=3.0, gt=0)
    healthy_threshold: int = Field(default=2, ge=2, le=10)
    unhealthy_threshold: int = Field(default=2, ge=2, le=10)

    @field_validator("matcher", mode="before")
    @classmethod
    def _matcher_as_text(cls, value: object) -> object:
        # YAML hands us `matcher: 200` as an int
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("matcher")
    @classmethod
    def _matcher_parses(cls, value: str) -> str:
        _parse_matcher(value)
        return value

    @field_validator("path")
    @classmethod
    def _path_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"health check path must start with '/': {value!r}")
        return value

    @field_validator("protocol")
    @classmethod
    def _protocol_known(cls, value: str) -> str:
        upper = value.upper()
        if upper not in ("HTTP", "HTTPS"):
            raise ValueError(f"unsupported health check protocol: {value!r}")
        return upper

    @model_validator(mode="after")
    def _timeout_below_interval(self) -> HealthCheckPolicy:
        if self.timeout >= self.interval:
            raise ValueError(
                f"health check timeout ({self.timeout}s) must be less than "
                f"the interval ({self.interval}s)"
            )
        return self

    def matches(self, status_code: int) -> bool:
        """Whether a probe response status counts as a success."""
        return any(lo <= status_code <= hi for lo, hi in _parse_matcher(self.matcher))


def _parse_matcher(matcher: str) -> list[tuple[int, int]]:
    """Parse ``"200"``, ``"200,202"`` or ``"200-299"`` into code ranges."""
    ranges: list[tuple[int, int]] = []
    for part in matcher.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"empty entry in matcher {matcher!r}")
        if "-" in part:
            lo_text, hi_text = part.split("-", 1)
            lo, hi = _status(lo_text, matcher), _status(hi_text, matcher)
            if lo > hi:
                raise ValueError(f"inverted range in matcher {matcher!r}")
        else:
            lo = hi = _status(part, matcher)
        ranges.append((lo, hi))
    return ranges


def _status(text: str, matcher: str) -> int:
    try:
        code = int(text.strip())
    except ValueError:
        raise ValueError(f"invalid status code in matcher {matcher!r}") from None
    if not 200 <= code <= 499:
        raise ValueError(f"matcher codes must be within 200-499: {matcher!r}")
    return code


class ProbeResult(BaseModel):
    """Outcome of one health probe against one member."""

    model_config = ConfigDict(frozen=True)

    success: bool
    latency: float = 0.0             # seconds
    status_code: int | None = None
    error: str = ""

    @classmethod
    def failed(cls, error: str, latency: float = 0.0) -> ProbeResult:
        return cls(success=False, latency=latency, error=error)
