"""
Routing models — listener, rules and the fixed default response.

Rules use load-balancer path patterns: case-sensitive, ``*`` matches
any run of characters and ``?`` matches exactly one. Lower priority
numbers are evaluated first.
"""

from __future__ import annotations

import re
from functools import cached_property

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FixedResponse(BaseModel):
    """A canned response returned without contacting any member."""

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(default=404, ge=200, le=599)
    content_type: str = "text/plain"
    body: str = "404: page not found"


class RoutingRule(BaseModel):
    """Forward requests whose path matches any pattern to ``target``."""

    model_config = ConfigDict(frozen=True)

    priority: int = Field(ge=1, le=50000)
    path_patterns: list[str] = Field(default_factory=lambda: ["*"], min_length=1)
    target: str = "web"

    @field_validator("path_patterns")
    @classmethod
    def _patterns_not_blank(cls, value: list[str]) -> list[str]:
        for pattern in value:
            if not pattern or len(pattern) > 128:
                raise ValueError(f"path pattern must be 1-128 characters: {pattern!r}")
        return value

    @cached_property
    def compiled_patterns(self) -> list[re.Pattern[str]]:
        return [_compile(p) for p in self.path_patterns]

    def matches(self, path: str) -> bool:
        """Whether ``path`` (without the query string) matches this rule."""
        return any(rx.fullmatch(path) for rx in self.compiled_patterns)


class Listener(BaseModel):
    """The externally reachable entry point."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(default=80, ge=1, le=65535)
    protocol: str = "HTTP"
    default_action: FixedResponse = Field(default_factory=FixedResponse)


def _compile(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)
