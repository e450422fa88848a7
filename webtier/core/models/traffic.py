"""
Request and response types passed through the Traffic Director.

Deliberately independent of Flask and werkzeug so routing can be
driven from tests, the simulator, or the director web app alike.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Request:
    """An inbound request as seen by the listener."""

    path: str = "/"
    method: str = "GET"
    query: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def target(self) -> str:
        """Path plus query string, as forwarded upstream."""
        return f"{self.path}?{self.query}" if self.query else self.path


@dataclass(frozen=True)
class Response:
    """What the listener sends back."""

    status_code: int
    body: bytes = b""
    content_type: str = "text/plain"
    headers: dict[str, str] = field(default_factory=dict)
    member_id: str | None = None       # None for fixed and error responses

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")
