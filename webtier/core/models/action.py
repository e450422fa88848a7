"""
ScalingAction and Receipt models — the provisioning contract.

The Capacity Manager asks for launches and terminations with a
ScalingAction; provisioners answer with a Receipt. Provisioners
never raise: failures come back as failed receipts.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ScalingAction(BaseModel):
    """A requested change to pool membership."""

    id: str                                 # activity id, shared with the activity log
    kind: Literal["launch", "terminate"]
    member_id: str
    zone: str = ""
    provisioner: str = "local"
    cause: str = ""


class Receipt(BaseModel):
    """Outcome of one provisioner call.

    A successful launch says where the new member listens
    (``host``/``port``); other receipts leave both unset.
    """

    provisioner: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"
    output: str = ""
    error: str | None = None
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, provisioner: str, action_id: str, output: str = "", **kwargs) -> Receipt:  # type: ignore[no-untyped-def]
        return cls(provisioner=provisioner, action_id=action_id, output=output, **kwargs)

    @classmethod
    def failure(cls, provisioner: str, action_id: str, error: str) -> Receipt:
        return cls(provisioner=provisioner, action_id=action_id, status="failed", error=error)

    @classmethod
    def skip(cls, provisioner: str, action_id: str, reason: str = "") -> Receipt:
        return cls(provisioner=provisioner, action_id=action_id, status="skipped", output=reason)
