"""
Inbound webhook schemas - the normalized event plus the per-stage results
that the receiver pipeline threads into its response.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class SignatureReason:
    """Outcome codes for X-Signature verification."""
    ABSENT = "absent"
    BAD_FORMAT = "bad_format"
    MISMATCH = "mismatch"
    OK = "ok"


class InboundEvent(BaseModel):
    """One inbound webhook delivery, built once at intake."""
    request_id: str
    event_type: str = "unknown"
    raw_body: bytes = b""
    payload: dict[str, Any] = Field(default_factory=dict)
    source_ip: str = "unknown"
    origin: str = ""
    received_at: datetime
    ack_url: Optional[str] = None

    @property
    def received_at_iso(self) -> str:
        return self.received_at.isoformat()

    @property
    def body_text(self) -> str:
        return self.raw_body.decode("utf-8", errors="replace")


class SignatureCheck(BaseModel):
    present: bool = False
    verified: bool = False
    reason: str = SignatureReason.ABSENT


class OperationResult(BaseModel):
    """Best-effort operation outcome. A warning means it degraded, not that the request failed."""
    ok: bool
    warning: Optional[str] = None


class AckResult(BaseModel):
    """Outcome of the optional round-trip ACK to the caller's callback URL."""
    attempted: bool = False
    ack_url: Optional[str] = None
    http_status: Optional[int] = None
    curl_error: Optional[str] = None
    response_json: Optional[Any] = None
