"""
API response schemas for the webhook receiver and the admin read endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from stockloyal.schemas.webhook_payloads import AckResult


class SignatureSummary(BaseModel):
    present: bool
    verified: bool
    reason: str
    required: bool


class DuplicateResponse(BaseModel):
    success: bool = True
    duplicate: bool = True
    request_id: str
    event_type: str
    received_at: str


class ProcessedResponse(BaseModel):
    success: bool = True
    request_id: str
    event_type: str
    received_at: str
    environment: str
    signature: SignatureSummary
    database_logged: bool
    ack: AckResult


class EventBreakdown(BaseModel):
    event_type: str
    count: int
    verified: int


class RecentError(BaseModel):
    request_id: str
    event_type: str
    source_ip: Optional[str] = None
    received_at: datetime


class WebhookStats(BaseModel):
    total24h: int = 0
    uniqueEvents: int = 0
    uniqueIps: int = 0
    verified: int = 0
    eventBreakdown: list[EventBreakdown] = Field(default_factory=list)
    recentErrors: list[RecentError] = Field(default_factory=list)


class WebhookStatsResponse(BaseModel):
    success: bool = True
    stats: WebhookStats
    error: Optional[str] = None


class WebhookLogEntry(BaseModel):
    id: int
    request_id: str
    event_type: str
    signature_verified: bool
    source_ip: Optional[str] = None
    origin: Optional[str] = None
    received_at: datetime


class WebhookLogListResponse(BaseModel):
    success: bool = True
    logs: list[WebhookLogEntry]
    total: int
    page: int
    perPage: int
    error: Optional[str] = None


class WebhookConfig(BaseModel):
    webhookUrl: str
    apiKey: str
    environment: str
    requireSignature: bool
    rateLimit: int


class WebhookConfigResponse(BaseModel):
    success: bool = True
    config: WebhookConfig
