"""
Webhook audit row - one per processed (non-duplicate) inbound webhook.
Best-effort: the receiver acknowledges even when this insert fails.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from stockloyal.database import Base


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(String(191), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, default="unknown")

    # Exact bytes received, decoded as UTF-8 (undecodable bytes replaced)
    payload: Mapped[Optional[str]] = mapped_column(Text)

    signature_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    source_ip: Mapped[Optional[str]] = mapped_column(String(64))
    origin: Mapped[Optional[str]] = mapped_column(String(255))
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        Index("ix_webhook_logs_request_id", "request_id"),
        Index("ix_webhook_logs_event_type", "event_type"),
        Index("ix_webhook_logs_received_at", "received_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookLog {self.request_id} {self.event_type}>"
