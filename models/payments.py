from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, func

from database import Base


class PayPalWebhookEvent(Base):
    """PayPal webhook deliveries keyed by event id for idempotent processing."""

    __tablename__ = "paypal_webhook_events"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=True, index=True)
    resource_id = Column(String, nullable=True, index=True)
    processed = Column(Boolean, nullable=False, default=False)
    processing_error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
