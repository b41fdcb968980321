"""Webhook attempt chain records kept for audit and replay."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import Field

from matter_intake.schemas.base import CamelModel
from matter_intake.schemas.team_schema import WebhookEventType
from matter_intake.utils import utc_now


class WebhookStatus(str, Enum):
    """Lifecycle of one logical delivery.

    pending -> success (terminal)
    pending -> failed -> retry -> pending -> ... until success or retries run out.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRY = "retry"


RETRYABLE_STATUSES = (WebhookStatus.FAILED, WebhookStatus.RETRY)


class WebhookAttemptChain(CamelModel):
    """One logical webhook delivery, including every retry of it."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    team_id: str
    event_type: WebhookEventType
    url: str
    payload: str
    status: WebhookStatus = WebhookStatus.PENDING
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class WebhookStats(CamelModel):
    pending: int = 0
    success: int = 0
    failed: int = 0
    retry: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.success + self.failed + self.retry

    def to_wire(self) -> dict:
        return {**super().to_wire(), "total": self.total}
