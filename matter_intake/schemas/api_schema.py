"""Request and response models for the HTTP surface."""

from typing import Any, Optional, Union

from pydantic import Field

from matter_intake.schemas.base import CamelModel
from matter_intake.schemas.session_schema import SlotAnswer


class MatterCreationRequest(CamelModel):
    """One intake turn as sent by the chat client.

    ``team_id`` is optional here so a missing value surfaces as the
    engine's own 400 rather than a schema validation error.
    """

    team_id: Optional[str] = None
    session_id: Optional[str] = None
    service: Optional[str] = None
    description: Optional[str] = None
    answers: dict[str, Union[SlotAnswer, str]] = Field(default_factory=dict)
    step: Optional[str] = None


class MatterCanvas(CamelModel):
    """Rendered summary shown once every slot is filled."""

    service: str
    matter_summary: str
    matter_description: str
    answers: dict[str, SlotAnswer]


class TurnResponse(CamelModel):
    step: str
    message: str
    session_id: Optional[str] = None
    selected_service: Optional[str] = None
    services: Optional[list[str]] = None
    next_slot: Optional[str] = None
    missing_slots: Optional[list[str]] = None
    answers: dict[str, SlotAnswer] = Field(default_factory=dict)
    matter_canvas: Optional[MatterCanvas] = None
    quality_score: Optional[dict[str, Any]] = None


class WebhookRetryRequest(CamelModel):
    webhook_id: Optional[str] = None
    team_id: Optional[str] = None


class WebhookTestRequest(CamelModel):
    team_id: Optional[str] = None
    webhook_type: Optional[str] = None
    test_payload: Optional[dict[str, Any]] = None


class ClearCacheRequest(CamelModel):
    team_id: Optional[str] = None
