"""Intake session state persisted between turns."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from matter_intake.schemas.base import CamelModel
from matter_intake.utils import utc_now


class IntakeStage(str, Enum):
    """Where a session sits in the intake lifecycle.

    The values double as the ``step`` reported to the client.
    """

    SERVICE_SELECTION = "service-selection"
    INFO_REQUEST = "info-request"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    INTAKE_COMPLETE = "intake-complete"


class SlotAnswer(CamelModel):
    """An accepted answer, keyed with the prompt the visitor actually saw."""

    question: str
    answer: str


class IntakeSession(CamelModel):
    """
    Per-session intake state owned by the dialogue manager.

    Stored as an opaque JSON blob keyed by ``session_id``. Slots that hold
    an accepted answer are never overwritten by later turns.
    """

    session_id: str
    team_id: str
    service: Optional[str] = None
    answers: dict[str, SlotAnswer] = Field(default_factory=dict)
    last_prompted_slot: Optional[str] = None
    last_prompt: Optional[str] = None
    stage: IntakeStage = IntakeStage.SERVICE_SELECTION
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def answer_for(self, slot_id: str) -> Optional[str]:
        entry = self.answers.get(slot_id)
        return entry.answer if entry else None

    def answer_values(self) -> dict[str, str]:
        """Flat slot id -> answer mapping."""
        return {slot_id: entry.answer for slot_id, entry in self.answers.items()}
