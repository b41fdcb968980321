"""
Finite state machine for the intake stage of a session.

Four stages and explicit transitions with triggers. The dialogue manager
rebuilds the machine from the stored stage on every turn and advances it
through the transition table, so a session can never jump to a stage
the table does not allow (e.g. submitting before every slot is filled).

Usage:
    sm = IntakeStateMachine()
    sm.transition(IntakeTrigger.SERVICE_SELECTED)
    assert sm.current_stage == IntakeStage.INFO_REQUEST
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from matter_intake.schemas.session_schema import IntakeStage

logger = logging.getLogger(__name__)


class IntakeTrigger(str, Enum):
    """Events that move a session between stages."""
    SERVICE_SELECTED = "service_selected"
    SLOT_PROMPTED = "slot_prompted"
    ALL_SLOTS_FILLED = "all_slots_filled"
    INTAKE_SUBMITTED = "intake_submitted"


@dataclass
class Transition:
    """A single valid stage transition."""
    from_stage: IntakeStage
    to_stage: IntakeStage
    trigger: IntakeTrigger


@dataclass
class StageEntry:
    """Recorded history entry for a stage visit."""
    stage: IntakeStage
    entered_at: datetime
    trigger: Optional[IntakeTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current stage."""


class IntakeStateMachine:
    """Deterministic stage machine for one intake session."""

    TRANSITIONS: list[Transition] = [
        # --- Service selection ---
        Transition(IntakeStage.SERVICE_SELECTION, IntakeStage.INFO_REQUEST,
                   IntakeTrigger.SERVICE_SELECTED),
        # All slots may already be known (client-echoed answers)
        Transition(IntakeStage.SERVICE_SELECTION, IntakeStage.AWAITING_CONFIRMATION,
                   IntakeTrigger.ALL_SLOTS_FILLED),

        # --- Slot filling ---
        Transition(IntakeStage.INFO_REQUEST, IntakeStage.INFO_REQUEST,
                   IntakeTrigger.SLOT_PROMPTED),
        Transition(IntakeStage.INFO_REQUEST, IntakeStage.AWAITING_CONFIRMATION,
                   IntakeTrigger.ALL_SLOTS_FILLED),

        # --- Confirmation gate ---
        Transition(IntakeStage.AWAITING_CONFIRMATION, IntakeStage.INTAKE_COMPLETE,
                   IntakeTrigger.INTAKE_SUBMITTED),
    ]

    def __init__(self, stage: IntakeStage = IntakeStage.SERVICE_SELECTION) -> None:
        self._current_stage = stage
        self._history: list[StageEntry] = [
            StageEntry(stage=stage, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_stage(self) -> IntakeStage:
        return self._current_stage

    def can_transition(self, trigger: IntakeTrigger) -> bool:
        return trigger in self.get_valid_triggers()

    def transition(self, trigger: IntakeTrigger) -> IntakeStage:
        """
        Execute a stage transition.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_stage == self._current_stage and t.trigger == trigger:
                old_stage = self._current_stage
                self._current_stage = t.to_stage
                self._history.append(StageEntry(
                    stage=self._current_stage,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "Stage transition: %s -> %s (trigger: %s)",
                    old_stage.value, self._current_stage.value, trigger.value,
                )
                return self._current_stage

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_stage.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[IntakeTrigger]:
        """Return all triggers valid from the current stage."""
        return [t.trigger for t in self.TRANSITIONS if t.from_stage == self._current_stage]

    def get_stage_trace(self) -> list[str]:
        """Return ordered list of stage names visited."""
        return [entry.stage.value for entry in self._history]

    def is_complete(self) -> bool:
        """All slots are filled (awaiting confirmation or already submitted)."""
        return self._current_stage in (
            IntakeStage.AWAITING_CONFIRMATION,
            IntakeStage.INTAKE_COMPLETE,
        )

    def is_terminal(self) -> bool:
        return self._current_stage == IntakeStage.INTAKE_COMPLETE
