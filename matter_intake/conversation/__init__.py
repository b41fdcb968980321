from matter_intake.conversation.dialogue import DialogueManager, TurnResult
from matter_intake.conversation.extraction import ExtractionAssistant
from matter_intake.conversation.state_machine import (
    IntakeStateMachine,
    IntakeTrigger,
    InvalidTransitionError,
)
from matter_intake.conversation.validators import Accepted, Rejected, RejectionReason

__all__ = [
    "DialogueManager",
    "TurnResult",
    "ExtractionAssistant",
    "IntakeStateMachine",
    "IntakeTrigger",
    "InvalidTransitionError",
    "Accepted",
    "Rejected",
    "RejectionReason",
]
