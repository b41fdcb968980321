"""
Static registry of the intake slots, in the order they are asked.

A slot's prompt is either literal text or rendered from the selected
service name; both go through ``render_prompt`` so there is a single
interpolation site.

Usage:
    slot = first_unfilled_slot(session)
    text = render_prompt(slot.prompt, session.service)
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from matter_intake.conversation.validators import (
    ValidationResult,
    check_description,
    check_email,
    check_name,
    check_opposing_party,
    check_phone,
    is_placeholder,
)
from matter_intake.schemas.session_schema import IntakeSession

logger = logging.getLogger(__name__)

NAME = "name"
EMAIL = "email"
PHONE = "phone"
OPPOSING_PARTY = "opposing_party"
DESCRIPTION = "description"

FALLBACK_SERVICE_LABEL = "legal"


@dataclass(frozen=True)
class LiteralPrompt:
    text: str


@dataclass(frozen=True)
class TemplatedPrompt:
    render: Callable[[str], str]


Prompt = Union[LiteralPrompt, TemplatedPrompt]


def render_prompt(prompt: Prompt, service: Optional[str]) -> str:
    """Resolve a prompt to the text shown to the visitor."""
    if isinstance(prompt, LiteralPrompt):
        return prompt.text
    return prompt.render(service or FALLBACK_SERVICE_LABEL)


@dataclass(frozen=True)
class Slot:
    """Schema for a single required intake field."""

    id: str
    position: int
    display_name: str
    prompt: Prompt
    check: Callable[[str], ValidationResult]
    extractable: bool = True
    rejects_service_echo: bool = False
    must_differ_from: tuple[str, ...] = ()


SLOTS: tuple[Slot, ...] = (
    Slot(
        id=NAME,
        position=1,
        display_name="full name",
        prompt=TemplatedPrompt(
            lambda service: (
                f"I'm here to help with your {service} matter. "
                "To get started, could you tell me your full name?"
            )
        ),
        check=check_name,
    ),
    Slot(
        id=EMAIL,
        position=2,
        display_name="email address",
        prompt=LiteralPrompt("Thank you. What's the best email address to reach you?"),
        check=check_email,
    ),
    Slot(
        id=PHONE,
        position=3,
        display_name="phone number",
        prompt=LiteralPrompt("What's a good phone number where our team can reach you?"),
        check=check_phone,
    ),
    Slot(
        id=OPPOSING_PARTY,
        position=4,
        display_name="opposing party",
        prompt=TemplatedPrompt(
            lambda service: (
                f"Who is the other party involved in your {service} matter? "
                "For example, a spouse, landlord, or employer."
            )
        ),
        check=check_opposing_party,
    ),
    Slot(
        id=DESCRIPTION,
        position=5,
        display_name="case description",
        prompt=TemplatedPrompt(
            lambda service: (
                f"Please briefly describe your {service} situation: "
                "what happened, and what outcome are you hoping for?"
            )
        ),
        check=check_description,
        # Free text is only ever taken from a direct reply, never extracted
        extractable=False,
        rejects_service_echo=True,
        must_differ_from=(OPPOSING_PARTY,),
    ),
)

SLOT_IDS: tuple[str, ...] = tuple(slot.id for slot in SLOTS)


def get_slot(slot_id: str) -> Slot:
    for slot in SLOTS:
        if slot.id == slot_id:
            return slot
    raise ValueError(f"Unknown slot: {slot_id}")


def is_slot_filled(session: IntakeSession, slot_id: str) -> bool:
    """A slot counts as filled once it holds a non-placeholder answer."""
    entry = session.answers.get(slot_id)
    return entry is not None and not is_placeholder(entry.answer, entry.question)


def missing_slots(session: IntakeSession) -> list[Slot]:
    """All slots still unfilled, in registry order."""
    return [slot for slot in SLOTS if not is_slot_filled(session, slot.id)]


def first_unfilled_slot(session: IntakeSession) -> Optional[Slot]:
    missing = missing_slots(session)
    return missing[0] if missing else None


def extractable_slot_ids() -> list[str]:
    return [slot.id for slot in SLOTS if slot.extractable]
