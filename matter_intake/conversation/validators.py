"""
Answer validation for intake slots.

Each check returns a structured result instead of a bare boolean so the
reason a reply was turned down stays inspectable:

1. Placeholder/template echo: the reply repeats a prompt or a template
2. Duplicate detection: the reply is already stored for another slot
3. Context checks: service-name echo, repeats of another answer
4. Type checks: per-slot shape (name, email, phone, party)

Rejections are not errors: the dialogue simply re-prompts the same slot.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional, Union

from matter_intake.utils import normalize_phone, normalize_text

if TYPE_CHECKING:
    from matter_intake.conversation.slot_registry import Slot

logger = logging.getLogger(__name__)

# Validation thresholds
MIN_NAME_LENGTH = 2
MAX_NAME_WORDS = 6
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15
MIN_DESCRIPTION_LENGTH = 5
MIN_QUESTION_ECHO_LENGTH = 12

PHONE_PATTERN = re.compile(r"^\+?[\d\s().\-]{7,24}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$")
EMAIL_SEARCH_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]{2,}")

PLACEHOLDER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^what'?s\b",
        r"^what\s+is\b",
        r"^please\s+(provide|enter|share|tell|describe|type|give)\b",
        r"^(enter|type|insert|add)\s+your\b",
        r"^your\s+(full\s+|legal\s+)*(name|email|e-mail|phone|number|address|description)\b",
        r"\{\{.*?\}\}",
        r"\$\{.*?\}",
        r"^\[.*\]$",
        r"^<.*>$",
        r"^(null|undefined|placeholder|lorem ipsum.*|x{3,}|\.{3,}|-{2,})$",
    )
]


class RejectionReason(str, Enum):
    """Why a reply was not accepted for a slot."""

    EMPTY = "empty"
    PLACEHOLDER = "placeholder"
    DUPLICATE = "duplicate"
    SERVICE_ECHO = "service_echo"
    REPEATS_OTHER_ANSWER = "repeats_other_answer"
    INVALID_NAME = "invalid_name"
    INVALID_EMAIL = "invalid_email"
    INVALID_PHONE = "invalid_phone"
    CONTACT_AS_PARTY = "contact_as_party"
    TOO_SHORT = "too_short"


@dataclass(frozen=True)
class Accepted:
    """The reply is usable as the slot's value."""
    value: str

    accepted = True


@dataclass(frozen=True)
class Rejected:
    """The reply was turned down; ``message`` is shown to the visitor when set."""
    reason: RejectionReason
    message: str = ""

    accepted = False


ValidationResult = Union[Accepted, Rejected]


def _clean(value: str) -> str:
    return value.replace("’", "'").strip()


def is_placeholder(value: Optional[str], question: Optional[str] = None) -> bool:
    """True for empty replies, template tokens, and echoes of a prompt."""
    if value is None:
        return True
    cleaned = _clean(value)
    if not cleaned:
        return True
    if any(pattern.search(cleaned) for pattern in PLACEHOLDER_PATTERNS):
        return True
    if question:
        reply = normalize_text(cleaned)
        prompt = normalize_text(_clean(question))
        if reply == prompt:
            return True
        if len(reply) >= MIN_QUESTION_ECHO_LENGTH and reply in prompt:
            return True
    return False


def looks_like_phone(value: str) -> bool:
    cleaned = value.strip()
    if not PHONE_PATTERN.match(cleaned):
        return False
    digits = normalize_phone(cleaned).lstrip("+")
    return MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS


def looks_like_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def contains_email(value: str) -> bool:
    return bool(EMAIL_SEARCH_PATTERN.search(value))


# ---------------------------------------------------------------------- #
# Type checks, one per slot
# ---------------------------------------------------------------------- #

def check_name(value: str) -> ValidationResult:
    words = value.split()
    if (
        len(value) < MIN_NAME_LENGTH
        or len(words) > MAX_NAME_WORDS
        or not re.search(r"[^\W\d_]", value)
        or re.search(r"[\d@]", value)
    ):
        return Rejected(
            RejectionReason.INVALID_NAME,
            "That doesn't look like a name.",
        )
    return Accepted(value)


def check_email(value: str) -> ValidationResult:
    if not looks_like_email(value):
        return Rejected(
            RejectionReason.INVALID_EMAIL,
            "That doesn't look like a valid email address.",
        )
    return Accepted(value)


def check_phone(value: str) -> ValidationResult:
    if not looks_like_phone(value):
        return Rejected(
            RejectionReason.INVALID_PHONE,
            "That doesn't look like a valid phone number.",
        )
    return Accepted(value)


def check_opposing_party(value: str) -> ValidationResult:
    if looks_like_phone(value) or contains_email(value):
        return Rejected(
            RejectionReason.CONTACT_AS_PARTY,
            "I need the name of the other party rather than their contact details.",
        )
    if len(value) < MIN_NAME_LENGTH or not re.search(r"[^\W\d_]", value):
        return Rejected(RejectionReason.TOO_SHORT)
    return Accepted(value)


def check_description(value: str) -> ValidationResult:
    if len(value) < MIN_DESCRIPTION_LENGTH:
        return Rejected(
            RejectionReason.TOO_SHORT,
            "Could you share a little more detail about your situation?",
        )
    return Accepted(value)


# ---------------------------------------------------------------------- #
# Full validation for one reply
# ---------------------------------------------------------------------- #

def validate_answer(
    slot: "Slot",
    raw_value: Optional[str],
    *,
    question: Optional[str] = None,
    service: Optional[str] = None,
    other_answers: Optional[Mapping[str, str]] = None,
) -> ValidationResult:
    """
    Decide whether ``raw_value`` is an acceptable value for ``slot``.

    Args:
        slot: The slot being answered.
        raw_value: The visitor's reply.
        question: The prompt text the visitor saw (echo detection).
        service: The selected service (service-name echo detection).
        other_answers: Already stored answers, keyed by slot id.
    """
    if raw_value is None or not raw_value.strip():
        return Rejected(RejectionReason.EMPTY)

    value = _clean(raw_value)
    if is_placeholder(value, question):
        logger.debug("Slot '%s' rejected placeholder reply", slot.id)
        return Rejected(RejectionReason.PLACEHOLDER)

    others = {k: v for k, v in (other_answers or {}).items() if k != slot.id and v}
    normalized = normalize_text(value)

    for other_id in slot.must_differ_from:
        other = others.get(other_id)
        if other and normalize_text(other) == normalized:
            return Rejected(RejectionReason.REPEATS_OTHER_ANSWER)

    if any(normalize_text(v) == normalized for v in others.values()):
        logger.debug("Slot '%s' rejected duplicate reply", slot.id)
        return Rejected(RejectionReason.DUPLICATE)

    if slot.rejects_service_echo and service and normalize_text(service) in normalized:
        logger.debug("Slot '%s' rejected service-name echo", slot.id)
        return Rejected(
            RejectionReason.SERVICE_ECHO,
            "I already know the type of matter. Could you describe what happened in your own words?",
        )

    return slot.check(value)
