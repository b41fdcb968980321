"""Dynamic text construction for extraction requests and matter summaries."""

from typing import Iterable, Mapping

from matter_intake.prompts.system_prompts import EXTRACTION_SYSTEM_PROMPT

CONTACT_LABELS: dict[str, str] = {
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
}


def build_extraction_messages(
    last_prompt: str,
    raw_input: str,
    allowed_keys: Iterable[str],
    filled_slots: Iterable[str],
) -> list[dict[str, str]]:
    """Build the chat messages for one extraction call."""
    allowed = ", ".join(allowed_keys)
    filled = ", ".join(sorted(filled_slots)) or "none"
    return [
        {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT.format(allowed_keys=allowed)},
        {
            "role": "user",
            "content": (
                f"Question the assistant asked: {last_prompt or '(none)'}\n"
                f"Already collected: {filled}\n\n"
                f"Message: {raw_input}"
            ),
        },
    ]


def build_contact_summary(answers: Mapping[str, str]) -> str:
    """Contact block used in the matter summary and the webhook payload."""
    lines = ["## Contact Information"]
    for key, label in CONTACT_LABELS.items():
        lines.append(f"- **{label}**: {answers.get(key) or 'Not provided'}")
    return "\n".join(lines)


def build_matter_description(service: str, answers: Mapping[str, str]) -> str:
    description = (answers.get("description") or "").strip()
    opposing = (answers.get("opposing_party") or "").strip()
    parts = [f"{service} matter"]
    if opposing:
        parts.append(f"involving {opposing}")
    text = " ".join(parts)
    if description:
        text = f"{text}: {description}"
    return text


def build_matter_summary(service: str, answers: Mapping[str, str]) -> str:
    """Markdown summary rendered on the matter canvas."""
    return "\n".join([
        f"# {service} Matter Summary",
        "",
        build_contact_summary(answers),
        "",
        "## Legal Matter",
        f"- **Practice Area**: {service}",
        f"- **Opposing Party**: {answers.get('opposing_party') or 'Not provided'}",
        f"- **Description**: {answers.get('description') or 'Not provided'}",
    ])


def build_confirmation_message(summary: str, confirmation_prompt: str) -> str:
    return f"Here's what I have so far:\n\n{summary}\n\n{confirmation_prompt}"


def build_missing_info_message(display_name: str, prompt: str) -> str:
    """Answer to "what else do you need?" naming only the next slot."""
    return f"To finish your intake I still need the {display_name}. {prompt}"
