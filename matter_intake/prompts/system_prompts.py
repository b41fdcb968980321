"""
System prompts for the language-model passes.

The extraction prompt pins the model to a strict JSON contract and to the
slots it is allowed to fill. The free-text case description is never
offered to the model.
"""

EXTRACTION_SYSTEM_PROMPT = """
You extract contact details from a single message sent to a law firm's intake assistant.

Return ONLY a JSON object. No prose, no markdown, no code fences.

RULES:
- Use only these keys: {allowed_keys}.
- Include a key only when the message states that value explicitly.
- Copy values exactly as written; do not guess, complete, or reformat them.
- Never include keys listed as already collected.
- If nothing can be extracted, return {{}}.

Key meanings:
- name: the person's own full name
- email: the person's own email address
- phone: the person's own phone number
- opposing_party: the name of the other party in their legal matter
"""

SERVICE_SELECTION_MESSAGE = "What type of legal matter do you need help with?"

CONFIRMATION_PROMPT = (
    "Please review the details above. If everything looks right, submit your "
    "intake and our team will be in touch."
)

INTAKE_COMPLETE_MESSAGE = (
    "Thank you. Your {service} matter has been submitted to our team, and "
    "someone will contact you soon."
)
