"""
Best-effort slot extraction from a free-form reply.

A secondary pass: after the direct answer has been validated, the latest
reply is sent to a language model that may pick out other contact fields
the visitor volunteered ("I'm Jane, you can call me on 555-0100"). Any
failure (timeout, API error, malformed JSON) degrades to an empty result.
"""

import asyncio
import json
import logging
import re
from typing import Any, Iterable, Optional

import openai

from matter_intake.config import settings
from matter_intake.conversation.slot_registry import extractable_slot_ids
from matter_intake.prompts.prompt_templates import build_extraction_messages

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_extraction(raw: Optional[str], allowed_keys: Iterable[str]) -> dict[str, str]:
    """Pull the allowed string fields out of a model reply.

    Tolerates code fences and surrounding prose; anything that is not a
    JSON object yields an empty dict.
    """
    if not raw:
        return {}
    match = _JSON_OBJECT.search(raw)
    if not match:
        return {}
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.debug("Extraction reply was not valid JSON")
        return {}
    if not isinstance(data, dict):
        return {}

    allowed = set(allowed_keys)
    extracted: dict[str, str] = {}
    for key, value in data.items():
        if key not in allowed or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            value = str(value)
        if isinstance(value, str) and value.strip():
            extracted[key] = value.strip()
    return extracted


class ExtractionAssistant:
    """Asks the configured chat model to fill unfilled, extractable slots."""

    def __init__(
        self,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_sec: Optional[float] = None,
    ) -> None:
        self._client = client
        self.model = model or settings.model.llm_model
        self.temperature = (
            settings.model.llm_temperature if temperature is None else temperature
        )
        self.max_tokens = max_tokens or settings.model.llm_max_tokens
        self.timeout_sec = timeout_sec or settings.model.extraction_timeout_sec

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = openai.AsyncOpenAI()
        return self._client

    async def _complete(self, messages: list[dict[str, str]]) -> Optional[str]:
        response = await self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            return None
        message = response.choices[0].message
        return message.content if message is not None else None

    async def extract(
        self,
        last_prompt: Optional[str],
        raw_input: str,
        filled_slots: Iterable[str],
    ) -> dict[str, str]:
        """
        Extract values for slots that are still open.

        Args:
            last_prompt: The prompt the visitor was answering.
            raw_input: The visitor's reply.
            filled_slots: Slot ids that already hold an answer.

        Returns:
            Slot id -> raw extracted value. Never includes filled slots or
            the free-text description.
        """
        filled = set(filled_slots)
        allowed = [slot_id for slot_id in extractable_slot_ids() if slot_id not in filled]
        if not raw_input or not raw_input.strip() or not allowed:
            return {}

        messages = build_extraction_messages(last_prompt or "", raw_input, allowed, filled)
        try:
            raw = await asyncio.wait_for(self._complete(messages), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("Extraction timed out after %.1fs", self.timeout_sec)
            return {}
        except openai.OpenAIError as exc:
            logger.warning("Extraction call failed: %s", exc)
            return {}

        extracted = parse_extraction(raw, allowed)
        if extracted:
            logger.debug("Extraction proposed slots: %s", sorted(extracted))
        return extracted
