"""
Dialogue manager: runs one intake turn.

Each turn works on a copy of the stored session and only hands it back
for persisting once the whole turn has been computed. Webhook events the
turn produces are dispatched after the session is saved, as background
tasks that never fail the turn.

Turn outline:
    1. Resolve the service (the stored choice wins once set)
    2. Completed sessions: re-show the summary, or accept the submit step
    3. "What is missing?" answers with the next prompt, changing nothing
    4. Validate the reply for the prompted slot and commit it
    5. Let the extraction pass fill other open slots
    6. Merge client-echoed answers that are known, open and valid
    7. Prompt the next open slot, or emit the matter summary
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

from matter_intake.conversation.extraction import ExtractionAssistant
from matter_intake.conversation.slot_registry import (
    SLOT_IDS,
    Slot,
    first_unfilled_slot,
    get_slot,
    is_slot_filled,
    missing_slots,
    render_prompt,
)
from matter_intake.conversation.state_machine import IntakeStateMachine, IntakeTrigger
from matter_intake.conversation.validators import Rejected, validate_answer
from matter_intake.errors import MissingTeamIdError, TeamNotFoundError
from matter_intake.logging_context import turn_context
from matter_intake.prompts.prompt_templates import (
    build_confirmation_message,
    build_contact_summary,
    build_matter_description,
    build_matter_summary,
    build_missing_info_message,
)
from matter_intake.prompts.system_prompts import (
    CONFIRMATION_PROMPT,
    INTAKE_COMPLETE_MESSAGE,
    SERVICE_SELECTION_MESSAGE,
)
from matter_intake.schemas.api_schema import MatterCanvas, MatterCreationRequest, TurnResponse
from matter_intake.schemas.session_schema import IntakeSession, IntakeStage, SlotAnswer
from matter_intake.schemas.team_schema import TeamConfig, WebhookEventType
from matter_intake.stores.session_store import InMemorySessionStore
from matter_intake.stores.team_store import TeamConfigCache
from matter_intake.utils import iso_timestamp, normalize_text, utc_now
from matter_intake.webhooks.delivery import WebhookService

logger = logging.getLogger(__name__)

SUBMIT_STEP = "submit-intake"
MAX_MISSING_INFO_WORDS = 10

MISSING_INFO_PATTERN = re.compile(
    r"\b("
    r"what(?:'s|\s+is)?\s+(?:else\s+)?(?:still\s+)?(?:missing|left|remaining)"
    r"|what\s+else\s+do\s+you\s+need"
    r"|what\s+do\s+you\s+(?:still\s+)?need"
    r"|what\s+(?:info|information|details)\s+(?:is|are)\s+(?:still\s+)?(?:missing|needed)"
    r")\b",
    re.IGNORECASE,
)

QualityScorer = Callable[[str, Mapping[str, str]], Optional[dict[str, Any]]]


def is_missing_info_request(text: str) -> bool:
    """True for short questions like "what is missing?" or "what else do you need"."""
    cleaned = text.replace("’", "'")
    return len(cleaned.split()) <= MAX_MISSING_INFO_WORDS and bool(MISSING_INFO_PATTERN.search(cleaned))


@dataclass
class PendingWebhook:
    """A webhook the turn wants sent once the session is saved."""
    event_type: WebhookEventType
    payload: dict[str, Any]


@dataclass
class TurnResult:
    """Outcome of one turn. ``session`` is None when nothing needs saving."""
    response: TurnResponse
    session: Optional[IntakeSession] = None
    events: list[PendingWebhook] = field(default_factory=list)


class DialogueManager:
    """
    Orchestrates intake turns for every team.

    Collaborators are injected so tests can use in-memory stores, a mocked
    extraction client and a mock HTTP transport.
    """

    def __init__(
        self,
        session_store: InMemorySessionStore,
        team_cache: TeamConfigCache,
        webhooks: Optional[WebhookService] = None,
        extraction: Optional[ExtractionAssistant] = None,
        quality_scorer: Optional[QualityScorer] = None,
    ) -> None:
        self.session_store = session_store
        self.team_cache = team_cache
        self.webhooks = webhooks
        self.extraction = extraction
        self.quality_scorer = quality_scorer
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Request entry point
    # ------------------------------------------------------------------ #

    async def handle_request(self, request: MatterCreationRequest) -> TurnResponse:
        """
        Resolve team and session for a client request and run the turn.

        Raises:
            MissingTeamIdError: The request has no team id.
            TeamNotFoundError: No team matches the id or slug.
        """
        if not request.team_id or not request.team_id.strip():
            raise MissingTeamIdError()
        team = await self.team_cache.get(request.team_id.strip())
        if team is None:
            raise TeamNotFoundError(request.team_id)

        session_id = request.session_id or str(uuid.uuid4())
        with turn_context(session_id, team.id):
            session = await self.session_store.get(session_id)
            if session is not None and session.team_id != team.id:
                logger.warning(
                    "Session belongs to team %s; starting a new intake for %s",
                    session.team_id, team.id,
                )
                session = None
            if session is None:
                logger.info("Starting intake session")
                session = IntakeSession(session_id=session_id, team_id=team.id)

            result = await self.process_turn(
                session,
                team,
                service=request.service,
                raw_input=request.description,
                step=request.step,
                answers=request.answers,
            )
            await self.commit(result, team)
        return result.response

    async def commit(self, result: TurnResult, team: TeamConfig) -> None:
        """Persist the turn's session, then dispatch its webhooks."""
        if result.session is not None:
            await self.session_store.put(result.session)
        for event in result.events:
            self._dispatch(team, event)

    # ------------------------------------------------------------------ #
    # Turn processing
    # ------------------------------------------------------------------ #

    async def process_turn(
        self,
        session: IntakeSession,
        team: TeamConfig,
        service: Optional[str] = None,
        raw_input: Optional[str] = None,
        step: Optional[str] = None,
        answers: Optional[Mapping[str, Union[SlotAnswer, str]]] = None,
    ) -> TurnResult:
        """Compute one turn without touching any store."""
        working = session.model_copy(deep=True)
        selected = working.service or self._resolve_service(service, team)
        if not selected:
            return TurnResult(response=TurnResponse(
                step=IntakeStage.SERVICE_SELECTION.value,
                message=SERVICE_SELECTION_MESSAGE,
                session_id=working.session_id,
                services=team.services(),
            ))
        if working.service and service and normalize_text(service) != normalize_text(working.service):
            logger.debug("Ignoring service change to %r; %r already selected", service, working.service)

        machine = IntakeStateMachine(working.stage)
        if machine.is_complete():
            return self._completed_turn(working, team, machine, step)

        raw = (raw_input or "").strip()
        # A bare repeat of the service label answers nothing
        if raw and normalize_text(raw) == normalize_text(selected):
            raw = ""

        if raw and is_missing_info_request(raw):
            response = self._missing_info_response(working, selected)
            if response is not None:
                return TurnResult(response=response)

        working.service = selected
        target = self._target_slot(working)
        rejection: Optional[Rejected] = None

        if raw and target is not None:
            question = working.last_prompt or render_prompt(target.prompt, selected)
            result = validate_answer(
                target, raw,
                question=question,
                service=selected,
                other_answers=working.answer_values(),
            )
            if result.accepted:
                self._commit_answer(working, target.id, question, result.value)
            else:
                rejection = result
                logger.info("Reply rejected for slot %s (%s)", target.id, result.reason.value)

        if raw and self.extraction is not None:
            await self._merge_extracted(working, selected, raw)

        if answers:
            self._merge_client_answers(working, selected, answers)

        quality = self._score(working, selected)
        next_slot = first_unfilled_slot(working)
        if next_slot is not None:
            return self._prompt_turn(working, machine, next_slot, target, rejection, quality)
        return self._summary_turn(working, team, machine, quality)

    # ------------------------------------------------------------------ #
    # Turn helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _resolve_service(requested: Optional[str], team: TeamConfig) -> Optional[str]:
        if not requested or not requested.strip():
            return None
        label = " ".join(requested.split())
        for service in team.services():
            if normalize_text(service) == normalize_text(label):
                return service
        return label

    @staticmethod
    def _target_slot(session: IntakeSession) -> Optional[Slot]:
        if session.last_prompted_slot and not is_slot_filled(session, session.last_prompted_slot):
            return get_slot(session.last_prompted_slot)
        return first_unfilled_slot(session)

    @staticmethod
    def _commit_answer(session: IntakeSession, slot_id: str, question: str, value: str) -> None:
        session.answers[slot_id] = SlotAnswer(question=question, answer=value)
        logger.info("Filled slot %s", slot_id)

    async def _merge_extracted(self, session: IntakeSession, service: str, raw: str) -> None:
        filled = [slot_id for slot_id in SLOT_IDS if is_slot_filled(session, slot_id)]
        extracted = await self.extraction.extract(session.last_prompt, raw, filled)
        for slot_id, value in extracted.items():
            if slot_id not in SLOT_IDS or is_slot_filled(session, slot_id):
                continue
            slot = get_slot(slot_id)
            if not slot.extractable:
                continue
            question = render_prompt(slot.prompt, service)
            result = validate_answer(
                slot, value,
                question=question,
                service=service,
                other_answers=session.answer_values(),
            )
            if result.accepted:
                self._commit_answer(session, slot_id, question, result.value)
            else:
                logger.debug("Extracted %s rejected (%s)", slot_id, result.reason.value)

    def _merge_client_answers(
        self,
        session: IntakeSession,
        service: str,
        answers: Mapping[str, Union[SlotAnswer, str]],
    ) -> None:
        for slot_id, entry in answers.items():
            if slot_id not in SLOT_IDS or is_slot_filled(session, slot_id):
                continue
            slot = get_slot(slot_id)
            if isinstance(entry, SlotAnswer):
                value, question = entry.answer, entry.question
            else:
                value, question = entry, render_prompt(slot.prompt, service)
            result = validate_answer(
                slot, value,
                question=question,
                service=service,
                other_answers=session.answer_values(),
            )
            if result.accepted:
                self._commit_answer(session, slot_id, question, result.value)

    def _score(self, session: IntakeSession, service: str) -> Optional[dict[str, Any]]:
        if self.quality_scorer is None:
            return None
        return self.quality_scorer(service, session.answer_values())

    def _missing_info_response(self, session: IntakeSession, service: str) -> Optional[TurnResponse]:
        next_slot = first_unfilled_slot(session)
        if next_slot is None:
            return None
        prompt = render_prompt(next_slot.prompt, service)
        return TurnResponse(
            step=IntakeStage.INFO_REQUEST.value,
            message=build_missing_info_message(next_slot.display_name, prompt),
            session_id=session.session_id,
            selected_service=service,
            next_slot=next_slot.id,
            missing_slots=[slot.id for slot in missing_slots(session)],
            answers=session.answers,
        )

    def _prompt_turn(
        self,
        session: IntakeSession,
        machine: IntakeStateMachine,
        next_slot: Slot,
        target: Optional[Slot],
        rejection: Optional[Rejected],
        quality: Optional[dict[str, Any]],
    ) -> TurnResult:
        prompt = render_prompt(next_slot.prompt, session.service)
        message = prompt
        # Only explain a rejection to someone who was actually asked for that slot
        if (
            rejection is not None
            and rejection.message
            and target is not None
            and target.id == next_slot.id
            and session.last_prompted_slot == target.id
        ):
            message = f"{rejection.message} {prompt}"

        trigger = (
            IntakeTrigger.SERVICE_SELECTED
            if machine.current_stage == IntakeStage.SERVICE_SELECTION
            else IntakeTrigger.SLOT_PROMPTED
        )
        machine.transition(trigger)
        session.stage = machine.current_stage
        session.last_prompted_slot = next_slot.id
        session.last_prompt = prompt
        session.updated_at = utc_now()

        response = TurnResponse(
            step=IntakeStage.INFO_REQUEST.value,
            message=message,
            session_id=session.session_id,
            selected_service=session.service,
            next_slot=next_slot.id,
            missing_slots=[slot.id for slot in missing_slots(session)],
            answers=session.answers,
            quality_score=quality,
        )
        return TurnResult(response=response, session=session)

    def _summary_turn(
        self,
        session: IntakeSession,
        team: TeamConfig,
        machine: IntakeStateMachine,
        quality: Optional[dict[str, Any]],
    ) -> TurnResult:
        machine.transition(IntakeTrigger.ALL_SLOTS_FILLED)
        session.stage = machine.current_stage
        session.last_prompted_slot = None
        session.last_prompt = CONFIRMATION_PROMPT
        session.updated_at = utc_now()

        canvas = self._build_canvas(session)
        values = session.answer_values()
        logger.info("All slots filled for team %s, awaiting confirmation", team.id)

        event = PendingWebhook(
            WebhookEventType.MATTER_CREATION,
            self._webhook_payload(WebhookEventType.MATTER_CREATION, session, {
                "service": session.service,
                "step": IntakeStage.AWAITING_CONFIRMATION.value,
                "matterDescription": canvas.matter_description,
                "contactSummary": build_contact_summary(values),
                "answers": values,
                "qualityScore": quality,
            }),
        )
        response = TurnResponse(
            step=IntakeStage.AWAITING_CONFIRMATION.value,
            message=build_confirmation_message(canvas.matter_summary, CONFIRMATION_PROMPT),
            session_id=session.session_id,
            selected_service=session.service,
            missing_slots=[],
            answers=session.answers,
            matter_canvas=canvas,
            quality_score=quality,
        )
        return TurnResult(response=response, session=session, events=[event])

    def _completed_turn(
        self,
        session: IntakeSession,
        team: TeamConfig,
        machine: IntakeStateMachine,
        step: Optional[str],
    ) -> TurnResult:
        canvas = self._build_canvas(session)
        quality = self._score(session, session.service)

        if machine.current_stage == IntakeStage.AWAITING_CONFIRMATION and step != SUBMIT_STEP:
            response = TurnResponse(
                step=IntakeStage.AWAITING_CONFIRMATION.value,
                message=build_confirmation_message(canvas.matter_summary, CONFIRMATION_PROMPT),
                session_id=session.session_id,
                selected_service=session.service,
                missing_slots=[],
                answers=session.answers,
                matter_canvas=canvas,
                quality_score=quality,
            )
            return TurnResult(response=response)

        events: list[PendingWebhook] = []
        persist: Optional[IntakeSession] = None
        if machine.current_stage == IntakeStage.AWAITING_CONFIRMATION:
            machine.transition(IntakeTrigger.INTAKE_SUBMITTED)
            session.stage = machine.current_stage
            session.updated_at = utc_now()
            persist = session
            logger.info("Intake submitted for team %s", team.id)
            events.append(PendingWebhook(
                WebhookEventType.MATTER_DETAILS,
                self._webhook_payload(WebhookEventType.MATTER_DETAILS, session, {
                    "service": session.service,
                    "step": IntakeStage.INTAKE_COMPLETE.value,
                    "matterSummary": canvas.matter_summary,
                    "matterDescription": canvas.matter_description,
                    "answers": {k: v.to_wire() for k, v in session.answers.items()},
                    "qualityScore": quality,
                }),
            ))

        response = TurnResponse(
            step=IntakeStage.INTAKE_COMPLETE.value,
            message=INTAKE_COMPLETE_MESSAGE.format(service=session.service),
            session_id=session.session_id,
            selected_service=session.service,
            missing_slots=[],
            answers=session.answers,
            matter_canvas=canvas,
            quality_score=quality,
        )
        return TurnResult(response=response, session=persist, events=events)

    @staticmethod
    def _build_canvas(session: IntakeSession) -> MatterCanvas:
        values = session.answer_values()
        return MatterCanvas(
            service=session.service,
            matter_summary=build_matter_summary(session.service, values),
            matter_description=build_matter_description(session.service, values),
            answers=session.answers,
        )

    @staticmethod
    def _webhook_payload(
        event_type: WebhookEventType, session: IntakeSession, data: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "event": event_type.value,
            "timestamp": iso_timestamp(),
            "teamId": session.team_id,
            "sessionId": session.session_id,
            "data": {k: v for k, v in data.items() if v is not None},
        }

    # ------------------------------------------------------------------ #
    # Background delivery
    # ------------------------------------------------------------------ #

    def _dispatch(self, team: TeamConfig, event: PendingWebhook) -> None:
        if self.webhooks is None:
            return
        task = asyncio.create_task(
            self._send(team, event), name=f"webhook-{event.event_type.value}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, team: TeamConfig, event: PendingWebhook) -> None:
        try:
            await self.webhooks.send_webhook(team.id, event.event_type, event.payload, team)
        except Exception:
            logger.exception("Background %s webhook failed", event.event_type.value)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every background delivery started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
