"""Tests for the intake dialogue manager."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import (
    SCENARIO_A_REPLIES,
    SERVICE,
    TEAM_ID,
    WEBHOOK_SECRET,
    Receiver,
    make_request,
    make_team,
)
from matter_intake.conversation.dialogue import SUBMIT_STEP, DialogueManager, is_missing_info_request
from matter_intake.conversation.extraction import ExtractionAssistant
from matter_intake.conversation.slot_registry import SLOT_IDS, get_slot, render_prompt
from matter_intake.errors import MissingTeamIdError, TeamNotFoundError
from matter_intake.schemas.session_schema import IntakeStage
from matter_intake.stores.session_store import InMemorySessionStore
from matter_intake.stores.team_store import TeamConfigCache, TeamConfigStore
from matter_intake.stores.webhook_log import InMemoryWebhookLogStore
from matter_intake.webhooks.delivery import WebhookService
from matter_intake.webhooks.signing import verify


def _prompt(slot_id: str) -> str:
    return render_prompt(get_slot(slot_id).prompt, SERVICE)


async def _run(dialogue, replies, session_id="sess-1"):
    """Open the session, then send each reply. Returns every response."""
    responses = [await dialogue.handle_request(make_request(session_id=session_id))]
    for reply in replies:
        responses.append(await dialogue.handle_request(make_request(reply, session_id=session_id)))
    return responses


def _extraction(content: str) -> ExtractionAssistant:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    ))
    return ExtractionAssistant(client=client)


class TestMissingInfoIntent:
    @pytest.mark.parametrize("text", [
        "what is missing?",
        "What's missing",
        "what else do you need?",
        "What do you still need",
        "what's left?",
    ])
    def test_detected(self, text):
        assert is_missing_info_request(text) is True

    def test_long_message_is_not_intent(self):
        text = "My landlord keeps asking me what is missing from the apartment inventory list"
        assert is_missing_info_request(text) is False

    def test_plain_answer_is_not_intent(self):
        assert is_missing_info_request("Jane Doe") is False


class TestRequestResolution:
    @pytest.mark.asyncio
    async def test_missing_team_id(self, dialogue):
        with pytest.raises(MissingTeamIdError):
            await dialogue.handle_request(make_request(team_id=None))

    @pytest.mark.asyncio
    async def test_unknown_team(self, dialogue):
        with pytest.raises(TeamNotFoundError):
            await dialogue.handle_request(make_request(team_id="nope"))

    @pytest.mark.asyncio
    async def test_team_found_by_slug(self, dialogue, session_store):
        response = await dialogue.handle_request(make_request(team_id=f"{TEAM_ID}-slug"))
        assert response.step == "info-request"
        session = await session_store.get("sess-1")
        assert session.team_id == TEAM_ID

    @pytest.mark.asyncio
    async def test_session_id_generated_when_absent(self, dialogue):
        response = await dialogue.handle_request(make_request(session_id=None))
        assert response.session_id

    @pytest.mark.asyncio
    async def test_session_from_another_team_is_not_continued(
        self, session_store, webhook_service, receiver
    ):
        cache = TeamConfigCache(TeamConfigStore([make_team(), make_team("team-b")]))
        manager = DialogueManager(session_store, cache, webhook_service)
        await _run(manager, SCENARIO_A_REPLIES[:4], session_id="shared")

        response = await manager.handle_request(
            make_request(SCENARIO_A_REPLIES[4], session_id="shared", team_id="team-b")
        )
        await manager.drain()

        assert response.step == "info-request"
        assert response.answers == {}
        assert response.next_slot == "name"
        stored = await session_store.get("shared")
        assert stored.team_id == "team-b"
        assert stored.answers == {}
        assert receiver.requests == []


class TestServiceSelection:
    @pytest.mark.asyncio
    async def test_no_service_lists_team_services(self, dialogue, session_store):
        response = await dialogue.handle_request(make_request(service=None))
        assert response.step == "service-selection"
        assert response.services == [SERVICE, "Employment Law"]
        assert await session_store.get("sess-1") is None

    @pytest.mark.asyncio
    async def test_default_services_when_team_has_none(self, session_store):
        team = make_team(services=[])
        manager = DialogueManager(session_store, TeamConfigCache(TeamConfigStore([team])))
        response = await manager.handle_request(make_request(service=None))
        assert "Special Education and IEP Advocacy" in response.services
        assert len(response.services) == 6

    @pytest.mark.asyncio
    async def test_service_label_is_canonicalized(self, dialogue):
        response = await dialogue.handle_request(make_request(service="family   law"))
        assert response.selected_service == SERVICE

    @pytest.mark.asyncio
    async def test_stored_service_wins(self, dialogue):
        await dialogue.handle_request(make_request())
        response = await dialogue.handle_request(make_request("Jane Doe", service="Employment Law"))
        assert response.selected_service == SERVICE
        assert SERVICE in response.answers["name"].question


class TestScenarioA:
    @pytest.mark.asyncio
    async def test_five_answers_reach_confirmation(self, dialogue, receiver):
        responses = await _run(dialogue, SCENARIO_A_REPLIES)
        final = responses[-1]

        assert final.step == "awaiting-confirmation"
        canvas = final.matter_canvas
        assert canvas.service == SERVICE
        assert {k: v.answer for k, v in canvas.answers.items()} == dict(zip(SLOT_IDS, SCENARIO_A_REPLIES))
        for value in SCENARIO_A_REPLIES:
            assert value in canvas.matter_summary
        assert canvas.matter_description.startswith("Family Law matter involving John Doe")

        await dialogue.drain()
        assert receiver.events() == ["matter_creation"]

    @pytest.mark.asyncio
    async def test_prompts_follow_registry_order(self, dialogue):
        responses = await _run(dialogue, SCENARIO_A_REPLIES[:-1])
        assert [r.next_slot for r in responses] == list(SLOT_IDS)
        assert [r.message for r in responses] == [_prompt(slot_id) for slot_id in SLOT_IDS]

    @pytest.mark.asyncio
    async def test_answers_keyed_with_prompt_shown(self, dialogue):
        responses = await _run(dialogue, SCENARIO_A_REPLIES[:2])
        answers = responses[-1].answers
        assert answers["name"].question == _prompt("name")
        assert answers["email"].question == _prompt("email")

    @pytest.mark.asyncio
    async def test_matter_creation_webhook_is_signed(self, dialogue, receiver):
        await _run(dialogue, SCENARIO_A_REPLIES)
        await dialogue.drain()

        request = receiver.requests[0]
        body = request.content.decode("utf-8")
        assert verify(body, request.headers["X-Webhook-Signature"], WEBHOOK_SECRET)
        payload = json.loads(body)
        assert payload["event"] == "matter_creation"
        assert payload["teamId"] == TEAM_ID
        assert payload["sessionId"] == "sess-1"
        assert payload["data"]["answers"]["email"] == "jane@example.com"
        assert "## Contact Information" in payload["data"]["contactSummary"]


class TestScenarioB:
    @pytest.mark.asyncio
    async def test_what_is_missing_names_only_phone(self, dialogue, session_store):
        await _run(dialogue, SCENARIO_A_REPLIES[:2])
        before = (await session_store.get("sess-1")).model_dump()

        response = await dialogue.handle_request(make_request("what is missing?"))

        assert response.step == "info-request"
        assert response.next_slot == "phone"
        assert _prompt("phone") in response.message
        assert _prompt("name") not in response.message
        assert _prompt("email") not in response.message
        assert (await session_store.get("sess-1")).model_dump() == before

    @pytest.mark.asyncio
    async def test_conversation_continues_after_missing_question(self, dialogue):
        await _run(dialogue, SCENARIO_A_REPLIES[:2])
        await dialogue.handle_request(make_request("what is missing?"))
        response = await dialogue.handle_request(make_request("555-123-4567"))
        assert response.answers["phone"].answer == "555-123-4567"
        assert response.next_slot == "opposing_party"


class TestRejections:
    @pytest.mark.asyncio
    async def test_invalid_phone_reprompts_with_reason(self, dialogue):
        await _run(dialogue, SCENARIO_A_REPLIES[:2])
        response = await dialogue.handle_request(make_request("not a phone"))
        assert response.next_slot == "phone"
        assert response.message.startswith("That doesn't look like a valid phone number.")
        assert "phone" not in response.answers

    @pytest.mark.asyncio
    async def test_first_turn_service_sentence_not_taken_as_name(self, dialogue):
        response = await dialogue.handle_request(
            make_request("I'm looking for legal help with my Family Law issue.")
        )
        assert response.next_slot == "name"
        assert response.answers == {}
        assert response.message == _prompt("name")

    @pytest.mark.asyncio
    async def test_bare_service_label_is_ignored(self, dialogue):
        response = await dialogue.handle_request(make_request("Family Law"))
        assert response.answers == {}
        assert response.next_slot == "name"

    @pytest.mark.asyncio
    async def test_description_repeating_opposing_party(self, dialogue):
        await _run(dialogue, SCENARIO_A_REPLIES[:4])
        response = await dialogue.handle_request(make_request("John Doe"))
        assert response.step == "info-request"
        assert response.next_slot == "description"

    @pytest.mark.asyncio
    async def test_description_with_service_name(self, dialogue):
        await _run(dialogue, SCENARIO_A_REPLIES[:4])
        response = await dialogue.handle_request(make_request("It's a family law problem"))
        assert response.next_slot == "description"

    @pytest.mark.asyncio
    async def test_placeholder_reply(self, dialogue):
        await _run(dialogue, SCENARIO_A_REPLIES[:1])
        response = await dialogue.handle_request(make_request("{{email}}"))
        assert response.next_slot == "email"
        assert "email" not in response.answers


class TestNonOverwrite:
    @pytest.mark.asyncio
    async def test_free_text_for_other_slot_does_not_fill_it(self, dialogue, session_store):
        await _run(dialogue, SCENARIO_A_REPLIES[:1])
        response = await dialogue.handle_request(make_request("555-123-4567"))

        assert response.next_slot == "email"
        assert "phone" not in response.answers
        assert "email" not in response.answers
        stored = await session_store.get("sess-1")
        assert stored.answer_for("phone") is None
        assert stored.last_prompted_slot == "email"

    @pytest.mark.asyncio
    async def test_echoed_answer_cannot_replace_filled_slot(self, dialogue):
        await _run(dialogue, SCENARIO_A_REPLIES[:1])
        response = await dialogue.handle_request(
            make_request("jane@example.com", answers={"name": "Someone Else"})
        )
        assert response.answers["name"].answer == "Jane Doe"
        assert response.answers["email"].answer == "jane@example.com"

    @pytest.mark.asyncio
    async def test_extraction_cannot_replace_filled_slot(self, session_store, team_cache, webhook_service):
        manager = DialogueManager(
            session_store, team_cache, webhook_service,
            extraction=_extraction('{"name": "Other Person", "phone": "555-987-6543"}'),
        )
        await _run(manager, SCENARIO_A_REPLIES[:1])
        response = await manager.handle_request(make_request("jane@example.com"))
        assert response.answers["name"].answer == "Jane Doe"
        assert response.answers["phone"].answer == "555-987-6543"
        assert response.next_slot == "opposing_party"


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_repeated_reply_leaves_session_unchanged(self, dialogue, session_store):
        await _run(dialogue, SCENARIO_A_REPLIES[:2])
        once = (await session_store.get("sess-1")).model_dump(exclude={"created_at", "updated_at"})

        await dialogue.handle_request(make_request(SCENARIO_A_REPLIES[1]))
        twice = (await session_store.get("sess-1")).model_dump(exclude={"created_at", "updated_at"})

        assert twice == once
        assert twice["last_prompted_slot"] == "phone"


class TestExtractionFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("completion", [
        SimpleNamespace(choices=[]),
        SimpleNamespace(choices=[SimpleNamespace(message=None)]),
    ])
    async def test_malformed_completion_does_not_fail_turn(self, session_store, team_cache, completion):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=completion)
        manager = DialogueManager(
            session_store, team_cache, extraction=ExtractionAssistant(client=client)
        )
        await manager.handle_request(make_request())
        response = await manager.handle_request(make_request("Jane Doe"))

        assert response.answers["name"].answer == "Jane Doe"
        assert response.next_slot == "email"


class TestExtractionMerge:
    @pytest.mark.asyncio
    async def test_extraction_fills_several_slots(self, session_store, team_cache):
        manager = DialogueManager(
            session_store, team_cache,
            extraction=_extraction(
                '{"name": "Jane Doe", "email": "jane@example.com", "description": "custody"}'
            ),
        )
        await manager.handle_request(make_request())
        response = await manager.handle_request(
            make_request("I'm Jane Doe, email me at jane@example.com")
        )
        assert response.answers["name"].answer == "Jane Doe"
        assert response.answers["email"].answer == "jane@example.com"
        assert "description" not in response.answers
        assert response.next_slot == "phone"

    @pytest.mark.asyncio
    async def test_extracted_values_are_validated(self, session_store, team_cache):
        manager = DialogueManager(
            session_store, team_cache,
            extraction=_extraction('{"phone": "call me", "opposing_party": "Jane Doe"}'),
        )
        await manager.handle_request(make_request())
        response = await manager.handle_request(make_request("Jane Doe"))
        assert set(response.answers) == {"name"}


class TestClientEchoedAnswers:
    @pytest.mark.asyncio
    async def test_only_known_unfilled_valid_answers_merged(self, dialogue):
        await dialogue.handle_request(make_request())
        response = await dialogue.handle_request(make_request(
            "Jane Doe",
            answers={
                "email": {"question": "Email?", "answer": "jane@example.com"},
                "phone": "not-a-phone",
                "favourite_colour": "blue",
            },
        ))
        assert set(response.answers) == {"name", "email"}
        assert response.answers["email"].question == "Email?"
        assert response.next_slot == "phone"

    @pytest.mark.asyncio
    async def test_all_answers_echoed_on_first_turn(self, dialogue):
        answers = dict(zip(SLOT_IDS, SCENARIO_A_REPLIES))
        response = await dialogue.handle_request(make_request(answers=answers))
        assert response.step == "awaiting-confirmation"


class TestCompletion:
    @pytest.mark.asyncio
    async def test_repeat_turn_does_not_refire(self, dialogue, receiver):
        await _run(dialogue, SCENARIO_A_REPLIES)
        response = await dialogue.handle_request(make_request("anything else?"))
        await dialogue.drain()
        assert response.step == "awaiting-confirmation"
        assert response.matter_canvas is not None
        assert receiver.events() == ["matter_creation"]

    @pytest.mark.asyncio
    async def test_submit_fires_matter_details_once(self, dialogue, receiver, session_store):
        await _run(dialogue, SCENARIO_A_REPLIES)
        first = await dialogue.handle_request(make_request(step=SUBMIT_STEP))
        second = await dialogue.handle_request(make_request(step=SUBMIT_STEP))
        await dialogue.drain()

        assert first.step == second.step == "intake-complete"
        assert SERVICE in first.message
        assert receiver.events() == ["matter_creation", "matter_details"]
        session = await session_store.get("sess-1")
        assert session.stage == IntakeStage.INTAKE_COMPLETE

        details = json.loads(receiver.requests[1].content)
        assert details["data"]["answers"]["name"] == {"question": _prompt("name"), "answer": "Jane Doe"}
        assert details["data"]["matterSummary"].startswith("# Family Law Matter Summary")

    @pytest.mark.asyncio
    async def test_submit_before_complete_is_ignored(self, dialogue, receiver):
        await dialogue.handle_request(make_request())
        response = await dialogue.handle_request(make_request("Jane Doe", step=SUBMIT_STEP))
        await dialogue.drain()
        assert response.step == "info-request"
        assert response.next_slot == "email"
        assert receiver.requests == []

    @pytest.mark.asyncio
    async def test_quality_scorer_result_returned(self, session_store, team_cache):
        scorer = MagicMock(return_value={"score": 80, "readyForLawyer": True})
        manager = DialogueManager(session_store, team_cache, quality_scorer=scorer)
        response = await manager.handle_request(make_request())
        assert response.quality_score == {"score": 80, "readyForLawyer": True}
        scorer.assert_called_once_with(SERVICE, {})


class TestWebhookIsolation:
    @pytest.mark.asyncio
    async def test_disabled_webhooks_send_nothing(self, session_store):
        team = make_team(enabled=False)
        cache = TeamConfigCache(TeamConfigStore([team]))
        receiver = Receiver()
        service = WebhookService(
            InMemoryWebhookLogStore(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(receiver)),
        )
        manager = DialogueManager(session_store, cache, service)
        responses = await _run(manager, SCENARIO_A_REPLIES)
        await manager.drain()
        assert responses[-1].step == "awaiting-confirmation"
        assert receiver.requests == []

    @pytest.mark.asyncio
    async def test_failing_delivery_does_not_fail_turn(self, session_store, team_cache):
        webhooks = MagicMock()
        webhooks.send_webhook = AsyncMock(side_effect=RuntimeError("network down"))
        manager = DialogueManager(session_store, team_cache, webhooks)
        responses = await _run(manager, SCENARIO_A_REPLIES)
        await manager.drain()
        assert responses[-1].step == "awaiting-confirmation"
        webhooks.send_webhook.assert_awaited_once()
        assert manager.pending_tasks == 0


class TestProcessTurn:
    @pytest.mark.asyncio
    async def test_does_not_mutate_input_session(self, team):
        from matter_intake.schemas.session_schema import IntakeSession

        manager = DialogueManager(InMemorySessionStore(), TeamConfigCache(TeamConfigStore([team])))
        session = IntakeSession(session_id="s", team_id=team.id)
        result = await manager.process_turn(session, team, service=SERVICE, raw_input="Jane Doe")

        assert session.answers == {}
        assert session.service is None
        assert result.session.answers["name"].answer == "Jane Doe"
        assert result.events == []
