"""
Offline console demo: runs a full matter intake without any API keys.

Uses the real dialogue manager, validators, stage machine and webhook
delivery, with in-memory stores and a mock HTTP receiver in place of the
team's webhook endpoint. No LLM, no database, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario intake
    python console_demo.py --scenario missing
"""

import argparse
import asyncio
import json
import uuid
from typing import Optional

import httpx

from matter_intake.conversation.dialogue import SUBMIT_STEP, DialogueManager
from matter_intake.schemas.api_schema import MatterCreationRequest, TurnResponse
from matter_intake.schemas.team_schema import TeamConfig
from matter_intake.stores.session_store import InMemorySessionStore
from matter_intake.stores.team_store import TeamConfigCache, TeamConfigStore
from matter_intake.stores.webhook_log import InMemoryWebhookLogStore
from matter_intake.webhooks.delivery import WebhookService
from matter_intake.webhooks.signing import verify

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_SECRET = "wh_f1be34ea3bff.ZGVtby1zZWNyZXQ"

DEMO_TEAM = TeamConfig.model_validate({
    "id": "demo-legal-aid",
    "slug": "demo-legal-aid",
    "name": "Demo Legal Aid",
    "availableServices": ["Family Law", "Employment Law", "Tenant Rights Law"],
    "webhooks": {
        "enabled": True,
        "url": "https://hooks.example.test/intake",
        "secret": DEMO_SECRET,
        "events": {"matterCreation": True, "matterDetails": True},
        "retryConfig": {"maxRetries": 3, "retryDelay": 60},
    },
})


def _receiver(request: httpx.Request) -> httpx.Response:
    """Mock webhook endpoint: checks the signature and echoes the event."""
    body = request.content.decode("utf-8")
    signature = request.headers.get("X-Webhook-Signature", "")
    valid = verify(body, signature, DEMO_SECRET)
    event = request.headers.get("X-Webhook-Event")
    colour = GREEN if valid else RED
    print(f"{DIM}  >> webhook {event} received, signature {'valid' if valid else 'INVALID'}{RESET}")
    print(f"{colour}{DIM}     {signature}{RESET}")
    return httpx.Response(200 if valid else 401, json={"received": event})


class ConsoleSession:
    """Drives the intake dialogue from the terminal."""

    SCENARIOS: dict[str, list[str]] = {
        "intake": [
            "Jane Doe",
            "jane@example.com",
            "555-123-4567",
            "John Doe",
            "Seeking custody arrangement for our two children",
            SUBMIT_STEP,
        ],
        "missing": [
            "Jane Doe",
            "jane@example.com",
            "what is missing?",
            "not a phone",
            "(555) 123-4567",
            "John Doe",
            "John Doe",
            "Seeking custody arrangement for our two children",
            SUBMIT_STEP,
        ],
    }

    MAX_INPUT_LENGTH = 2000

    def __init__(self, service: str = "Family Law") -> None:
        self.service = service
        self.session_id = f"demo-{uuid.uuid4().hex[:8]}"
        self.log_store = InMemoryWebhookLogStore()
        self.team_cache = TeamConfigCache(TeamConfigStore([DEMO_TEAM]))
        self.webhooks = WebhookService(
            self.log_store,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(_receiver)),
            team_cache=self.team_cache,
        )
        self.dialogue = DialogueManager(
            session_store=InMemorySessionStore(),
            team_cache=self.team_cache,
            webhooks=self.webhooks,
        )
        self.step: Optional[str] = None

    def agent_say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[Intake]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    async def send(self, text: Optional[str]) -> TurnResponse:
        step = None
        description = text
        if text == SUBMIT_STEP:
            step, description = SUBMIT_STEP, None
        response = await self.dialogue.handle_request(MatterCreationRequest(
            team_id=DEMO_TEAM.id,
            session_id=self.session_id,
            service=self.service,
            description=description,
            step=step,
        ))
        await self.dialogue.drain()
        self.step = response.step
        self.agent_say(response.message)
        self.system_log(f"Step: {response.step}")
        if response.missing_slots:
            self.system_log(f"Missing: {', '.join(response.missing_slots)}")
        return response

    async def _summary(self) -> None:
        stats = await self.webhooks.get_stats(DEMO_TEAM.id)
        print(f"{DIM}  Webhook stats: {json.dumps(stats.to_wire())}{RESET}")
        await self.webhooks.aclose()

    async def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  MATTER INTAKE - Scenario: {scenario}{RESET}")
        print(f"{BOLD}  Team: {DEMO_TEAM.name} / Service: {self.service}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

        await self.send(None)
        for text in steps:
            print(f"\n{BLUE}[Visitor] {RESET}{text}")
            await self.send(text)

        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
        await self._summary()
        print(f"{BOLD}{'=' * 60}{RESET}")

    async def run(self) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  MATTER INTAKE - Console Demo{RESET}")
        print(f"{BOLD}  Team: {DEMO_TEAM.name} / Service: {self.service}{RESET}")
        print(f"{BOLD}  Type '{SUBMIT_STEP}' to submit, 'quit' to exit{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

        await self.send(None)
        while self.step != "intake-complete":
            user_input = input(f"\n{BLUE}[Visitor] {RESET}").strip()
            if not user_input:
                continue
            if user_input.lower() in ("quit", "exit", "q"):
                print(f"\n{DIM}Session ended.{RESET}")
                break
            if len(user_input) > self.MAX_INPUT_LENGTH:
                self.agent_say("That was quite long. Could you keep it a little shorter?")
                continue
            await self.send(user_input)

        await self._summary()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Offline matter intake demo")
    parser.add_argument("--scenario", choices=sorted(ConsoleSession.SCENARIOS))
    parser.add_argument("--service", default="Family Law")
    args = parser.parse_args(argv)

    session = ConsoleSession(service=args.service)
    if args.scenario:
        asyncio.run(session.run_scenario(args.scenario))
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
