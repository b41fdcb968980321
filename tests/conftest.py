"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import httpx
import pytest

from matter_intake.conversation.dialogue import DialogueManager
from matter_intake.conversation.state_machine import IntakeStateMachine
from matter_intake.schemas.api_schema import MatterCreationRequest
from matter_intake.schemas.team_schema import TeamConfig
from matter_intake.stores.session_store import InMemorySessionStore
from matter_intake.stores.team_store import TeamConfigCache, TeamConfigStore
from matter_intake.stores.webhook_log import InMemoryWebhookLogStore
from matter_intake.webhooks.delivery import WebhookService

TEAM_ID = "test-legal-aid"
SERVICE = "Family Law"
WEBHOOK_URL = "https://hooks.example.test/intake"
WEBHOOK_SECRET = "wh_f1be34ea3bff.dGVzdC1zZWNyZXQ"

SCENARIO_A_REPLIES = [
    "Jane Doe",
    "jane@example.com",
    "555-123-4567",
    "John Doe",
    "Seeking custody arrangement for our two children",
]


def make_team(
    team_id: str = TEAM_ID,
    enabled: bool = True,
    url: Optional[str] = WEBHOOK_URL,
    secret: Optional[str] = WEBHOOK_SECRET,
    events: Optional[dict] = None,
    max_retries: int = 3,
    retry_delay: int = 60,
    services: Optional[list[str]] = None,
) -> TeamConfig:
    """Helper to create a TeamConfig from its wire (camelCase) form."""
    return TeamConfig.model_validate({
        "id": team_id,
        "slug": f"{team_id}-slug",
        "name": "Test Legal Aid",
        "availableServices": services if services is not None else [SERVICE, "Employment Law"],
        "webhooks": {
            "enabled": enabled,
            "url": url,
            "secret": secret,
            "events": events if events is not None else {"matterCreation": True, "matterDetails": True},
            "retryConfig": {"maxRetries": max_retries, "retryDelay": retry_delay},
        },
    })


class Receiver:
    """Mock webhook endpoint recording every request.

    ``statuses`` are returned in order; the last one repeats.
    """

    def __init__(self, statuses: Iterable[int] = (200,)) -> None:
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.statuses) - 1)
        return httpx.Response(self.statuses[index], text="ok")

    def events(self) -> list[str]:
        return [r.headers["X-Webhook-Event"] for r in self.requests]


class MonotonicClock:
    """Injectable float clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class WallClock:
    """Injectable datetime clock for webhook scheduling tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_request(
    description: Optional[str] = None,
    session_id: str = "sess-1",
    service: Optional[str] = SERVICE,
    **kwargs,
) -> MatterCreationRequest:
    return MatterCreationRequest(
        team_id=kwargs.pop("team_id", TEAM_ID),
        session_id=session_id,
        service=service,
        description=description,
        **kwargs,
    )


@pytest.fixture
def team():
    return make_team()


@pytest.fixture
def team_cache(team):
    return TeamConfigCache(TeamConfigStore([team]))


@pytest.fixture
def log_store():
    return InMemoryWebhookLogStore()


@pytest.fixture
def receiver():
    return Receiver()


@pytest.fixture
def wall_clock():
    return WallClock()


@pytest.fixture
def webhook_service(log_store, receiver, team_cache):
    return WebhookService(
        log_store,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(receiver)),
        team_cache=team_cache,
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def dialogue(session_store, team_cache, webhook_service):
    return DialogueManager(
        session_store=session_store,
        team_cache=team_cache,
        webhooks=webhook_service,
    )


@pytest.fixture
def state_machine():
    return IntakeStateMachine()
