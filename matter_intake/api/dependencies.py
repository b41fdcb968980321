"""Service container shared by the HTTP routes."""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

from fastapi import Request

from matter_intake.config import AppConfig, settings
from matter_intake.conversation.dialogue import DialogueManager
from matter_intake.conversation.extraction import ExtractionAssistant
from matter_intake.stores.session_store import InMemorySessionStore
from matter_intake.stores.team_store import TeamConfigCache, TeamConfigStore
from matter_intake.stores.webhook_log import InMemoryWebhookLogStore, SqlWebhookLogStore
from matter_intake.webhooks.delivery import WebhookService
from matter_intake.webhooks.scheduler import RetryScheduler

logger = logging.getLogger(__name__)


@dataclass
class IntakeServices:
    """Everything a request handler needs, wired once per application."""

    dialogue: DialogueManager
    webhooks: WebhookService
    team_cache: TeamConfigCache
    log_store: Union[InMemoryWebhookLogStore, SqlWebhookLogStore]
    scheduler: Optional[RetryScheduler] = None


def build_services(config: AppConfig = settings) -> IntakeServices:
    """Wire production services from configuration."""
    team_cache = TeamConfigCache(
        TeamConfigStore.from_file(config.teams.teams_file),
        ttl_seconds=config.teams.cache_ttl_seconds,
    )
    log_store = SqlWebhookLogStore(config.database_url)
    webhooks = WebhookService(
        log_store,
        team_cache=team_cache,
        timeout_sec=config.webhooks.timeout_sec,
        user_agent=config.webhooks.user_agent,
    )

    extraction = None
    if config.model.extraction_enabled and os.getenv("OPENAI_API_KEY"):
        extraction = ExtractionAssistant(
            model=config.model.llm_model,
            temperature=config.model.llm_temperature,
            max_tokens=config.model.llm_max_tokens,
            timeout_sec=config.model.extraction_timeout_sec,
        )
    else:
        logger.info("Extraction pass disabled (no OPENAI_API_KEY or EXTRACTION_ENABLED=false)")

    dialogue = DialogueManager(
        session_store=InMemorySessionStore(config.sessions.ttl_seconds),
        team_cache=team_cache,
        webhooks=webhooks,
        extraction=extraction,
    )
    scheduler = None
    if config.webhooks.auto_retry:
        scheduler = RetryScheduler(webhooks, config.webhooks.retry_poll_interval_sec)

    return IntakeServices(
        dialogue=dialogue,
        webhooks=webhooks,
        team_cache=team_cache,
        log_store=log_store,
        scheduler=scheduler,
    )


def get_services(request: Request) -> IntakeServices:
    return request.app.state.services
