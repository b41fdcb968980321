"""HTTP routes: the intake turn endpoint and webhook operator endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query

from matter_intake.api.dependencies import IntakeServices, get_services
from matter_intake.errors import BadRequestError, TeamNotFoundError, WebhookNotRetryableError
from matter_intake.schemas.api_schema import (
    ClearCacheRequest,
    MatterCreationRequest,
    WebhookRetryRequest,
    WebhookTestRequest,
)
from matter_intake.schemas.team_schema import WebhookEventType
from matter_intake.schemas.webhook_schema import WebhookAttemptChain, WebhookStatus
from matter_intake.stores.webhook_log import DEFAULT_LOG_LIMIT
from matter_intake.utils import iso_timestamp
from matter_intake.webhooks.delivery import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

MAX_LOG_LIMIT = 500


@router.post("/matter-creation")
async def matter_creation(
    body: MatterCreationRequest,
    services: IntakeServices = Depends(get_services),
) -> dict:
    response = await services.dialogue.handle_request(body)
    return response.to_wire()


@router.get("/webhooks/logs")
async def webhook_logs(
    team_id: Optional[str] = Query(default=None, alias="teamId"),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=DEFAULT_LOG_LIMIT, ge=1, le=MAX_LOG_LIMIT),
    services: IntakeServices = Depends(get_services),
) -> dict:
    status_filter = None
    if status:
        try:
            status_filter = WebhookStatus(status)
        except ValueError:
            raise BadRequestError(f"Unknown status: {status}") from None
    logs = await services.webhooks.list_logs(team_id=team_id, status=status_filter, limit=limit)
    return {"success": True, "logs": [log.to_wire() for log in logs], "count": len(logs)}


async def _redeliver_all(webhooks: WebhookService, chains: list[WebhookAttemptChain]) -> None:
    for chain in chains:
        try:
            await webhooks.redeliver(chain)
        except Exception:
            logger.exception("Manual retry of webhook %s failed", chain.id)


@router.post("/webhooks/retry")
async def retry_webhooks(
    body: WebhookRetryRequest,
    background_tasks: BackgroundTasks,
    services: IntakeServices = Depends(get_services),
) -> dict:
    if body.webhook_id:
        chains = await services.webhooks.prepare_retry(webhook_id=body.webhook_id)
        if not chains:
            raise WebhookNotRetryableError()
        message = "Webhook retry initiated"
    elif body.team_id:
        chains = await services.webhooks.prepare_retry(team_id=body.team_id)
        message = f"Initiated retry for {len(chains)} failed webhooks"
    else:
        raise BadRequestError("webhookId or teamId required")

    background_tasks.add_task(_redeliver_all, services.webhooks, chains)
    return {"success": True, "message": message, "webhookIds": [chain.id for chain in chains]}


@router.get("/webhooks/stats")
async def webhook_stats(
    team_id: Optional[str] = Query(default=None, alias="teamId"),
    services: IntakeServices = Depends(get_services),
) -> dict:
    stats = await services.webhooks.get_stats(team_id)
    return {"success": True, "stats": stats.to_wire()}


@router.post("/webhooks/test")
async def test_webhook(
    body: WebhookTestRequest,
    services: IntakeServices = Depends(get_services),
) -> dict:
    if not body.team_id or not body.webhook_type:
        raise BadRequestError("teamId and webhookType required")
    try:
        event_type = WebhookEventType(body.webhook_type)
    except ValueError:
        raise BadRequestError(f"Unknown webhookType: {body.webhook_type}") from None

    team = await services.team_cache.get(body.team_id)
    if team is None:
        raise TeamNotFoundError(body.team_id)
    if not team.webhooks.enabled:
        raise BadRequestError("Webhooks not enabled for this team")

    payload, chain = await services.webhooks.send_test_webhook(team, event_type, body.test_payload)
    result = {
        "success": True,
        "message": "Test webhook sent successfully",
        "webhookUrl": team.webhooks.url,
        "payload": payload,
    }
    if chain is not None:
        result["webhookId"] = chain.id
        result["status"] = chain.status.value
    return result


@router.post("/webhooks/clear-cache")
async def clear_cache(
    body: Optional[ClearCacheRequest] = Body(default=None),
    services: IntakeServices = Depends(get_services),
) -> dict:
    team_id = body.team_id if body else None
    services.team_cache.clear(team_id)
    message = f"Cache cleared for team {team_id}" if team_id else "All caches cleared"
    return {"success": True, "message": message}


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "timestamp": iso_timestamp()}
