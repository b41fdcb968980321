"""
Signed webhook delivery with an audited retry chain.

Every logical delivery is one row in the webhook log. The row is written
as ``pending`` before the network call, then moved to ``success``,
``failed`` or ``retry``. Retries re-attempt the same row, so the log holds
one entry per event rather than one per attempt.

Usage:
    service = WebhookService(log_store, team_cache=cache)
    chain = await service.send_webhook(team.id, WebhookEventType.MATTER_CREATION, payload, team)
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

import httpx

from matter_intake.config import settings
from matter_intake.schemas.team_schema import RetryConfig, TeamConfig, WebhookEventType
from matter_intake.schemas.webhook_schema import WebhookAttemptChain, WebhookStats, WebhookStatus
from matter_intake.stores.team_store import TeamConfigCache
from matter_intake.stores.webhook_log import DEFAULT_LOG_LIMIT, WebhookLogStore
from matter_intake.utils import canonical_json, iso_timestamp, utc_now
from matter_intake.webhooks.signing import sign

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY_CHARS = 4000


class WebhookService:
    """Sends, logs and retries webhook deliveries for teams."""

    def __init__(
        self,
        log_store: WebhookLogStore,
        http_client: Optional[httpx.AsyncClient] = None,
        team_cache: Optional[TeamConfigCache] = None,
        timeout_sec: Optional[float] = None,
        user_agent: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.log_store = log_store
        self.team_cache = team_cache
        self.timeout_sec = timeout_sec or settings.webhooks.timeout_sec
        self.user_agent = user_agent or settings.webhooks.user_agent
        self._clock = clock
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_sec, connect=10.0),
            follow_redirects=False,
        )

    def now(self) -> datetime:
        return self._clock()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    # ------------------------------------------------------------------ #
    # Sending
    # ------------------------------------------------------------------ #

    async def send_webhook(
        self,
        team_id: str,
        event_type: WebhookEventType,
        payload: Mapping[str, Any],
        team_config: TeamConfig,
    ) -> Optional[WebhookAttemptChain]:
        """
        Deliver ``payload`` to the team's endpoint.

        Returns:
            The final state of the attempt chain, or None when the team has
            webhooks disabled, no URL, or the event switched off.
        """
        webhooks = team_config.webhooks
        if not webhooks.enabled or not webhooks.url:
            logger.info("Webhooks not enabled for team %s", team_id)
            return None
        if not webhooks.events.is_enabled(event_type):
            logger.info("Webhook event %s not enabled for team %s", event_type.value, team_id)
            return None

        now = self._clock()
        chain = WebhookAttemptChain(
            team_id=team_id,
            event_type=event_type,
            url=webhooks.url,
            payload=canonical_json(payload),
            created_at=now,
            updated_at=now,
        )
        await self.log_store.create(chain)
        return await self.deliver(chain, team_config)

    def build_headers(self, chain: WebhookAttemptChain, secret: Optional[str]) -> dict[str, str]:
        now = self._clock()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Webhook-ID": chain.id,
            "X-Webhook-Event": chain.event_type.value,
            "X-Webhook-Timestamp": iso_timestamp(now),
        }
        if secret:
            headers["X-Webhook-Signature"] = sign(chain.payload, secret, int(now.timestamp()))
        return headers

    async def deliver(self, chain: WebhookAttemptChain, team_config: TeamConfig) -> WebhookAttemptChain:
        """Make one HTTP attempt for an existing chain and record the outcome."""
        headers = self.build_headers(chain, team_config.webhooks.secret)
        error: Optional[str] = None
        try:
            response = await self.http_client.post(
                chain.url,
                content=chain.payload.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_sec,
            )
        except httpx.TimeoutException:
            error = f"Request timed out after {self.timeout_sec:g}s"
        except httpx.HTTPError as exc:
            error = str(exc) or exc.__class__.__name__
        else:
            chain.http_status = response.status_code
            chain.response_body = response.text[:MAX_RESPONSE_BODY_CHARS]
            if response.is_success:
                now = self._clock()
                chain.status = WebhookStatus.SUCCESS
                chain.error_message = None
                chain.next_retry_at = None
                chain.completed_at = now
                chain.updated_at = now
                await self.log_store.update(chain)
                logger.info(
                    "Webhook %s (%s) delivered to team %s: HTTP %d",
                    chain.id, chain.event_type.value, chain.team_id, response.status_code,
                )
                return chain
            error = f"HTTP {response.status_code}: {response.reason_phrase}"

        logger.warning(
            "Webhook %s (%s) for team %s failed: %s",
            chain.id, chain.event_type.value, chain.team_id, error,
        )
        chain.status = WebhookStatus.FAILED
        chain.error_message = error
        chain.updated_at = self._clock()
        await self.log_store.update(chain)
        return await self.schedule_retry(chain, team_config.webhooks.retry_config)

    async def schedule_retry(
        self, chain: WebhookAttemptChain, retry_config: RetryConfig
    ) -> WebhookAttemptChain:
        """
        Move a failed chain to ``retry`` with exponential backoff.

        delay = retry_delay * 2 ** retry_count. Once ``retry_count`` has
        reached ``max_retries`` the chain stays ``failed``.
        """
        if chain.retry_count >= retry_config.max_retries:
            logger.info("Max retries reached for webhook %s", chain.id)
            if chain.next_retry_at is not None:
                chain.next_retry_at = None
                await self.log_store.update(chain)
            return chain

        now = self._clock()
        delay = retry_config.retry_delay * 2 ** chain.retry_count
        chain.retry_count += 1
        chain.next_retry_at = now + timedelta(seconds=delay)
        chain.status = WebhookStatus.RETRY
        chain.updated_at = now
        await self.log_store.update(chain)
        logger.info(
            "Scheduled webhook retry %d/%d for %s at %s",
            chain.retry_count, retry_config.max_retries, chain.id,
            iso_timestamp(chain.next_retry_at),
        )
        return chain

    # ------------------------------------------------------------------ #
    # Retries
    # ------------------------------------------------------------------ #

    async def prepare_retry(
        self,
        webhook_id: Optional[str] = None,
        team_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[WebhookAttemptChain]:
        """Reset matching ``failed``/``retry`` chains to ``pending``."""
        if not webhook_id and not team_id:
            raise ValueError("webhook_id or team_id required")
        chains = await self.log_store.list_retryable(
            team_id=None if webhook_id else team_id,
            webhook_id=webhook_id,
            limit=1 if webhook_id else (limit or settings.webhooks.manual_retry_batch),
        )
        for chain in chains:
            chain.status = WebhookStatus.PENDING
            chain.next_retry_at = None
            chain.updated_at = self._clock()
            await self.log_store.update(chain)
        return chains

    async def redeliver(self, chain: WebhookAttemptChain) -> WebhookAttemptChain:
        """Re-attempt an existing chain using the team's current settings."""
        team_config = await self.team_cache.get(chain.team_id) if self.team_cache else None
        if team_config is None or not team_config.webhooks.enabled:
            chain.status = WebhookStatus.FAILED
            chain.error_message = "Webhooks no longer enabled for team"
            chain.next_retry_at = None
            chain.updated_at = self._clock()
            await self.log_store.update(chain)
            logger.warning("Dropping retry for webhook %s: team %s unavailable", chain.id, chain.team_id)
            return chain

        if chain.status != WebhookStatus.PENDING:
            chain.status = WebhookStatus.PENDING
            chain.updated_at = self._clock()
            await self.log_store.update(chain)
        return await self.deliver(chain, team_config)

    async def retry_webhook(
        self,
        webhook_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> list[WebhookAttemptChain]:
        """Manually re-attempt one chain, or up to a batch of a team's failed chains."""
        chains = await self.prepare_retry(webhook_id=webhook_id, team_id=team_id)
        return [await self.redeliver(chain) for chain in chains]

    # ------------------------------------------------------------------ #
    # Operator helpers
    # ------------------------------------------------------------------ #

    async def list_logs(
        self,
        team_id: Optional[str] = None,
        status: Optional[WebhookStatus] = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[WebhookAttemptChain]:
        return await self.log_store.list_logs(team_id=team_id, status=status, limit=limit)

    async def get_stats(self, team_id: Optional[str] = None) -> WebhookStats:
        return await self.log_store.count_by_status(team_id)

    def build_test_payload(self, team_id: str, event_type: WebhookEventType) -> dict[str, Any]:
        timestamp = iso_timestamp(self._clock())
        if event_type == WebhookEventType.CONTACT_FORM:
            return {
                "event": event_type.value,
                "timestamp": timestamp,
                "teamId": team_id,
                "formId": str(uuid.uuid4()),
                "contactForm": {
                    "email": "test@example.com",
                    "phoneNumber": "+1234567890",
                    "urgency": "high",
                    "matterDetails": "This is a test matter from webhook",
                    "status": "pending",
                },
            }
        return {
            "event": event_type.value,
            "timestamp": timestamp,
            "teamId": team_id,
            "test": True,
            "data": {"message": "This is a test webhook payload"},
        }

    async def send_test_webhook(
        self,
        team_config: TeamConfig,
        event_type: WebhookEventType,
        test_payload: Optional[Mapping[str, Any]] = None,
    ) -> tuple[dict[str, Any], Optional[WebhookAttemptChain]]:
        payload = dict(test_payload) if test_payload else self.build_test_payload(team_config.id, event_type)
        chain = await self.send_webhook(team_config.id, event_type, payload, team_config)
        return payload, chain
