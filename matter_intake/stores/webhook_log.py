"""
Audit log of webhook attempt chains.

Two interchangeable stores share the same async interface:

- ``InMemoryWebhookLogStore``: process-local, used by tests and the demo
- ``SqlWebhookLogStore``: SQLAlchemy async engine (SQLite by default) so
  pending retries survive a restart
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import DateTime, Index, Integer, String, Text, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from matter_intake.config import settings
from matter_intake.schemas.team_schema import WebhookEventType
from matter_intake.schemas.webhook_schema import (
    RETRYABLE_STATUSES,
    WebhookAttemptChain,
    WebhookStats,
    WebhookStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 50


class WebhookLogStore(Protocol):
    async def create(self, chain: WebhookAttemptChain) -> None: ...

    async def update(self, chain: WebhookAttemptChain) -> None: ...

    async def get(self, webhook_id: str) -> Optional[WebhookAttemptChain]: ...

    async def list_logs(
        self,
        team_id: Optional[str] = None,
        status: Optional[WebhookStatus] = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[WebhookAttemptChain]: ...

    async def list_retryable(
        self,
        team_id: Optional[str] = None,
        webhook_id: Optional[str] = None,
        limit: int = 10,
    ) -> list[WebhookAttemptChain]: ...

    async def list_due(self, now: datetime, limit: int = DEFAULT_LOG_LIMIT) -> list[WebhookAttemptChain]: ...

    async def count_by_status(self, team_id: Optional[str] = None) -> WebhookStats: ...


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# ---------------------------------------------------------------------- #
# In-memory store
# ---------------------------------------------------------------------- #

class InMemoryWebhookLogStore:
    """Dict-backed log; returns copies so callers never share rows."""

    def __init__(self) -> None:
        self._rows: dict[str, WebhookAttemptChain] = {}

    async def create(self, chain: WebhookAttemptChain) -> None:
        self._rows[chain.id] = chain.model_copy(deep=True)

    async def update(self, chain: WebhookAttemptChain) -> None:
        if chain.id not in self._rows:
            raise KeyError(f"Unknown webhook log entry: {chain.id}")
        self._rows[chain.id] = chain.model_copy(deep=True)

    async def get(self, webhook_id: str) -> Optional[WebhookAttemptChain]:
        row = self._rows.get(webhook_id)
        return row.model_copy(deep=True) if row else None

    async def list_logs(
        self,
        team_id: Optional[str] = None,
        status: Optional[WebhookStatus] = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[WebhookAttemptChain]:
        rows = [
            row for row in self._rows.values()
            if (team_id is None or row.team_id == team_id)
            and (status is None or row.status == status)
        ]
        rows.sort(key=lambda row: row.created_at, reverse=True)
        return [row.model_copy(deep=True) for row in rows[:limit]]

    async def list_retryable(
        self,
        team_id: Optional[str] = None,
        webhook_id: Optional[str] = None,
        limit: int = 10,
    ) -> list[WebhookAttemptChain]:
        rows = [
            row for row in self._rows.values()
            if row.status in RETRYABLE_STATUSES
            and (team_id is None or row.team_id == team_id)
            and (webhook_id is None or row.id == webhook_id)
        ]
        rows.sort(key=lambda row: row.created_at)
        return [row.model_copy(deep=True) for row in rows[:limit]]

    async def list_due(self, now: datetime, limit: int = DEFAULT_LOG_LIMIT) -> list[WebhookAttemptChain]:
        rows = [
            row for row in self._rows.values()
            if row.status == WebhookStatus.RETRY
            and row.next_retry_at is not None
            and row.next_retry_at <= now
        ]
        rows.sort(key=lambda row: row.next_retry_at)
        return [row.model_copy(deep=True) for row in rows[:limit]]

    async def count_by_status(self, team_id: Optional[str] = None) -> WebhookStats:
        counts = {status.value: 0 for status in WebhookStatus}
        for row in self._rows.values():
            if team_id is None or row.team_id == team_id:
                counts[row.status.value] += 1
        return WebhookStats(**counts)

    def reset(self) -> None:
        self._rows.clear()


# ---------------------------------------------------------------------- #
# SQL store
# ---------------------------------------------------------------------- #

class Base(DeclarativeBase):
    """Declarative base for the webhook log tables."""


class WebhookLogRow(Base):
    __tablename__ = "webhook_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    team_id: Mapped[str] = mapped_column(String(128), index=True)
    event_type: Mapped[str] = mapped_column(String(32))
    url: Mapped[str] = mapped_column(Text)
    payload: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), index=True)
    http_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_webhook_logs_status_next_retry", "status", "next_retry_at"),
    )


def _to_row(chain: WebhookAttemptChain) -> WebhookLogRow:
    return WebhookLogRow(
        id=chain.id,
        team_id=chain.team_id,
        event_type=chain.event_type.value,
        url=chain.url,
        payload=chain.payload,
        status=chain.status.value,
        http_status=chain.http_status,
        response_body=chain.response_body,
        error_message=chain.error_message,
        retry_count=chain.retry_count,
        next_retry_at=chain.next_retry_at,
        created_at=chain.created_at,
        updated_at=chain.updated_at,
        completed_at=chain.completed_at,
    )


def _from_row(row: WebhookLogRow) -> WebhookAttemptChain:
    return WebhookAttemptChain(
        id=row.id,
        team_id=row.team_id,
        event_type=WebhookEventType(row.event_type),
        url=row.url,
        payload=row.payload,
        status=WebhookStatus(row.status),
        http_status=row.http_status,
        response_body=row.response_body,
        error_message=row.error_message,
        retry_count=row.retry_count,
        next_retry_at=_as_utc(row.next_retry_at),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        completed_at=_as_utc(row.completed_at),
    )


class SqlWebhookLogStore:
    """
    Durable webhook log on an async SQLAlchemy engine.

    Call ``init()`` once at startup to create the table.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        self.engine = engine or create_async_engine(database_url or settings.database_url)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Webhook log table ready")

    async def close(self) -> None:
        await self.engine.dispose()

    async def create(self, chain: WebhookAttemptChain) -> None:
        async with self._sessions() as session:
            session.add(_to_row(chain))
            await session.commit()

    async def update(self, chain: WebhookAttemptChain) -> None:
        async with self._sessions() as session:
            await session.merge(_to_row(chain))
            await session.commit()

    async def get(self, webhook_id: str) -> Optional[WebhookAttemptChain]:
        async with self._sessions() as session:
            row = await session.get(WebhookLogRow, webhook_id)
            return _from_row(row) if row else None

    async def list_logs(
        self,
        team_id: Optional[str] = None,
        status: Optional[WebhookStatus] = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[WebhookAttemptChain]:
        stmt = select(WebhookLogRow)
        if team_id is not None:
            stmt = stmt.where(WebhookLogRow.team_id == team_id)
        if status is not None:
            stmt = stmt.where(WebhookLogRow.status == status.value)
        stmt = stmt.order_by(WebhookLogRow.created_at.desc()).limit(limit)
        async with self._sessions() as session:
            result = await session.scalars(stmt)
            return [_from_row(row) for row in result]

    async def list_retryable(
        self,
        team_id: Optional[str] = None,
        webhook_id: Optional[str] = None,
        limit: int = 10,
    ) -> list[WebhookAttemptChain]:
        stmt = select(WebhookLogRow).where(
            WebhookLogRow.status.in_([status.value for status in RETRYABLE_STATUSES])
        )
        if team_id is not None:
            stmt = stmt.where(WebhookLogRow.team_id == team_id)
        if webhook_id is not None:
            stmt = stmt.where(WebhookLogRow.id == webhook_id)
        stmt = stmt.order_by(WebhookLogRow.created_at).limit(limit)
        async with self._sessions() as session:
            result = await session.scalars(stmt)
            return [_from_row(row) for row in result]

    async def list_due(self, now: datetime, limit: int = DEFAULT_LOG_LIMIT) -> list[WebhookAttemptChain]:
        stmt = (
            select(WebhookLogRow)
            .where(WebhookLogRow.status == WebhookStatus.RETRY.value)
            .where(WebhookLogRow.next_retry_at.is_not(None))
            .where(WebhookLogRow.next_retry_at <= now)
            .order_by(WebhookLogRow.next_retry_at)
            .limit(limit)
        )
        async with self._sessions() as session:
            result = await session.scalars(stmt)
            return [_from_row(row) for row in result]

    async def count_by_status(self, team_id: Optional[str] = None) -> WebhookStats:
        stmt = select(WebhookLogRow.status, func.count()).group_by(WebhookLogRow.status)
        if team_id is not None:
            stmt = stmt.where(WebhookLogRow.team_id == team_id)
        async with self._sessions() as session:
            result = await session.execute(stmt)
            counts = {status: count for status, count in result.all()}
        return WebhookStats(**{
            status.value: counts.get(status.value, 0) for status in WebhookStatus
        })
