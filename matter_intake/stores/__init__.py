from matter_intake.stores.session_store import InMemorySessionStore
from matter_intake.stores.team_store import TeamConfigCache, TeamConfigStore
from matter_intake.stores.webhook_log import InMemoryWebhookLogStore, SqlWebhookLogStore

__all__ = [
    "InMemorySessionStore",
    "TeamConfigStore",
    "TeamConfigCache",
    "InMemoryWebhookLogStore",
    "SqlWebhookLogStore",
]
