"""Team configuration as read from the team configuration store."""

from enum import Enum
from typing import Optional

from pydantic import Field

from matter_intake.config import settings
from matter_intake.schemas.base import CamelModel


class WebhookEventType(str, Enum):
    """Milestones a team can subscribe to."""

    MATTER_CREATION = "matter_creation"
    MATTER_DETAILS = "matter_details"
    CONTACT_FORM = "contact_form"
    APPOINTMENT = "appointment"


class WebhookEventToggles(CamelModel):
    """Per-event enable flags (``matterCreation``, ``matterDetails``, ...)."""

    matter_creation: bool = False
    matter_details: bool = False
    contact_form: bool = False
    appointment: bool = False

    def is_enabled(self, event: WebhookEventType) -> bool:
        return bool(getattr(self, event.value))


class RetryConfig(CamelModel):
    """Exponential backoff parameters; ``retry_delay`` is the base in seconds."""

    max_retries: int = Field(default=settings.webhooks.default_max_retries, ge=0, le=10)
    retry_delay: int = Field(default=settings.webhooks.default_retry_delay_sec, ge=1)


class TeamWebhookConfig(CamelModel):
    enabled: bool = False
    url: Optional[str] = None
    secret: Optional[str] = None
    events: WebhookEventToggles = Field(default_factory=WebhookEventToggles)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)


class TeamConfig(CamelModel):
    """Read-only view of a team's intake and webhook settings."""

    id: str
    slug: Optional[str] = None
    name: str = ""
    available_services: list[str] = Field(default_factory=list)
    webhooks: TeamWebhookConfig = Field(default_factory=TeamWebhookConfig)

    def services(self) -> list[str]:
        """Configured services, falling back to the default catalog."""
        return list(self.available_services or settings.teams.default_services)
