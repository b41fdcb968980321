from matter_intake.webhooks.delivery import WebhookService
from matter_intake.webhooks.scheduler import RetryScheduler
from matter_intake.webhooks.signing import derive_signing_key, sign, verify

__all__ = ["WebhookService", "RetryScheduler", "derive_signing_key", "sign", "verify"]
