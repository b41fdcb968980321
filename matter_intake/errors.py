"""Errors raised by the intake engine and mapped to HTTP responses by the API."""

from typing import Optional


class IntakeError(Exception):
    """Base error carrying the HTTP status it should surface as."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(IntakeError):
    status_code = 400
    default_message = "Invalid request"


class MissingTeamIdError(BadRequestError):
    default_message = "teamId is required"


class TeamNotFoundError(IntakeError):
    status_code = 404
    default_message = "Team not found"

    def __init__(self, team_id: str) -> None:
        self.team_id = team_id
        super().__init__(f"Team not found: {team_id}")


class WebhookNotRetryableError(IntakeError):
    status_code = 404
    default_message = "Webhook not found or not retryable"
