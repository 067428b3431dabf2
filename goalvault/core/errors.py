# goalvault/core/errors.py
from typing import Any, Optional

from fastapi import status


class GoalServiceError(Exception):
    """Base error for the goals service, rendered as ``{"error", "details"}``."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal server error"

    def __init__(self, error: Optional[str] = None, details: Any = None):
        self.error = error or self.error
        self.details = details
        super().__init__(self.error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidRequest(GoalServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid request"


class Unauthorized(GoalServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Invalid token"


class Forbidden(GoalServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "User not authorized to update this goal"


class GoalNotFound(GoalServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Goal not found"


class DuplicateGoalTitle(GoalServiceError):
    status_code = status.HTTP_409_CONFLICT
    error = "A goal with this title already exists."


class FundingConflict(GoalServiceError):
    status_code = status.HTTP_409_CONFLICT
    error = "Deposit transaction already credited to another goal"


class ServerConfigurationError(GoalServiceError):
    error = "Server configuration error"
