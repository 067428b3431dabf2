"""Client for the goals API: goal lookup, goal creation and funding updates."""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

import httpx
from pydantic import ValidationError

from goalvault.deposits.errors import (
    GoalForbidden,
    GoalMissing,
    GoalsApiError,
    GoalsApiRejected,
    GoalsApiUnauthorized,
    GoalsApiUnavailable,
    GoalTitleTaken,
    InvalidDepositInput,
)
from goalvault.schemas.goal import GoalRead

logger = logging.getLogger(__name__)

TokenProvider = Union[str, Callable[[], Awaitable[Optional[str]]]]

STATUS_ERRORS: Dict[int, Type[GoalsApiError]] = {
    400: GoalsApiRejected,
    401: GoalsApiUnauthorized,
    403: GoalForbidden,
    404: GoalMissing,
    409: GoalsApiRejected,
    422: GoalsApiRejected,
}


class GoalsApiClient:
    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_provider = token_provider
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def __aenter__(self) -> "GoalsApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _token(self) -> Optional[str]:
        if callable(self.token_provider):
            return await self.token_provider()
        return self.token_provider

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        conflict_error: Type[GoalsApiError] = GoalsApiRejected,
    ) -> Any:
        token = await self._token()
        if not token:
            raise GoalsApiUnauthorized("Authentication token not available.")
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            raise GoalsApiUnavailable(f"Goals API unreachable: {e}") from e

        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                logger.warning(f"{method} {path} -> {response.status_code} with a non-JSON body")
                raise GoalsApiUnavailable(
                    f"Goals API returned an unreadable response (HTTP {response.status_code}).",
                    status_code=response.status_code,
                ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("error") or response.reason_phrase or f"HTTP {response.status_code}"
        if response.status_code == 409:
            error_cls = conflict_error
        elif response.status_code >= 500:
            error_cls = GoalsApiUnavailable
        else:
            error_cls = STATUS_ERRORS.get(response.status_code, GoalsApiRejected)
        logger.warning(f"{method} {path} -> {response.status_code}: {message}")
        raise error_cls(message, status_code=response.status_code, details=body.get("details"))

    @staticmethod
    def _goal(data: Any) -> GoalRead:
        try:
            return GoalRead.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Goals API returned a malformed goal: {e}")
            raise GoalsApiUnavailable("Goals API returned a malformed goal.", details=e.errors()) from e

    async def list_goals(self) -> List[GoalRead]:
        data = await self._request("GET", "/goals")
        if not isinstance(data, list):
            raise GoalsApiUnavailable("Goals API returned a malformed goal list.")
        return [self._goal(item) for item in data]

    async def get_goal(self, goal_id: Union[str, uuid.UUID]) -> GoalRead:
        """
        Look up one of the caller's goals.

        The API only lists goals, so this fetches the caller's whole list and
        picks the goal out of it. A malformed id is refused without a request.
        """
        try:
            wanted = uuid.UUID(str(goal_id))
        except ValueError:
            raise InvalidDepositInput(f"Invalid goal id: {goal_id!r}")
        for goal in await self.list_goals():
            if goal.id == wanted:
                return goal
        raise GoalMissing(f"Goal {goal_id} not found.", status_code=404)

    async def create_goal(
        self,
        title: str,
        target_amount: Decimal,
        vault_address: str,
        description: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> GoalRead:
        payload = {
            "title": title,
            "description": description,
            "target_amount": str(target_amount),
            "vault_address": vault_address,
            "end_date": end_date.isoformat() if end_date else None,
        }
        data = await self._request("POST", "/goals", json=payload, conflict_error=GoalTitleTaken)
        return self._goal(data)

    async def update_funding(
        self,
        goal_id: Union[str, uuid.UUID],
        deposited_amount: Decimal,
        tx_hash: Optional[str] = None,
    ) -> GoalRead:
        """Credit a confirmed deposit. Pass ``tx_hash`` so retries credit once."""
        payload = {"goal_id": str(goal_id), "deposited_amount": str(deposited_amount)}
        if tx_hash:
            payload["tx_hash"] = tx_hash
        data = await self._request("POST", "/goals/funding", json=payload)
        return self._goal(data)
