# goalvault/api/v1/routes/goals.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from goalvault.api.deps import get_current_user_id
from goalvault.core.database import get_async_session
from goalvault.crud import goal as crud_goal
from goalvault.schemas.goal import ErrorResponse, GoalCreate, GoalFundingUpdate, GoalRead

router = APIRouter(prefix="/goals", tags=["Goals"])

AUTH_ERRORS = {
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


@router.get("", response_model=List[GoalRead], responses=AUTH_ERRORS)
async def list_goals(
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user_id),
):
    """List the caller's goals, newest first."""
    return await crud_goal.get_goals_for_user(user_id, db)


@router.post(
    "",
    response_model=GoalRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        **AUTH_ERRORS,
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
)
async def create_goal(
    goal_in: GoalCreate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user_id),
):
    """
    Create a goal for the caller.

    - **title**: unique per user
    - **target_amount**: positive, at most 6 decimal places
    - **vault_address**: vault receiving the deposits
    - **end_date**: optional ISO 8601 timestamp
    """
    return await crud_goal.create_goal_for_user(user_id, goal_in, db)


@router.post(
    "/funding",
    response_model=GoalRead,
    responses={
        **AUTH_ERRORS,
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
)
async def update_goal_funding(
    funding_in: GoalFundingUpdate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user_id),
):
    """
    Record a confirmed on-chain deposit against one of the caller's goals.

    Send the deposit's **tx_hash**: a hash that was already credited returns
    the goal unchanged instead of crediting twice.
    """
    return await crud_goal.record_goal_funding(user_id, funding_in, db)
