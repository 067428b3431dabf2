# goalvault/crud/goal.py
import logging
import uuid
from typing import List, Optional

from sqlalchemy import desc, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from goalvault.core.db_utils import with_db_retry
from goalvault.core.errors import DuplicateGoalTitle, Forbidden, FundingConflict, GoalNotFound
from goalvault.models.goal import Goal, GoalFunding, utcnow
from goalvault.schemas.goal import GoalCreate, GoalFundingUpdate

logger = logging.getLogger(__name__)


@with_db_retry()
async def get_goals_for_user(user_id: str, db: AsyncSession) -> List[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == user_id).order_by(desc(Goal.created_at))
    )
    return list(result.scalars().all())


@with_db_retry()
async def get_goal_by_title(user_id: str, title: str, db: AsyncSession) -> Optional[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == user_id, Goal.title == title).limit(1)
    )
    return result.scalar_one_or_none()


async def get_funding_by_tx_hash(tx_hash: str, db: AsyncSession) -> Optional[GoalFunding]:
    result = await db.execute(select(GoalFunding).where(GoalFunding.tx_hash == tx_hash))
    return result.scalar_one_or_none()


async def create_goal_for_user(user_id: str, goal_in: GoalCreate, db: AsyncSession) -> Goal:
    if await get_goal_by_title(user_id, goal_in.title, db):
        logger.info(f"Duplicate goal title for user {user_id}: {goal_in.title!r}")
        raise DuplicateGoalTitle()

    now = utcnow()
    new_goal = Goal(
        **goal_in.model_dump(),
        user_id=user_id,
        current_funded_amount=0,
        created_at=now,
        updated_at=now,
    )
    db.add(new_goal)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race against a concurrent insert of the same title
        await db.rollback()
        raise DuplicateGoalTitle(error="A goal with this title already exists (DB constraint).")
    await db.refresh(new_goal)
    logger.info(f"Created goal {new_goal.id} for user {user_id}")
    return new_goal


async def _replayed_funding(goal_id: uuid.UUID, tx_hash: str, db: AsyncSession) -> Optional[Goal]:
    """Return the goal if ``tx_hash`` was already credited to it."""
    funding = await get_funding_by_tx_hash(tx_hash, db)
    if funding is None:
        return None
    if funding.goal_id != goal_id:
        raise FundingConflict(details={"tx_hash": tx_hash, "goal_id": str(funding.goal_id)})
    logger.info(f"Funding for tx {tx_hash} already recorded on goal {goal_id}, not crediting again")
    result = await db.execute(select(Goal).where(Goal.id == goal_id))
    return result.scalar_one()


async def record_goal_funding(user_id: str, funding_in: GoalFundingUpdate, db: AsyncSession) -> Goal:
    """
    Credit a confirmed deposit to a goal owned by ``user_id``.

    The goal row is locked for the duration of the transaction and the amount
    is added in SQL, so concurrent deposits cannot overwrite each other.
    With a ``tx_hash`` the call is idempotent: a hash already recorded for the
    same goal returns the goal unchanged. Without one, every call credits.
    """
    result = await db.execute(
        select(Goal).where(Goal.id == funding_in.goal_id).with_for_update()
    )
    goal = result.scalar_one_or_none()
    if goal is None:
        raise GoalNotFound(details=f"No goal with id {funding_in.goal_id}")
    if goal.user_id != user_id:
        logger.warning(f"User {user_id} tried to fund goal {goal.id} owned by {goal.user_id}")
        raise Forbidden()

    if funding_in.tx_hash:
        replayed = await _replayed_funding(goal.id, funding_in.tx_hash, db)
        if replayed is not None:
            return replayed

    try:
        db.add(GoalFunding(
            goal_id=goal.id,
            amount=funding_in.deposited_amount,
            tx_hash=funding_in.tx_hash,
            created_at=utcnow(),
        ))
        await db.execute(
            update(Goal)
            .where(Goal.id == goal.id)
            .values(
                current_funded_amount=Goal.current_funded_amount + funding_in.deposited_amount,
                updated_at=utcnow(),
            )
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not funding_in.tx_hash:
            raise
        # The same hash was committed by a concurrent request
        replayed = await _replayed_funding(goal.id, funding_in.tx_hash, db)
        if replayed is None:
            raise
        return replayed

    await db.refresh(goal)
    logger.info(
        f"Goal {goal.id} credited {funding_in.deposited_amount} "
        f"(tx {funding_in.tx_hash or 'n/a'}), now {goal.current_funded_amount}/{goal.target_amount}"
    )
    return goal
