# goalvault/models/goal.py
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from goalvault.core.database import Base

# Token amounts are fixed-point at USDC precision
AMOUNT_TYPE = Numeric(20, 6)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Goal(Base):
    __tablename__ = "goals"
    __table_args__ = (
        UniqueConstraint("user_id", "title", name="uq_goals_user_id_title"),
    )

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Subject claim of the identity-provider token, e.g. "did:privy:..."
    user_id = Column(String(length=255), nullable=False, index=True)
    title = Column(String(length=200), nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(AMOUNT_TYPE, nullable=False)
    # Only ever incremented by confirmed deposits
    current_funded_amount = Column(AMOUNT_TYPE, nullable=False, default=Decimal("0"))
    vault_address = Column(String(length=42), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Goal title={self.title!r} funded={self.current_funded_amount}/{self.target_amount} user_id={self.user_id}>"


class GoalFunding(Base):
    """One credited deposit. ``tx_hash`` is the idempotency key."""

    __tablename__ = "goal_fundings"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    goal_id = Column(PG_UUID(as_uuid=True), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(AMOUNT_TYPE, nullable=False)
    tx_hash = Column(String(length=66), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<GoalFunding amount={self.amount} tx_hash={self.tx_hash} goal_id={self.goal_id}>"
