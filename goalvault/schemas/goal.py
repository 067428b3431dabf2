# goalvault/schemas/goal.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
TX_HASH_PATTERN = r"^0x[0-9a-fA-F]{64}$"

# Positive token amount with at most USDC precision
PositiveAmount = Annotated[Decimal, Field(gt=0, max_digits=20, decimal_places=6)]


class GoalCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    target_amount: PositiveAmount
    vault_address: str = Field(pattern=ADDRESS_PATTERN)
    end_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("description")
    @classmethod
    def empty_description_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class GoalFundingUpdate(BaseModel):
    goal_id: uuid.UUID
    deposited_amount: PositiveAmount
    # Deposit transaction hash; repeated submissions with the same hash credit once
    tx_hash: Optional[str] = Field(default=None, pattern=TX_HASH_PATTERN)

    @field_validator("tx_hash")
    @classmethod
    def lowercase_hash(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value


class GoalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    title: str
    description: Optional[str] = None
    target_amount: Decimal
    current_funded_amount: Decimal
    vault_address: str
    end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None
