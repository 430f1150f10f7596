"""Credit schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.shared.enums import TransactionStatus, TransactionType


class CreditBalancePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    balance: int
    lifetime_purchased: int
    lifetime_used: int


class CreditTransactionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str = Field(serialization_alias="id")
    user_id: str
    appointment_id: str | None = None
    amount: int
    transaction_type: TransactionType
    status: TransactionStatus
    processed_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")


class CreditPurchase(BaseModel):
    amount: int = Field(gt=0)
    reference: str | None = Field(None, max_length=100)


class CreditAdjustment(BaseModel):
    amount: int
    note: str | None = Field(None, max_length=255)
