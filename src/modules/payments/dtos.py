"""Payment DTOs for the Service Layer (Pydantic v2, immutable)."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentIntentDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    payment_intent_id: str
    client_secret: str
    order_id: UUID
    order_number: str
    amount: Decimal
    currency: str = "INR"
    status: str = "requires_payment_method"


class VerifyPaymentDTO(BaseModel):
    """Evidence the client presents after paying an intent."""

    model_config = ConfigDict(frozen=True)

    payment_intent_id: str = Field(min_length=1, max_length=255)
    transaction_id: str = Field(min_length=1, max_length=255)

    @property
    def evidence(self) -> Dict[str, Any]:
        return {"transaction_id": self.transaction_id}


class RefundDTO(BaseModel):
    """``amount`` defaults to the order total when omitted."""

    model_config = ConfigDict(frozen=True)

    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    reason: str = Field(min_length=1, max_length=500)


class BatchRefundDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_ids: List[UUID]
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("order_ids")
    @classmethod
    def order_ids_must_not_be_empty(cls, v: List[UUID]) -> List[UUID]:
        if not v:
            raise ValueError("At least one order id is required.")
        return list(dict.fromkeys(v))


class BatchRefundResultDTO(BaseModel):
    """``stock_restored`` counts the variant lines returned to the ledger."""

    model_config = ConfigDict(frozen=True)

    orders_processed: int
    stock_restored: int
    order_ids: List[UUID] = []


class PaymentMethodDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str
    enabled: bool = True
    description: str = ""
