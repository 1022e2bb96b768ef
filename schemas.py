# schemas.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


# -------- PAYMENTS --------
class PaymentInitiateRequest(BaseModel):
    payment_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    order_number: str = Field(min_length=1)
    payment_reference: str = Field(min_length=1)
    payment_method: str = Field(min_length=1)
    additional_data: dict[str, Any] = Field(default_factory=dict)


class PaymentInitiateResponse(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    status: str
    checkout_url: Optional[str] = None
    provider_reference: Optional[str] = None
    handling_mode: str
    message: Optional[str] = None
    errors: list[str] = Field(default_factory=list)


class PaymentStatusResponse(BaseModel):
    success: bool
    status: str
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    not_found: bool = False
    inconclusive: bool = False
    message: Optional[str] = None
    errors: list[str] = Field(default_factory=list)


# -------- GATEWAYS --------
class GatewayOut(BaseModel):
    id: str
    name: str
    methods: list[str]
    currencies: list[str]
    handling: dict[str, str]
