# FILE: clinic_billing/schemas/billing_payments.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, Field, field_validator

from clinic_billing.models.billing import PaymentMethod
from clinic_billing.schemas.billing import CamelInput, CamelModel, InvoiceOut


class PaymentIn(CamelInput):
    invoice_id: int
    amount: Decimal
    payment_method: str = Field(
        default=PaymentMethod.CASH.value,
        validation_alias=AliasChoices("paymentMethod", "payment_method",
                                      "method"),
    )
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    payment_date: Optional[datetime] = None
    idempotency_key: Optional[str] = None

    @field_validator("invoice_id")
    @classmethod
    def _inv_id(cls, v):
        if int(v) <= 0:
            raise ValueError("invoiceId must be positive")
        return int(v)

    @field_validator("idempotency_key")
    @classmethod
    def _key(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v or len(v) > 64:
            raise ValueError("idempotencyKey must be 1..64 characters")
        return v


class PaymentOut(CamelModel):
    id: int
    payment_number: str
    invoice_id: int
    patient_id: Optional[int] = None
    amount: Decimal
    method: str
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    status: str
    notes: Optional[str] = None
    received_by: Optional[int] = None


class PaymentResultOut(CamelModel):
    payment: PaymentOut
    invoice: InvoiceOut
