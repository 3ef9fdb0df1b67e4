# FILE: clinic_billing/schemas/billing.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from clinic_billing.models.billing import InvoiceStatus, InvoiceType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CamelInput(CamelModel):
    # unknown keys (total, status, balance ...) are dropped silently
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# inputs
# ---------------------------------------------------------------------------


class MedicationIn(CamelInput):
    name: str
    dosage: Optional[str] = ""
    frequency: Optional[str] = ""
    duration: Optional[str] = ""
    quantity: int = 1
    unit_price: Decimal = Decimal("0")

    @field_validator("quantity")
    @classmethod
    def _qty(cls, v):
        if int(v) <= 0:
            raise ValueError("quantity must be > 0")
        return int(v)

    @field_validator("unit_price")
    @classmethod
    def _price(cls, v):
        if Decimal(str(v)) < 0:
            raise ValueError("unitPrice must be >= 0")
        return Decimal(str(v))


class LineItemIn(CamelInput):
    description: str
    quantity: int = 1
    unit_price: Decimal

    @field_validator("description")
    @classmethod
    def _desc(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("description required")
        return v

    @field_validator("quantity")
    @classmethod
    def _qty(cls, v):
        if int(v) <= 0:
            raise ValueError("quantity must be > 0")
        return int(v)

    @field_validator("unit_price")
    @classmethod
    def _price(cls, v):
        if Decimal(str(v)) < 0:
            raise ValueError("unitPrice must be >= 0")
        return Decimal(str(v))


class _MoneyFieldsIn(CamelInput):
    tax: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None

    @field_validator("tax", "discount", "paid_amount")
    @classmethod
    def _non_negative(cls, v):
        if v is None:
            return v
        if Decimal(str(v)) < 0:
            raise ValueError("amount must be >= 0")
        return Decimal(str(v))


# legacy single / multi id keys accepted by the clinic front-end
_SINGLE_ID_KEYS = ("appointmentId", "treatmentId", "labWorkId",
                   "prescriptionId")
_MULTI_ID_KEYS = ("treatmentIds", "labWorkIds")


class SourceInvoiceCreateIn(_MoneyFieldsIn):
    source_ids: List[int] = Field(default_factory=list)
    cost: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("cost", "checkupFee", "procedureCost",
                                      "labCost"),
    )
    medications: Optional[List[MedicationIn]] = None
    notes: Optional[str] = None
    due_date: Optional[datetime] = None
    advance_payment_percentage: Optional[Decimal] = None

    @model_validator(mode="before")
    @classmethod
    def _collect_source_ids(cls, data: Any):
        if not isinstance(data, dict):
            return data
        if data.get("sourceIds") or data.get("source_ids"):
            return data
        ids: List[Any] = []
        for key in _MULTI_ID_KEYS:
            if isinstance(data.get(key), list) and data.get(key):
                ids = list(data[key])
                break
        if not ids:
            for key in _SINGLE_ID_KEYS:
                if data.get(key) is not None:
                    ids = [data[key]]
                    break
        if ids:
            data = dict(data)
            data["sourceIds"] = ids
        return data

    @field_validator("cost")
    @classmethod
    def _cost(cls, v):
        if v is None:
            return v
        if Decimal(str(v)) < 0:
            raise ValueError("cost must be >= 0")
        return Decimal(str(v))

    @field_validator("advance_payment_percentage")
    @classmethod
    def _pct(cls, v):
        if v is None:
            return v
        v = Decimal(str(v))
        if v < 0 or v > 100:
            raise ValueError("advancePaymentPercentage must be within 0..100")
        return v


class GenericInvoiceCreateIn(_MoneyFieldsIn):
    patient_id: Optional[int] = None
    patient_name: Optional[str] = None
    items: List[LineItemIn]
    notes: Optional[str] = None
    due_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _patient(self):
        if not self.patient_id and not (self.patient_name or "").strip():
            raise ValueError("patientId or patientName is required")
        if not self.items:
            raise ValueError("items required")
        return self


class InvoiceUpdateIn(_MoneyFieldsIn):
    """
    Partial update. Only fields present in the body are applied.
    total / subtotal / balance / status are not accepted; they are always
    recomputed.
    """
    cost: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("cost", "checkupFee", "procedureCost",
                                      "labCost"),
    )
    medications: Optional[List[MedicationIn]] = None
    items: Optional[List[LineItemIn]] = None
    notes: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("cost")
    @classmethod
    def _cost(cls, v):
        if v is None:
            return v
        if Decimal(str(v)) < 0:
            raise ValueError("cost must be >= 0")
        return Decimal(str(v))


# ---------------------------------------------------------------------------
# outputs
# ---------------------------------------------------------------------------


class InvoiceItemOut(CamelModel):
    seq: int
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class SourceContextOut(CamelModel):
    kind: str
    source_kind: Optional[str] = None
    source_ids: List[int] = []
    snapshot: Dict[str, Any] = {}


class InvoiceOut(CamelModel):
    id: int
    invoice_number: str
    invoice_type: InvoiceType
    patient_id: Optional[int] = None
    patient_name: Optional[str] = None
    items: List[InvoiceItemOut] = []
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: InvoiceStatus
    source_context: SourceContextOut
    advance_payment_percentage: Optional[Decimal] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AdvanceInfoOut(CamelModel):
    required: Decimal
    paid: Decimal
    percentage: Decimal
    balance: Decimal


class UnbilledRecordOut(CamelModel):
    id: int
    kind: str
    patient_id: int
    dentist_id: int
    status: Optional[str] = None
    description: str
    cost: Optional[Decimal] = None
