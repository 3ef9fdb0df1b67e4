# FILE: clinic_billing/api/routes_billing.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from clinic_billing.api.deps import billing_staff, billing_user, get_db
from clinic_billing.api.response import ok
from clinic_billing.models.billing import InvoiceStatus, InvoiceType
from clinic_billing.models.user import User
from clinic_billing.schemas.billing import GenericInvoiceCreateIn
from clinic_billing.schemas.billing_payments import PaymentIn, PaymentOut
from clinic_billing.services import billing_invoice_store as store
from clinic_billing.services.billing_invoice_create import create_generic_invoice
from clinic_billing.services.billing_payment_service import (
    list_payments,
    record_payment,
)
from clinic_billing.utils.timezone import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _inv(inv, now=None) -> dict:
    return store.invoice_to_out(inv, now).model_dump(by_alias=True,
                                                     mode="json")


def _pay(p) -> dict:
    return PaymentOut.model_validate(p).model_dump(by_alias=True, mode="json")


# ---------------- invoices ----------------


@router.get("/invoices")
def list_invoices(
        invoice_type: Optional[InvoiceType] = Query(None,
                                                    alias="invoiceType"),
        status: Optional[InvoiceStatus] = Query(None),
        patient_id: Optional[int] = Query(None, alias="patientId"),
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    rows = store.list_invoices(db,
                               user=user,
                               invoice_type=invoice_type,
                               status=status,
                               patient_id=patient_id)
    now = utcnow()
    return ok({"invoices": [_inv(r, now) for r in rows]},
              meta={"count": len(rows)})


@router.post("/invoices", status_code=201)
def create_invoice(
        inp: GenericInvoiceCreateIn,
        db: Session = Depends(get_db),
        user: User = Depends(billing_staff),
):
    inv = create_generic_invoice(db, inp=inp, user=user)
    return ok({"invoice": _inv(inv)}, status_code=201)


@router.get("/invoices/{invoice_id}")
def get_invoice(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    inv = store.get_invoice(db, invoice_id=invoice_id, user=user)
    return ok({"invoice": _inv(inv)})


@router.get("/invoices/{invoice_id}/payments")
def invoice_payments(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    rows = list_payments(db, invoice_id=invoice_id, user=user)
    return ok({"payments": [_pay(p) for p in rows]})


@router.post("/invoices/{invoice_id}/cancel")
def cancel_invoice(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_staff),
):
    inv = store.cancel_invoice(db, invoice_id=invoice_id, user=user)
    return ok({"invoice": _inv(inv)})


@router.post("/invoices/{invoice_id}/reopen")
def reopen_invoice(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_staff),
):
    inv = store.reopen_invoice(db, invoice_id=invoice_id, user=user)
    return ok({"invoice": _inv(inv)})


# ---------------- payments ----------------


@router.post("/payments")
def create_payment(
        inp: PaymentIn,
        idempotency_key: Optional[str] = Header(None,
                                                alias="Idempotency-Key"),
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    key = (idempotency_key or "").strip() or None
    pay, inv = record_payment(db, inp=inp, user=user, idempotency_key=key)
    return ok({"payment": _pay(pay), "invoice": _inv(inv)})
