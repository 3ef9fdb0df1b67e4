# FILE: clinic_billing/api/routes_billing_kinds.py
from __future__ import annotations

from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from clinic_billing.api.deps import billing_user, get_db
from clinic_billing.api.response import ok
from clinic_billing.core.config import settings
from clinic_billing.core.errors import NotFoundError, ValidationError
from clinic_billing.models.billing import SOURCE_INVOICE_TYPES, InvoiceType
from clinic_billing.models.user import User
from clinic_billing.schemas.billing import (
    AdvanceInfoOut,
    InvoiceUpdateIn,
    SourceInvoiceCreateIn,
)
from clinic_billing.services import billing_invoice_store as store
from clinic_billing.services.billing_invoice_create import (
    advance_info,
    create_source_invoice,
)
from clinic_billing.services.billing_receipt import project_receipt
from clinic_billing.services.pdf_receipt import build_receipt_pdf

router = APIRouter(prefix="/billing", tags=["Billing - by kind"])


def _kind(raw: str) -> InvoiceType:
    try:
        return InvoiceType((raw or "").strip().lower())
    except ValueError:
        raise NotFoundError(f"Unknown billing kind: {raw}")


def _source_kind(raw: str) -> InvoiceType:
    kind = _kind(raw)
    if kind not in SOURCE_INVOICE_TYPES:
        raise ValidationError(
            f"{kind.value} invoices are not built from source records")
    return kind


def _invoice_payload(inv) -> dict:
    data = {
        "invoice":
        store.invoice_to_out(inv).model_dump(by_alias=True, mode="json")
    }
    if inv.invoice_type == InvoiceType.PROCEDURE.value:
        data["advanceInfo"] = AdvanceInfoOut(**advance_info(inv)).model_dump(
            by_alias=True, mode="json")
    return data


@router.get("/{kind}/unbilled")
def unbilled_records(
        kind: str,
        patient_id: Optional[int] = Query(None, alias="patientId"),
        status: Optional[str] = Query(None),
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    rows = store.list_unbilled_records(db,
                                       invoice_type=_source_kind(kind),
                                       user=user,
                                       patient_id=patient_id,
                                       status=status)
    return ok({
        "records":
        [r.model_dump(by_alias=True, mode="json") for r in rows]
    })


@router.post("/{kind}", status_code=201)
def create_kind_invoice(
        kind: str,
        inp: SourceInvoiceCreateIn,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    inv = create_source_invoice(db,
                                invoice_type=_source_kind(kind),
                                inp=inp,
                                user=user)
    return ok(_invoice_payload(inv), status_code=201)


@router.get("/{kind}/{invoice_id}")
def get_kind_invoice(
        kind: str,
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    inv = store.get_invoice(db,
                            invoice_id=invoice_id,
                            user=user,
                            kind=_kind(kind))
    return ok(_invoice_payload(inv))


@router.put("/{kind}/{invoice_id}")
def update_kind_invoice(
        kind: str,
        invoice_id: int,
        inp: InvoiceUpdateIn,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    inv = store.update_invoice(db,
                               invoice_id=invoice_id,
                               kind=_kind(kind),
                               inp=inp,
                               user=user)
    return ok(_invoice_payload(inv))


@router.delete("/{kind}/{invoice_id}")
def delete_kind_invoice(
        kind: str,
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    store.delete_invoice(db,
                         invoice_id=invoice_id,
                         kind=_kind(kind),
                         user=user)
    return ok({"deleted": True, "invoiceId": invoice_id})


@router.get("/{kind}/{invoice_id}/receipt")
def kind_receipt(
        kind: str,
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    inv = store.get_invoice(db,
                            invoice_id=invoice_id,
                            user=user,
                            kind=_kind(kind))
    return ok({"receipt": project_receipt(inv, settings.CLINIC_NAME)})


@router.get("/{kind}/{invoice_id}/receipt/pdf")
def kind_receipt_pdf(
        kind: str,
        invoice_id: int,
        db: Session = Depends(get_db),
        user: User = Depends(billing_user),
):
    inv = store.get_invoice(db,
                            invoice_id=invoice_id,
                            user=user,
                            kind=_kind(kind))
    pdf_bytes = build_receipt_pdf(project_receipt(inv, settings.CLINIC_NAME))
    safe_no = str(inv.invoice_number).replace("/", "-").replace(" ", "_")
    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="receipt_{safe_no}.pdf"'
        },
    )
