# FILE: clinic_billing/services/billing_invoice_store.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from clinic_billing.core import rbac
from clinic_billing.core.errors import (
    ConflictError,
    InvoiceCancelledError,
    ValidationError,
)
from clinic_billing.models.billing import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    InvoiceType,
    SourceKind,
)
from clinic_billing.repositories.source_records import (
    repository_for_invoice_type,
    repository_for_kind,
)
from clinic_billing.schemas.billing import (
    InvoiceItemOut,
    InvoiceOut,
    InvoiceUpdateIn,
    SourceContextOut,
    UnbilledRecordOut,
)
from clinic_billing.services.audit_logger import invoice_audit_values, log_audit
from clinic_billing.services.billing_access import (
    get_visible_invoice,
    visible_invoice_ids,
)
from clinic_billing.services.billing_calc import D, effective_status, money2, recompute
from clinic_billing.services.billing_invoice_create import medication_label
from clinic_billing.utils.timezone import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

_PAYABLE = (InvoiceStatus.PENDING.value, InvoiceStatus.PARTIALLY_PAID.value)


# ---------------------------------------------------------------------------
# serialization
# ---------------------------------------------------------------------------


def invoice_to_out(inv: Invoice, now: Optional[datetime] = None) -> InvoiceOut:
    now = now or utcnow()
    sources = list(inv.sources or [])
    return InvoiceOut(
        id=inv.id,
        invoice_number=inv.invoice_number,
        invoice_type=inv.invoice_type,
        patient_id=inv.patient_id,
        patient_name=inv.patient_name,
        items=[InvoiceItemOut.model_validate(it) for it in (inv.items or [])],
        subtotal=inv.subtotal,
        tax=inv.tax,
        discount=inv.discount,
        total=inv.total,
        paid_amount=inv.paid_amount,
        balance=inv.balance,
        status=effective_status(inv, now),
        source_context=SourceContextOut(
            kind=inv.invoice_type,
            source_kind=sources[0].source_kind if sources else None,
            source_ids=[int(s.source_id) for s in sources],
            snapshot=inv.context_snapshot or {},
        ),
        advance_payment_percentage=inv.advance_payment_percentage,
        due_date=inv.due_date,
        notes=inv.notes,
        cancelled_at=inv.cancelled_at,
        created_at=inv.created_at,
        updated_at=inv.updated_at,
    )


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------


def _check_kind(inv: Invoice, kind: Optional[InvoiceType]) -> None:
    if kind is not None and inv.invoice_type != kind.value:
        raise ValidationError(
            f"Invoice {inv.invoice_number} is a {inv.invoice_type} invoice, "
            f"not {kind.value}")


def get_invoice(db: Session,
                *,
                invoice_id: int,
                user,
                kind: Optional[InvoiceType] = None) -> Invoice:
    inv = get_visible_invoice(db, user, invoice_id)
    _check_kind(inv, kind)
    return inv


def _status_clause(status: InvoiceStatus, now: datetime):
    overdue = and_(
        Invoice.status.in_(_PAYABLE),
        Invoice.due_date.isnot(None),
        Invoice.due_date < now,
        Invoice.balance > 0,
    )
    if status == InvoiceStatus.OVERDUE:
        return overdue
    if status.value in _PAYABLE:
        # overdue rows are reported as overdue, not under their stored status
        return and_(
            Invoice.status == status.value,
            or_(Invoice.due_date.is_(None), Invoice.due_date >= now,
                Invoice.balance <= 0),
        )
    return Invoice.status == status.value


def list_invoices(
    db: Session,
    *,
    user,
    invoice_type: Optional[InvoiceType] = None,
    status: Optional[InvoiceStatus] = None,
    patient_id: Optional[int] = None,
    limit: int = 200,
) -> List[Invoice]:
    scope = visible_invoice_ids(db, user)
    if scope is not None and not scope:
        return []

    q = db.query(Invoice).options(
        selectinload(Invoice.items),
        selectinload(Invoice.sources),
    )
    if scope is not None:
        q = q.filter(Invoice.id.in_(sorted(scope)))
    if invoice_type:
        q = q.filter(Invoice.invoice_type == invoice_type.value)
    if patient_id:
        q = q.filter(Invoice.patient_id == int(patient_id))
    if status:
        q = q.filter(_status_clause(status, utcnow()))

    return q.order_by(Invoice.created_at.desc(),
                      Invoice.id.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# writes
# ---------------------------------------------------------------------------


def _replace_lines(inv: Invoice, lines: List[InvoiceItem]) -> None:
    inv.items.clear()
    for seq, it in enumerate(lines, start=1):
        it.seq = seq
        inv.items.append(it)


def _commit(db: Session, inv: Invoice) -> None:
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConflictError(
            "Invoice was modified concurrently, re-read and retry",
            extra={"invoice_id": inv.id},
        )


def update_invoice(
    db: Session,
    *,
    invoice_id: int,
    kind: InvoiceType,
    inp: InvoiceUpdateIn,
    user,
) -> Invoice:
    """
    Apply a partial update, then recompute.

    Only cost / line inputs, tax, discount, paid amount, notes and due date
    are taken from the body; derived figures are never accepted.
    """
    sent = inp.model_fields_set

    try:
        inv = get_visible_invoice(db, user, invoice_id, lock=True)
        _check_kind(inv, kind)
        if inv.status == InvoiceStatus.CANCELLED.value:
            raise InvoiceCancelledError("Cannot update a cancelled invoice")

        before = invoice_audit_values(inv)

        if "cost" in sent and inp.cost is not None:
            first = inv.items[0] if inv.items else None
            if first is None:
                first = InvoiceItem(seq=1,
                                    description=f"{kind.value.title()} charge")
                inv.items.append(first)
            first.quantity = 1
            first.unit_price = money2(inp.cost)

        if "medications" in sent and inp.medications is not None:
            if kind != InvoiceType.PRESCRIPTION:
                raise ValidationError(
                    "medications apply to prescription invoices only")
            src_id = inv.source_ids[0] if inv.source_ids else None
            _replace_lines(inv, [
                InvoiceItem(
                    description=medication_label(m)[:300],
                    quantity=int(m.quantity),
                    unit_price=money2(m.unit_price),
                    source_kind=SourceKind.PRESCRIPTION.value,
                    source_id=src_id,
                ) for m in inp.medications
            ])
            snap = dict(inv.context_snapshot or {})
            snap["medications"] = [
                m.model_dump(by_alias=True, mode="json")
                for m in inp.medications
            ]
            inv.context_snapshot = snap

        if "items" in sent and inp.items is not None:
            if kind != InvoiceType.GENERIC:
                raise ValidationError("items apply to generic invoices only")
            if not inp.items:
                raise ValidationError("items required")
            _replace_lines(inv, [
                InvoiceItem(description=it.description[:300],
                            quantity=it.quantity,
                            unit_price=money2(it.unit_price))
                for it in inp.items
            ])

        if ("paid_amount" in sent and inp.paid_amount is not None
                and kind == InvoiceType.PROCEDURE):
            # treatment shares only move through record_payment
            raise ValidationError(
                "Paid amount of a procedure invoice changes only by "
                "recording a payment")

        for name in ("tax", "discount", "paid_amount"):
            if name in sent and getattr(inp, name) is not None:
                setattr(inv, name, money2(getattr(inp, name)))

        if "notes" in sent:
            inv.notes = inp.notes
        if "due_date" in sent:
            inv.due_date = as_naive_utc(inp.due_date)

        inv.updated_by = getattr(user, "id", None)
        recompute(inv)
        db.flush()

        log_audit(
            db,
            user_id=getattr(user, "id", None),
            action="UPDATE",
            table_name="billing_invoices",
            record_id=inv.id,
            old_values=before,
            new_values=invoice_audit_values(inv),
        )
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConflictError(
            "Invoice was modified concurrently, re-read and retry",
            extra={"invoice_id": int(invoice_id)},
        )
    except Exception:
        db.rollback()
        raise

    db.refresh(inv)
    logger.info("invoice %s updated (%s)", inv.invoice_number,
                ",".join(sorted(sent)))
    return inv


def cancel_invoice(db: Session, *, invoice_id: int, user) -> Invoice:
    inv = get_visible_invoice(db, user, invoice_id, lock=True)
    if inv.status == InvoiceStatus.CANCELLED.value:
        return inv

    before = invoice_audit_values(inv)
    inv.status = InvoiceStatus.CANCELLED.value
    inv.cancelled_at = utcnow()
    inv.updated_by = getattr(user, "id", None)
    recompute(inv)

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="CANCEL",
        table_name="billing_invoices",
        record_id=inv.id,
        old_values=before,
        new_values=invoice_audit_values(inv),
    )
    _commit(db, inv)
    db.refresh(inv)
    logger.info("invoice %s cancelled", inv.invoice_number)
    return inv


def reopen_invoice(db: Session, *, invoice_id: int, user) -> Invoice:
    inv = get_visible_invoice(db, user, invoice_id, lock=True)
    if inv.status != InvoiceStatus.CANCELLED.value:
        raise ValidationError("Only cancelled invoices can be reopened")

    before = invoice_audit_values(inv)
    # leave cancelled, then let recompute derive the payable status
    inv.status = InvoiceStatus.PENDING.value
    inv.cancelled_at = None
    inv.updated_by = getattr(user, "id", None)
    recompute(inv)

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="REOPEN",
        table_name="billing_invoices",
        record_id=inv.id,
        old_values=before,
        new_values=invoice_audit_values(inv),
    )
    _commit(db, inv)
    db.refresh(inv)
    logger.info("invoice %s reopened as %s", inv.invoice_number, inv.status)
    return inv


def delete_invoice(db: Session, *, invoice_id: int, kind: InvoiceType,
                   user) -> None:
    """
    Release every linked source record, then delete the invoice with its
    lines, source links and payments. One transaction.
    """
    try:
        inv = get_visible_invoice(db, user, invoice_id, lock=True)
        _check_kind(inv, kind)

        by_kind: Dict[str, List[int]] = defaultdict(list)
        for s in inv.sources:
            by_kind[s.source_kind].append(int(s.source_id))

        released = 0
        for source_kind, ids in by_kind.items():
            repo = repository_for_kind(db, SourceKind(source_kind))
            released += repo.update_invoice_ref(ids, None)
            if repo.tracks_payment_share:
                # shares came from this invoice's payments, which go with it
                for rec in repo.find_many(ids, lock=True):
                    repo.apply_payment_share(rec,
                                             -D(rec.paid_amount_share))

        log_audit(
            db,
            user_id=getattr(user, "id", None),
            action="DELETE",
            table_name="billing_invoices",
            record_id=inv.id,
            old_values={
                **invoice_audit_values(inv),
                "sources": {k: v for k, v in by_kind.items()},
                "payments": [[p.payment_number, str(p.amount)]
                             for p in inv.payments],
            },
        )
        number = inv.invoice_number
        db.delete(inv)
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConflictError(
            "Invoice was modified concurrently, re-read and retry",
            extra={"invoice_id": int(invoice_id)},
        )
    except Exception:
        db.rollback()
        raise

    logger.info("invoice %s deleted, %s source record(s) released", number,
                released)


# ---------------------------------------------------------------------------
# records ready for billing
# ---------------------------------------------------------------------------


def _record_view(kind: SourceKind, r) -> UnbilledRecordOut:
    if kind == SourceKind.APPOINTMENT:
        desc = f"{r.appointment_type or 'checkup'} appointment"
        cost = r.checkup_fee
    elif kind == SourceKind.TREATMENT:
        desc = r.procedure_name or r.description or r.treatment_type
        cost = r.actual_cost or r.estimated_cost
    elif kind == SourceKind.LAB_WORK:
        desc = f"{r.work_type} - {r.lab_name}"
        cost = r.cost
    else:
        desc = f"Prescription {r.prescription_number or r.id}"
        cost = r.total_cost
    return UnbilledRecordOut(
        id=r.id,
        kind=kind.value,
        patient_id=r.patient_id,
        dentist_id=r.dentist_id,
        status=r.status,
        description=desc or "",
        cost=cost,
    )


def list_unbilled_records(
    db: Session,
    *,
    invoice_type: InvoiceType,
    user,
    patient_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[UnbilledRecordOut]:
    if invoice_type == InvoiceType.GENERIC:
        raise ValidationError("Generic invoices have no source records")
    repo = repository_for_invoice_type(db, invoice_type)
    dentist_id = int(user.id) if rbac.is_dentist(user) else None
    rows = repo.list_unbilled(patient_id=patient_id,
                              dentist_id=dentist_id,
                              status=status)
    return [_record_view(repo.kind, r) for r in rows]
