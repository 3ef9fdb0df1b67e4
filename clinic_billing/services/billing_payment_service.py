# FILE: clinic_billing/services/billing_payment_service.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from clinic_billing.core.errors import (
    ConflictError,
    InvoiceCancelledError,
    NotFoundError,
    ValidationError,
)
from clinic_billing.models.billing import (
    Invoice,
    InvoiceStatus,
    InvoiceType,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from clinic_billing.repositories.source_records import (
    SourceRecordRepository,
    repository_for_invoice_type,
)
from clinic_billing.schemas.billing_payments import PaymentIn
from clinic_billing.services.audit_logger import log_audit
from clinic_billing.services.billing_access import (
    ensure_invoice_visible,
    get_visible_invoice,
)
from clinic_billing.services.billing_calc import D, equal_shares, money2, recompute
from clinic_billing.services.billing_numbers import next_payment_number
from clinic_billing.utils.timezone import as_naive_utc, utcnow

logger = logging.getLogger(__name__)


def distribute_payment(
    repo: SourceRecordRepository,
    records: Sequence[Any],
    amount,
) -> List[Tuple[int, Decimal]]:
    """
    Spread amount equally over the records' paid_amount_share.
    Shares are quantized to 0.01; the last record takes the remainder.
    """
    if not records or not repo.tracks_payment_share:
        return []
    shares = equal_shares(amount, len(records))
    out = []
    for rec, share in zip(records, shares):
        repo.apply_payment_share(rec, share)
        out.append((int(rec.id), share))
    logger.debug("distributed %s over %s %s records", money2(amount),
                 len(records), repo.kind.value)
    return out


def _parse_method(raw: Optional[str]) -> PaymentMethod:
    try:
        return PaymentMethod((raw or "").strip().lower())
    except ValueError:
        raise ValidationError(
            "Invalid payment method",
            extra={"allowed": [m.value for m in PaymentMethod]},
        )


def _replay(db: Session, user, key: str,
            invoice_id: int) -> Optional[Tuple[Payment, Invoice]]:
    prior = db.query(Payment).filter(Payment.idempotency_key == key).first()
    if not prior:
        return None
    if int(prior.invoice_id) != int(invoice_id):
        raise ValidationError(
            "Idempotency key already used for a different invoice")
    inv = get_visible_invoice(db, user, invoice_id)
    logger.info("payment replay for invoice %s (payment %s)", invoice_id,
                prior.payment_number)
    return prior, inv


def record_payment(
    db: Session,
    *,
    inp: PaymentIn,
    user,
    idempotency_key: Optional[str] = None,
) -> Tuple[Payment, Invoice]:
    """
    Record one completed payment and apply it to the invoice.

    The invoice row is read FOR UPDATE and written through its version
    column; a concurrent writer that got there first makes this call fail
    with ConflictError instead of losing an amount. Callers may retry a
    ConflictError after re-reading the invoice.
    """
    key = idempotency_key or inp.idempotency_key
    invoice_id = int(inp.invoice_id)

    if key:
        replay = _replay(db, user, key, invoice_id)
        if replay:
            return replay

    amount = money2(inp.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    method = _parse_method(inp.payment_method)

    try:
        inv = get_visible_invoice(db, user, invoice_id, lock=True)
        if inv.status == InvoiceStatus.CANCELLED.value:
            raise InvoiceCancelledError("Cannot record payment on a cancelled invoice")

        before = {"paid_amount": str(inv.paid_amount), "status": inv.status}

        # overpayment is accepted; balance clamps at 0 in recompute
        inv.paid_amount = money2(D(inv.paid_amount) + amount)
        inv.updated_by = getattr(user, "id", None)
        recompute(inv)
        db.flush()

        pay = Payment(
            payment_number=next_payment_number(db),
            invoice_id=int(inv.id),
            patient_id=inv.patient_id,
            amount=amount,
            method=method.value,
            transaction_id=inp.transaction_id,
            notes=inp.notes,
            status=PaymentStatus.COMPLETED.value,
            payment_date=as_naive_utc(inp.payment_date) or utcnow(),
            idempotency_key=key,
            received_by=getattr(user, "id", None),
        )
        db.add(pay)

        shares = []
        if inv.invoice_type == InvoiceType.PROCEDURE.value and len(
                inv.source_ids) > 1:
            repo = repository_for_invoice_type(db, InvoiceType.PROCEDURE)
            records = repo.find_many(inv.source_ids, lock=True)
            shares = distribute_payment(repo, records, amount)

        db.flush()
        log_audit(
            db,
            user_id=getattr(user, "id", None),
            action="PAYMENT",
            table_name="billing_invoices",
            record_id=inv.id,
            old_values=before,
            new_values={
                "payment_number": pay.payment_number,
                "amount": str(amount),
                "method": method.value,
                "paid_amount": str(inv.paid_amount),
                "status": inv.status,
                "shares": [[sid, str(s)] for sid, s in shares],
            },
        )
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning("concurrent payment on invoice %s, rejected",
                       invoice_id)
        raise ConflictError(
            "Invoice was modified concurrently, re-read and retry",
            extra={"invoice_id": invoice_id},
        )
    except IntegrityError:
        db.rollback()
        if key:
            # same key committed by a parallel request
            replay = _replay(db, user, key, invoice_id)
            if replay:
                return replay
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(inv)
    db.refresh(pay)
    logger.info("payment %s of %s on invoice %s -> %s", pay.payment_number,
                amount, inv.invoice_number, inv.status)
    return pay, inv


def list_payments(db: Session, *, invoice_id: int, user) -> List[Payment]:
    ensure_invoice_visible(db, user, invoice_id)
    exists = db.query(Invoice.id).filter(Invoice.id == int(invoice_id)).first()
    if not exists:
        raise NotFoundError("Invoice not found")
    return (db.query(Payment).filter(
        Payment.invoice_id == int(invoice_id)).order_by(Payment.id.asc()).all())
