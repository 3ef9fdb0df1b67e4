# FILE: clinic_billing/services/billing_invoice_create.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_billing.core.config import settings
from clinic_billing.core.errors import (
    AlreadyBilledError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from clinic_billing.models.billing import (
    Invoice,
    InvoiceItem,
    InvoiceSource,
    InvoiceStatus,
    InvoiceType,
)
from clinic_billing.models.patient import Patient
from clinic_billing.repositories.source_records import (
    SourceRecordRepository,
    repository_for_invoice_type,
)
from clinic_billing.schemas.billing import (
    GenericInvoiceCreateIn,
    MedicationIn,
    SourceInvoiceCreateIn,
)
from clinic_billing.services.audit_logger import invoice_audit_values, log_audit
from clinic_billing.services.billing_access import ensure_records_owned
from clinic_billing.services.billing_calc import D, money2, recompute
from clinic_billing.services.billing_numbers import next_invoice_number
from clinic_billing.services.billing_payment_service import distribute_payment
from clinic_billing.utils.timezone import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

# kinds billed from exactly one record
SINGLE_RECORD_TYPES = {InvoiceType.CHECKUP, InvoiceType.PRESCRIPTION}

# kinds whose initial paid amount is spread over the linked records
DISTRIBUTED_TYPES = {InvoiceType.PROCEDURE, InvoiceType.LAB}


@dataclass
class LineDraft:
    description: str
    quantity: int
    unit_price: Decimal
    source_id: Optional[int] = None


@dataclass
class InvoiceDraft:
    lines: List[LineDraft]
    snapshot: Dict[str, Any] = field(default_factory=dict)
    default_notes: str = ""


def _fmt_date(d: Optional[datetime]) -> str:
    return d.strftime("%d-%m-%Y") if d else ""


def _iso(d: Optional[datetime]) -> Optional[str]:
    return d.isoformat() if d else None


def _money_str(x) -> Optional[str]:
    return None if x is None else str(money2(x))


def resolve_cost(
    invoice_type: InvoiceType,
    *candidates,
    override: Optional[Decimal] = None,
) -> Decimal:
    """
    First non-empty wins: override -> record costs (in the order given)
    -> configured default fee for the kind.
    A zero or missing record cost counts as empty; an explicit override
    of zero does not.
    """
    if override is not None:
        return money2(override)
    for c in candidates:
        if c is not None and D(c) > 0:
            return money2(c)
    fee = settings.default_fees().get(invoice_type.value)
    if fee is not None:
        return money2(fee)
    raise ConfigurationError(
        f"No cost on record and no default {invoice_type.value} fee configured",
        extra={"invoice_type": invoice_type.value},
    )


# ---------------------------------------------------------------------------
# per-kind line builders
# ---------------------------------------------------------------------------


def _build_checkup(records, inp: SourceInvoiceCreateIn,
                   override: Optional[Decimal]) -> InvoiceDraft:
    appt = records[0]
    dentist = appt.dentist
    dentist_name = dentist.full_name if dentist else ""
    fee = resolve_cost(
        InvoiceType.CHECKUP,
        appt.checkup_fee,
        getattr(dentist, "checkup_fee", None),
        override=override,
    )
    return InvoiceDraft(
        lines=[
            LineDraft(
                description=f"Checkup - Dr. {dentist_name}".strip(),
                quantity=1,
                unit_price=fee,
                source_id=int(appt.id),
            )
        ],
        snapshot={
            "appointmentDate": _iso(appt.appointment_date),
            "appointmentType": appt.appointment_type,
            "dentistName": dentist_name,
        },
        default_notes=
        f"Checkup fee for appointment on {_fmt_date(appt.appointment_date)}",
    )


def _treatment_label(t) -> str:
    name = t.procedure_name or t.description or t.treatment_type
    teeth = ", ".join(str(x) for x in (t.teeth or [])) or "N/A"
    return f"{name} - {teeth}"


def _build_procedure(records, inp: SourceInvoiceCreateIn,
                     override: Optional[Decimal]) -> InvoiceDraft:
    lines = [
        LineDraft(
            description=_treatment_label(t),
            quantity=1,
            unit_price=resolve_cost(InvoiceType.PROCEDURE,
                                    t.actual_cost,
                                    t.estimated_cost,
                                    override=override),
            source_id=int(t.id),
        ) for t in records
    ]
    return InvoiceDraft(
        lines=lines,
        snapshot={
            "procedures": [{
                "id": int(t.id),
                "type": t.treatment_type,
                "name": t.procedure_name,
                "description": t.description,
                "teeth": list(t.teeth or []),
                "cost": _money_str(t.actual_cost or t.estimated_cost),
            } for t in records]
        },
        default_notes=f"Procedure fees for {len(records)} treatment(s)",
    )


def _build_lab(records, inp: SourceInvoiceCreateIn,
               override: Optional[Decimal]) -> InvoiceDraft:
    lines = [
        LineDraft(
            description=f"{lw.work_type} - {lw.lab_name}",
            quantity=1,
            unit_price=resolve_cost(InvoiceType.LAB,
                                    lw.cost,
                                    override=override),
            source_id=int(lw.id),
        ) for lw in records
    ]
    return InvoiceDraft(
        lines=lines,
        snapshot={
            "labOrders": [{
                "id": int(lw.id),
                "workType": lw.work_type,
                "labName": lw.lab_name,
                "cost": _money_str(lw.cost),
                "status": lw.status,
            } for lw in records]
        },
        default_notes=f"Lab charges for {len(records)} lab work order(s)",
    )


def _medications(inp_meds: Optional[Sequence[MedicationIn]],
                 stored: Optional[Sequence[dict]]) -> List[MedicationIn]:
    if inp_meds:
        return list(inp_meds)
    return [MedicationIn.model_validate(m) for m in (stored or [])]


def medication_label(m: MedicationIn) -> str:
    return (f"{m.name} - {m.dosage or ''} "
            f"({m.frequency or ''} for {m.duration or ''})").strip()


def _build_prescription(records, inp: SourceInvoiceCreateIn,
                        override: Optional[Decimal]) -> InvoiceDraft:
    rx = records[0]
    dentist_name = rx.dentist.full_name if rx.dentist else ""
    meds = _medications(inp.medications, rx.medications)

    if meds:
        lines = [
            LineDraft(description=medication_label(m),
                      quantity=int(m.quantity),
                      unit_price=money2(m.unit_price),
                      source_id=int(rx.id)) for m in meds
        ]
    else:
        lines = [
            LineDraft(
                description="Prescription medicines",
                quantity=1,
                unit_price=resolve_cost(InvoiceType.PRESCRIPTION,
                                        rx.total_cost,
                                        override=override),
                source_id=int(rx.id),
            )
        ]

    return InvoiceDraft(
        lines=lines,
        snapshot={
            "prescriptionNumber": rx.prescription_number,
            "prescriptionDate": _iso(rx.prescription_date),
            "dentistName": dentist_name,
            "medications": [{
                "name": m.name,
                "dosage": m.dosage,
                "frequency": m.frequency,
                "duration": m.duration,
                "quantity": int(m.quantity),
                "unitPrice": str(money2(m.unit_price)),
                "totalPrice": str(money2(m.unit_price * m.quantity)),
            } for m in meds],
        },
        default_notes=
        f"Prescription medicines - {rx.prescription_number or rx.id}",
    )


DraftBuilder = Callable[[Sequence[Any], SourceInvoiceCreateIn, Optional[Decimal]],
                        InvoiceDraft]

LINE_BUILDERS: Dict[InvoiceType, DraftBuilder] = {
    InvoiceType.CHECKUP: _build_checkup,
    InvoiceType.PROCEDURE: _build_procedure,
    InvoiceType.LAB: _build_lab,
    InvoiceType.PRESCRIPTION: _build_prescription,
}

# ---------------------------------------------------------------------------
# creation
# ---------------------------------------------------------------------------


def default_due_date(invoice_type: InvoiceType, created_at: datetime) -> datetime:
    days = settings.due_days().get(invoice_type.value, 30)
    return created_at + timedelta(days=int(days))


def _dedupe(ids: Sequence[int]) -> List[int]:
    seen = set()
    out = []
    for i in ids:
        i = int(i)
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def _load_sources(repo: SourceRecordRepository, invoice_type: InvoiceType,
                  ids: List[int], user) -> List[Any]:
    if not ids:
        raise ValidationError("At least one source record id is required")
    if invoice_type in SINGLE_RECORD_TYPES and len(ids) != 1:
        raise ValidationError(
            f"A {invoice_type.value} invoice is billed from exactly one record")

    records = repo.find_many(ids, lock=True)
    if len(records) != len(ids):
        missing = sorted(set(ids) - {int(r.id) for r in records})
        raise NotFoundError("Source record not found",
                            extra={"missing": missing})

    ensure_records_owned(user, records)

    patient_ids = {int(r.patient_id) for r in records}
    if len(patient_ids) > 1:
        raise ValidationError(
            "All source records must belong to the same patient")

    billed = [int(r.id) for r in records if r.invoice_id is not None]
    if billed:
        raise AlreadyBilledError("Source record already billed",
                                 extra={"source_ids": billed})
    return records


def _new_invoice(
    db: Session,
    *,
    invoice_type: InvoiceType,
    patient: Optional[Patient],
    patient_name: Optional[str],
    lines: Sequence[LineDraft],
    source_kind: Optional[str],
    inp,
    notes: Optional[str],
    snapshot: Optional[Dict[str, Any]],
    user,
) -> Invoice:
    now = utcnow()
    inv = Invoice(
        invoice_number=next_invoice_number(db, now=now),
        invoice_type=invoice_type.value,
        patient_id=int(patient.id) if patient else None,
        patient_name=(patient.full_name if patient else None) or patient_name,
        tax=money2(inp.tax),
        discount=money2(inp.discount),
        paid_amount=money2(inp.paid_amount),
        status=InvoiceStatus.PENDING.value,
        context_snapshot=snapshot or {},
        due_date=as_naive_utc(inp.due_date) or default_due_date(
            invoice_type, now),
        notes=notes,
        created_by=getattr(user, "id", None),
        created_at=now,
    )
    for seq, ln in enumerate(lines, start=1):
        inv.items.append(
            InvoiceItem(
                seq=seq,
                description=ln.description[:300],
                quantity=int(ln.quantity),
                unit_price=money2(ln.unit_price),
                source_kind=source_kind if ln.source_id else None,
                source_id=ln.source_id,
            ))
    recompute(inv)
    return inv


def create_source_invoice(
    db: Session,
    *,
    invoice_type: InvoiceType,
    inp: SourceInvoiceCreateIn,
    user,
) -> Invoice:
    """
    Build and persist an invoice from clinical records of one kind.

    The invoice row, its lines, its source links and the invoice_id
    back-reference on every record are written in one transaction. Any
    failure rolls all of it back.
    """
    if invoice_type not in LINE_BUILDERS:
        raise ValidationError(f"Invalid invoice type: {invoice_type.value}")

    repo = repository_for_invoice_type(db, invoice_type)
    ids = _dedupe(inp.source_ids)

    try:
        records = _load_sources(repo, invoice_type, ids, user)

        # a hand-entered price is only unambiguous for a single record
        override = inp.cost if len(ids) == 1 else None
        draft = LINE_BUILDERS[invoice_type](records, inp, override)

        patient = records[0].patient
        inv = _new_invoice(
            db,
            invoice_type=invoice_type,
            patient=patient,
            patient_name=None,
            lines=draft.lines,
            source_kind=repo.kind.value,
            inp=inp,
            notes=inp.notes or draft.default_notes,
            snapshot=draft.snapshot,
            user=user,
        )
        if invoice_type == InvoiceType.PROCEDURE:
            pct = inp.advance_payment_percentage
            inv.advance_payment_percentage = (
                pct if pct is not None else
                settings.BILLING_ADVANCE_PAYMENT_PERCENTAGE)

        for r in records:
            inv.sources.append(
                InvoiceSource(source_kind=repo.kind.value,
                              source_id=int(r.id)))

        db.add(inv)
        try:
            db.flush()
        except IntegrityError:
            # another invoice linked one of these records first
            raise AlreadyBilledError("Source record already billed",
                                     extra={"source_ids": ids})

        marked = repo.update_invoice_ref(ids, int(inv.id),
                                         expect_unbilled=True)
        if marked != len(ids):
            raise AlreadyBilledError("Source record already billed",
                                     extra={"source_ids": ids})

        if invoice_type in DISTRIBUTED_TYPES and D(inv.paid_amount) > 0:
            distribute_payment(repo, records, inv.paid_amount)

        log_audit(
            db,
            user_id=getattr(user, "id", None),
            action="CREATE",
            table_name="billing_invoices",
            record_id=inv.id,
            new_values={
                **invoice_audit_values(inv),
                "source_kind": repo.kind.value,
                "source_ids": ids,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(inv)
    logger.info("invoice %s (%s) created from %s %s", inv.invoice_number,
                inv.invoice_type, repo.kind.value, ids)
    return inv


def create_generic_invoice(
    db: Session,
    *,
    inp: GenericInvoiceCreateIn,
    user,
) -> Invoice:
    """Invoice from explicit line items, not tied to any clinical record."""
    patient = None
    if inp.patient_id:
        patient = db.get(Patient, int(inp.patient_id))
        if not patient:
            raise NotFoundError("Patient not found")

    lines = [
        LineDraft(description=it.description,
                  quantity=it.quantity,
                  unit_price=it.unit_price) for it in inp.items
    ]
    try:
        inv = _new_invoice(
            db,
            invoice_type=InvoiceType.GENERIC,
            patient=patient,
            patient_name=inp.patient_name,
            lines=lines,
            source_kind=None,
            inp=inp,
            notes=inp.notes,
            snapshot={},
            user=user,
        )
        db.add(inv)
        db.flush()
        log_audit(
            db,
            user_id=getattr(user, "id", None),
            action="CREATE",
            table_name="billing_invoices",
            record_id=inv.id,
            new_values=invoice_audit_values(inv),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(inv)
    logger.info("generic invoice %s created", inv.invoice_number)
    return inv


def advance_info(inv: Invoice) -> Dict[str, Decimal]:
    """Advisory deposit figures for procedure invoices (never enforced)."""
    pct = D(inv.advance_payment_percentage)
    return {
        "required": money2(D(inv.subtotal) * pct / Decimal("100")),
        "paid": money2(inv.paid_amount),
        "percentage": pct,
        "balance": money2(inv.balance),
    }
