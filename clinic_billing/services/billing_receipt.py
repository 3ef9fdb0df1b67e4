# FILE: clinic_billing/services/billing_receipt.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from clinic_billing.models.billing import InvoiceStatus
from clinic_billing.services.billing_calc import (
    D,
    ZERO,
    compute_line,
    is_overdue,
    money2,
    status_for,
)
from clinic_billing.utils.timezone import utcnow


def _iso(d: Optional[datetime]) -> Optional[str]:
    return d.isoformat() if d else None


def _m(x) -> str:
    return str(money2(x))


def project_receipt(inv,
                    clinic_name: str,
                    as_of: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Read-only financial view of an invoice for display / printing.

    Figures are recomputed from the lines; the stored subtotal is only used
    for an invoice without lines. The invoice is not modified.
    """
    as_of = as_of or utcnow()

    items = []
    line_sum = ZERO
    for idx, it in enumerate(inv.items or [], start=1):
        la = compute_line(it.quantity, it.unit_price)
        line_sum += la.line_total
        items.append({
            "sno": idx,
            "description": it.description,
            "quantity": la.quantity,
            "unitPrice": _m(la.unit_price),
            "lineTotal": _m(la.line_total),
        })

    subtotal = money2(line_sum) if items else money2(inv.subtotal)
    tax = money2(inv.tax)
    discount = money2(inv.discount)
    total = money2(max(ZERO, subtotal + tax - discount))
    paid = money2(inv.paid_amount)
    balance = money2(max(ZERO, total - paid))

    status = status_for(paid, total, inv.status)
    overdue = is_overdue(status, inv.due_date, balance, as_of)

    patient = inv.patient
    if patient is not None:
        patient_view = {
            "id": patient.id,
            "name": patient.full_name,
            "phone": patient.phone,
            "email": patient.email,
        }
    else:
        patient_view = {
            "id": inv.patient_id,
            "name": inv.patient_name,
            "phone": None,
            "email": None,
        }

    return {
        "clinic": {"name": clinic_name},
        "patient": patient_view,
        "invoice": {
            "id": inv.id,
            "invoiceNumber": inv.invoice_number,
            "invoiceType": inv.invoice_type,
            "status": InvoiceStatus.OVERDUE.value if overdue else status,
            "isOverdue": overdue,
            "createdAt": _iso(inv.created_at),
            "dueDate": _iso(inv.due_date),
            "notes": inv.notes,
        },
        "items": items,
        "financial": {
            "subtotal": _m(subtotal),
            "tax": _m(tax),
            "discount": _m(discount),
            "total": _m(total),
            "paidAmount": _m(paid),
            "balance": _m(balance),
            "overpaid": _m(max(ZERO, D(paid) - total)),
        },
        "context": dict(inv.context_snapshot or {}),
    }
