# FILE: clinic_billing/services/billing_calc.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from clinic_billing.models.billing import InvoiceStatus

Q2 = Decimal("0.01")
ZERO = Decimal("0")


def D(x) -> Decimal:
    if x is None:
        return ZERO
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def money2(x) -> Decimal:
    return D(x).quantize(Q2, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineAmounts:
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: str


def compute_line(quantity, unit_price) -> LineAmounts:
    qty = int(quantity or 0)
    price = money2(unit_price)
    return LineAmounts(quantity=qty,
                       unit_price=price,
                       line_total=money2(Decimal(qty) * price))


def status_for(paid_amount, total, current: Optional[str] = None) -> str:
    """
    pending -> partially-paid -> paid, driven only by paid vs total.
    cancelled is sticky: automatic transitions never leave it.
    """
    if current == InvoiceStatus.CANCELLED.value:
        return InvoiceStatus.CANCELLED.value

    paid = D(paid_amount)
    tot = D(total)
    # a zero-total invoice owes nothing, so it is already settled
    if paid >= tot:
        return InvoiceStatus.PAID.value
    if paid > 0:
        return InvoiceStatus.PARTIALLY_PAID.value
    return InvoiceStatus.PENDING.value


def compute_totals(
    line_totals: Iterable,
    *,
    tax=0,
    discount=0,
    paid_amount=0,
    current_status: Optional[str] = None,
) -> InvoiceTotals:
    subtotal = money2(sum((D(x) for x in line_totals), ZERO))
    tax_ = money2(tax)
    disc = money2(discount)
    total = max(ZERO, subtotal + tax_ - disc)
    paid = money2(paid_amount)
    balance = max(ZERO, total - paid)
    return InvoiceTotals(
        subtotal=subtotal,
        tax=tax_,
        discount=disc,
        total=money2(total),
        paid_amount=paid,
        balance=money2(balance),
        status=status_for(paid, total, current_status),
    )


def recompute(inv):
    """
    Re-derive every computed field of an invoice in place:
      item.line_total, subtotal, total, balance, status

    Called at the end of every write path; nothing a caller sends for
    these fields survives it.
    """
    line_totals = []
    for it in (inv.items or []):
        la = compute_line(it.quantity, it.unit_price)
        it.unit_price = la.unit_price
        it.line_total = la.line_total
        line_totals.append(la.line_total)

    t = compute_totals(
        line_totals,
        tax=inv.tax,
        discount=inv.discount,
        paid_amount=inv.paid_amount,
        current_status=inv.status,
    )
    inv.subtotal = t.subtotal
    inv.tax = t.tax
    inv.discount = t.discount
    inv.total = t.total
    inv.paid_amount = t.paid_amount
    inv.balance = t.balance
    inv.status = t.status
    return inv


def is_overdue(status: Optional[str], due_date: Optional[datetime], balance,
               now: datetime) -> bool:
    if status not in (InvoiceStatus.PENDING.value,
                      InvoiceStatus.PARTIALLY_PAID.value):
        return False
    if due_date is None:
        return False
    return due_date < now and D(balance) > 0


def effective_status(inv, now: datetime) -> str:
    """Stored status, or 'overdue' when a payable invoice is past due."""
    if is_overdue(inv.status, inv.due_date, inv.balance, now):
        return InvoiceStatus.OVERDUE.value
    return inv.status


def equal_shares(amount, n: int) -> Sequence[Decimal]:
    """
    Split amount into n shares of amount/n at 0.01 precision.
    Each share is amount/n rounded down; the leftover cents go one each
    to the last shares, so shares sum to the amount exactly and never
    differ from amount/n by more than 0.01.
    """
    if n <= 0:
        return []
    amt = money2(amount)
    base = (amt / Decimal(n)).quantize(Q2, rounding=ROUND_DOWN)
    shares = [base] * n
    cents = int((amt - base * n) / Q2)
    for i in range(n - cents, n):
        shares[i] += Q2
    return shares
