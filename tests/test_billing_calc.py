from datetime import timedelta
from decimal import Decimal

import pytest

from clinic_billing.models.billing import Invoice, InvoiceItem
from clinic_billing.services.billing_calc import (
    compute_totals,
    effective_status,
    equal_shares,
    recompute,
    status_for,
)
from clinic_billing.utils.timezone import utcnow


def _invoice(lines, **kw):
    inv = Invoice(
        tax=kw.get("tax", Decimal("0")),
        discount=kw.get("discount", Decimal("0")),
        paid_amount=kw.get("paid", Decimal("0")),
        status=kw.get("status", "pending"),
        due_date=kw.get("due_date"),
    )
    for seq, (qty, price) in enumerate(lines, start=1):
        inv.items.append(
            InvoiceItem(seq=seq, description=f"line {seq}", quantity=qty,
                        unit_price=Decimal(price)))
    return inv


def test_totals_clamp_at_zero():
    t = compute_totals([Decimal("50")], tax=0, discount=Decimal("80"),
                       paid_amount=0)
    assert t.subtotal == Decimal("50.00")
    assert t.total == Decimal("0.00")
    assert t.balance == Decimal("0.00")


def test_balance_never_negative_on_overpayment():
    t = compute_totals([Decimal("80")], paid_amount=Decimal("100"))
    assert t.total == Decimal("80.00")
    assert t.balance == Decimal("0.00")
    assert t.paid_amount == Decimal("100.00")
    assert t.status == "paid"


def test_status_mapping():
    assert status_for(0, 80) == "pending"
    assert status_for(30, 80) == "partially-paid"
    assert status_for(80, 80) == "paid"
    assert status_for(120, 80) == "paid"


def test_zero_total_invoice_is_settled():
    assert status_for(0, 0) == "paid"


def test_cancelled_is_sticky():
    assert status_for(80, 80, "cancelled") == "cancelled"
    assert status_for(0, 80, "cancelled") == "cancelled"


def test_recompute_derives_every_figure():
    inv = _invoice([(2, "25.00"), (1, "30.50")], tax=Decimal("8"),
                   discount=Decimal("3.5"), paid=Decimal("20"))
    inv.total = Decimal("999")
    inv.balance = Decimal("999")
    inv.status = "paid"

    recompute(inv)

    assert [it.line_total for it in inv.items] == [
        Decimal("50.00"), Decimal("30.50")
    ]
    assert inv.subtotal == Decimal("80.50")
    assert inv.total == Decimal("85.00")
    assert inv.balance == Decimal("65.00")
    assert inv.status == "partially-paid"


def test_overdue_is_computed_not_stored():
    now = utcnow()
    inv = _invoice([(1, "80")], due_date=now - timedelta(days=1))
    recompute(inv)
    assert inv.status == "pending"
    assert effective_status(inv, now) == "overdue"

    inv.paid_amount = Decimal("80")
    recompute(inv)
    assert effective_status(inv, now) == "paid"


def test_cancelled_invoice_is_never_overdue():
    now = utcnow()
    inv = _invoice([(1, "80")], due_date=now - timedelta(days=3),
                   status="cancelled")
    recompute(inv)
    assert effective_status(inv, now) == "cancelled"


def test_equal_shares_sum_exactly():
    shares = equal_shares(Decimal("100"), 3)
    assert shares == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(shares) == Decimal("100.00")

    assert equal_shares(Decimal("90"), 2) == [Decimal("45.00"),
                                              Decimal("45.00")]
    assert equal_shares(Decimal("10"), 0) == []


@pytest.mark.parametrize("amount,n", [
    ("0.02", 4),
    ("0.35", 10),
    ("1.50", 20),
    ("0.01", 7),
    ("99.99", 13),
])
def test_equal_shares_small_amounts_over_many_records(amount, n):
    amt = Decimal(amount)
    shares = equal_shares(amt, n)

    assert len(shares) == n
    assert sum(shares) == amt
    assert all(s >= 0 for s in shares)
    assert all(abs(s - amt / n) < Decimal("0.01") for s in shares)


def test_equal_shares_leftover_cents_go_last():
    assert equal_shares(Decimal("0.02"), 4) == [
        Decimal("0.00"),
        Decimal("0.00"),
        Decimal("0.01"),
        Decimal("0.01"),
    ]
