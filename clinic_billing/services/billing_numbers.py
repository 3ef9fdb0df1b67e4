from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from clinic_billing.models.billing import (
    NumberSeries,
    NumberDocType,
    NumberResetPeriod,
)
from clinic_billing.utils.timezone import utcnow


def _period_key(dt: datetime, reset: NumberResetPeriod) -> Optional[str]:
    if reset == NumberResetPeriod.NONE:
        return None
    if reset == NumberResetPeriod.YEAR:
        return dt.strftime("%Y")
    return dt.strftime("%Y%m")  # MONTH


def next_number(
    db: Session,
    *,
    doc_type: NumberDocType,
    reset_period: NumberResetPeriod,
    prefix: str,
    padding: int = 6,
    now: Optional[datetime] = None,
) -> str:
    """
    Next number of a series. The series row is locked FOR UPDATE, so two
    transactions never hand out the same number.
    """
    now = now or utcnow()
    pk = _period_key(now, reset_period)

    row = (db.query(NumberSeries).filter(
        NumberSeries.doc_type == doc_type.value,
        NumberSeries.prefix == prefix,
        NumberSeries.is_active.is_(True),
    ).with_for_update().first())

    if not row:
        row = NumberSeries(
            doc_type=doc_type.value,
            prefix=prefix,
            reset_period=reset_period.value,
            padding=padding,
            next_number=1,
            last_period_key=pk,
            is_active=True,
        )
        db.add(row)
        db.flush()

    # reset logic
    if reset_period != NumberResetPeriod.NONE and row.last_period_key != pk:
        row.last_period_key = pk
        row.next_number = 1

    n = int(row.next_number or 1)
    row.next_number = n + 1
    db.flush()

    return f"{prefix}{str(n).zfill(int(row.padding or padding))}"


def next_invoice_number(db: Session, now: Optional[datetime] = None) -> str:
    # INV + YYYYMM + 0001, restarting every month
    now = now or utcnow()
    return next_number(
        db,
        doc_type=NumberDocType.INVOICE,
        reset_period=NumberResetPeriod.MONTH,
        prefix=f"INV{now.strftime('%Y%m')}",
        padding=4,
        now=now,
    )


def next_payment_number(db: Session) -> str:
    return next_number(
        db,
        doc_type=NumberDocType.PAYMENT,
        reset_period=NumberResetPeriod.NONE,
        prefix="PAY-",
        padding=6,
    )
