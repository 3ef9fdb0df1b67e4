# FILE: clinic_billing/repositories/source_records.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Generic, Iterable, List, Optional, Set, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.orm import Session

from clinic_billing.models.billing import (
    InvoiceType,
    SourceKind,
    SourcePaymentStatus,
)
from clinic_billing.models.clinical import (
    Appointment,
    LabWork,
    Prescription,
    Treatment,
)
from clinic_billing.services.billing_calc import D, money2

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SourceRecordRepository(Generic[T]):
    """
    Read/write access to one kind of clinical source record.

    Billing never caches these rows: every read goes to the session and
    every write goes through this class.
    """

    def __init__(self, db: Session, model_type: Type[T], kind: SourceKind):
        self.db = db
        self.model_type = model_type
        self.kind = kind

    def find_by_id(self, record_id: int) -> Optional[T]:
        return self.db.get(self.model_type, int(record_id))

    def find_many(self, ids: Iterable[int], *, lock: bool = False) -> List[T]:
        """Rows for ids, in the order requested; missing ids are skipped."""
        wanted = [int(i) for i in ids]
        if not wanted:
            return []
        q = self.db.query(self.model_type).filter(
            self.model_type.id.in_(wanted))
        if lock:
            q = q.with_for_update()
        by_id = {int(r.id): r for r in q.populate_existing().all()}
        return [by_id[i] for i in wanted if i in by_id]

    def update_invoice_ref(
        self,
        ids: Iterable[int],
        invoice_id: Optional[int],
        *,
        expect_unbilled: bool = False,
    ) -> int:
        """
        Set (or clear, with None) the invoice back-reference.

        With expect_unbilled the write only touches rows whose reference is
        still NULL, so a concurrent biller shows up as a short rowcount.
        """
        wanted = sorted({int(i) for i in ids})
        if not wanted:
            return 0
        stmt = update(self.model_type).where(
            self.model_type.id.in_(wanted))
        if expect_unbilled:
            stmt = stmt.where(self.model_type.invoice_id.is_(None))
        stmt = stmt.values(invoice_id=invoice_id).execution_options(
            synchronize_session="fetch")
        res = self.db.execute(stmt)
        logger.debug("invoice ref %s -> %s on %s rows=%s", self.kind.value,
                     invoice_id, wanted, res.rowcount)
        return int(res.rowcount or 0)

    def distinct(self, field: str, **filters: Any) -> Set[Any]:
        col = getattr(self.model_type, field)
        q = self.db.query(col).distinct()
        for name, value in filters.items():
            q = q.filter(getattr(self.model_type, name) == value)
        return {row[0] for row in q.all()}

    def list_unbilled(
        self,
        *,
        patient_id: Optional[int] = None,
        dentist_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[T]:
        q = self.db.query(self.model_type).filter(
            self.model_type.invoice_id.is_(None))
        if patient_id:
            q = q.filter(self.model_type.patient_id == int(patient_id))
        if dentist_id:
            q = q.filter(self.model_type.dentist_id == int(dentist_id))
        if status:
            q = q.filter(self.model_type.status == status)
        return q.order_by(self.model_type.id.desc()).all()

    @property
    def tracks_payment_share(self) -> bool:
        return hasattr(self.model_type, "paid_amount_share")

    def apply_payment_share(self, record: T, delta: Decimal) -> None:
        """
        Add a distributed payment share to a multi-item record and refresh
        its payment status against the record's own cost.
        """
        if not self.tracks_payment_share:
            return
        new_share = money2(D(record.paid_amount_share) + D(delta))
        record.paid_amount_share = new_share
        cost = D(getattr(record, "actual_cost", None)
                 or getattr(record, "estimated_cost", None)
                 or getattr(record, "cost", None))
        if new_share <= 0:
            record.payment_status = SourcePaymentStatus.UNPAID.value
        elif new_share >= cost:
            record.payment_status = SourcePaymentStatus.PAID.value
        else:
            record.payment_status = SourcePaymentStatus.PARTIAL.value


_MODELS: Dict[SourceKind, type] = {
    SourceKind.APPOINTMENT: Appointment,
    SourceKind.TREATMENT: Treatment,
    SourceKind.LAB_WORK: LabWork,
    SourceKind.PRESCRIPTION: Prescription,
}

# which source kind feeds each invoice type
SOURCE_KIND_FOR_INVOICE: Dict[InvoiceType, SourceKind] = {
    InvoiceType.CHECKUP: SourceKind.APPOINTMENT,
    InvoiceType.PROCEDURE: SourceKind.TREATMENT,
    InvoiceType.LAB: SourceKind.LAB_WORK,
    InvoiceType.PRESCRIPTION: SourceKind.PRESCRIPTION,
}


def repository_for_kind(db: Session, kind: SourceKind) -> SourceRecordRepository:
    return SourceRecordRepository(db, _MODELS[kind], kind)


def repository_for_invoice_type(
        db: Session, invoice_type: InvoiceType) -> SourceRecordRepository:
    return repository_for_kind(db, SOURCE_KIND_FOR_INVOICE[invoice_type])


def all_repositories(db: Session) -> List[SourceRecordRepository]:
    return [repository_for_kind(db, k) for k in SourceKind]
