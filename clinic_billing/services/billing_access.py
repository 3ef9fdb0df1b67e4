# FILE: clinic_billing/services/billing_access.py
from __future__ import annotations

import logging
from typing import Any, Dict, Set

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from clinic_billing.core import rbac
from clinic_billing.core.errors import NotFoundError
from clinic_billing.models.billing import Invoice, InvoiceSource, SourceKind
from clinic_billing.repositories.source_records import all_repositories

logger = logging.getLogger(__name__)


def dentist_source_ids(db: Session, dentist_id: int) -> Dict[SourceKind, Set[int]]:
    """Ids of every clinical record owned by the dentist, per source kind."""
    out: Dict[SourceKind, Set[int]] = {}
    for repo in all_repositories(db):
        out[repo.kind] = {
            int(x)
            for x in repo.distinct("id", dentist_id=int(dentist_id))
        }
    return out


def dentist_invoice_ids(db: Session, dentist_id: int) -> Set[int]:
    """
    Invoices a dentist may see: those whose source links reference any
    record the dentist owns.

    Recomputed on every call. Ownership lives on the source records, so a
    reassigned dentist_id takes effect immediately.
    """
    owned = dentist_source_ids(db, dentist_id)

    clauses = [
        and_(InvoiceSource.source_kind == kind.value,
             InvoiceSource.source_id.in_(sorted(ids)))
        for kind, ids in owned.items() if ids
    ]
    if not clauses:
        return set()

    rows = (db.query(InvoiceSource.invoice_id).filter(
        or_(*clauses)).distinct().all())
    return {int(r[0]) for r in rows}


def visible_invoice_ids(db: Session, user: Any):
    """None means unrestricted."""
    if rbac.is_unscoped(user):
        return None
    if rbac.is_dentist(user):
        return dentist_invoice_ids(db, int(user.id))
    return set()


def can_see_invoice(db: Session, user: Any, invoice_id: int) -> bool:
    scope = visible_invoice_ids(db, user)
    return scope is None or int(invoice_id) in scope


def ensure_invoice_visible(db: Session, user: Any, invoice_id: int) -> None:
    # hidden and missing invoices are reported the same way
    if not can_see_invoice(db, user, invoice_id):
        logger.info("invoice %s outside scope of user %s", invoice_id,
                    getattr(user, "id", None))
        raise NotFoundError("Invoice not found")


def get_visible_invoice(db: Session,
                        user: Any,
                        invoice_id: int,
                        *,
                        lock: bool = False) -> Invoice:
    ensure_invoice_visible(db, user, invoice_id)
    q = db.query(Invoice).filter(Invoice.id == int(invoice_id))
    if lock:
        q = q.with_for_update().populate_existing()
    inv = q.first()
    if not inv:
        raise NotFoundError("Invoice not found")
    return inv


def ensure_records_owned(user: Any, records) -> None:
    """Dentists may only bill their own clinical records."""
    if not rbac.is_dentist(user):
        return
    uid = int(user.id)
    if any(int(r.dentist_id) != uid for r in records):
        raise NotFoundError("Source record not found")
