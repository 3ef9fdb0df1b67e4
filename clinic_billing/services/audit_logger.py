from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from clinic_billing.models.audit import AuditLog


def log_audit(
    db: Session,
    *,
    user_id: Optional[int],
    action: str,  # "CREATE" | "UPDATE" | "CANCEL" | "REOPEN" | "DELETE" | "PAYMENT"
    table_name: str,
    record_id: Any,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add one audit event to the caller's transaction.
    Committed (or rolled back) together with the change it describes.
    """
    log = AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        old_values=jsonable_encoder(old_values) if old_values else None,
        new_values=jsonable_encoder(new_values) if new_values else None,
    )
    db.add(log)
    return log


def invoice_audit_values(inv) -> Dict[str, Any]:
    return {
        "invoice_number": inv.invoice_number,
        "invoice_type": inv.invoice_type,
        "total": str(inv.total),
        "paid_amount": str(inv.paid_amount),
        "balance": str(inv.balance),
        "status": inv.status,
    }
