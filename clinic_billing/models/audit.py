from clinic_billing.utils.timezone import utcnow

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)

from clinic_billing.db.base import Base


class AuditLog(Base):
    """
    Billing audit trail.
    Every invoice CREATE / UPDATE / CANCEL / REOPEN / DELETE and every
    PAYMENT writes here, inside the same transaction as the change.
    """
    __tablename__ = "audit_logs"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=True)  # system jobs may be null
    action = Column(String(20), nullable=False)

    table_name = Column(String(255), nullable=False)
    record_id = Column(String(100),
                       nullable=False)  # generic pk, stored as string

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
