# FILE: clinic_billing/models/billing.py
from __future__ import annotations

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    DateTime,
    Index,
    ForeignKey,
    UniqueConstraint,
    Text,
    JSON,
)
from sqlalchemy.orm import relationship

from clinic_billing.db.base import Base
from clinic_billing.utils.timezone import utcnow


class InvoiceType(str, enum.Enum):
    CHECKUP = "checkup"
    PROCEDURE = "procedure"
    LAB = "lab"
    PRESCRIPTION = "prescription"
    GENERIC = "generic"


# invoice kinds that are synthesized from clinical source records
SOURCE_INVOICE_TYPES = (
    InvoiceType.CHECKUP,
    InvoiceType.PROCEDURE,
    InvoiceType.LAB,
    InvoiceType.PRESCRIPTION,
)


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially-paid"
    PAID = "paid"
    OVERDUE = "overdue"  # computed at read time, never persisted
    CANCELLED = "cancelled"


class SourceKind(str, enum.Enum):
    APPOINTMENT = "appointment"
    TREATMENT = "treatment"
    LAB_WORK = "lab_work"
    PRESCRIPTION = "prescription"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    INSURANCE = "insurance"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, enum.Enum):
    COMPLETED = "completed"


class SourcePaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class NumberDocType(str, enum.Enum):
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"


class NumberResetPeriod(str, enum.Enum):
    NONE = "NONE"
    YEAR = "YEAR"
    MONTH = "MONTH"


class Invoice(Base):
    """
    Billing unit exposed to patients.

    One invoice is synthesized from one or more clinical records of a
    single kind (or from explicit lines for 'generic' invoices):
    - invoice_type is the tag of the source context
    - sources holds the (source_kind, source_id) links
    - context_snapshot is a frozen copy of the facts printed on receipts

    Totals / balance / status are derived; see services.billing_calc.
    """

    __tablename__ = "billing_invoices"
    __table_args__ = (
        Index("ix_billing_invoices_patient_created", "patient_id",
              "created_at"),
        Index("ix_billing_invoices_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, index=True, nullable=False)

    # checkup | procedure | lab | prescription | generic
    invoice_type = Column(String(20), nullable=False, index=True)

    patient_id = Column(Integer,
                        ForeignKey("patients.id", ondelete="SET NULL"),
                        nullable=True,
                        index=True)
    # fallback when the patient link is absent
    patient_name = Column(String(255), nullable=True)

    subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    tax = Column(Numeric(12, 2), default=0, nullable=False)
    discount = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), default=0, nullable=False)

    # may exceed total (overpayment is accepted, balance clamps at 0)
    paid_amount = Column(Numeric(12, 2), default=0, nullable=False)
    balance = Column(Numeric(12, 2), default=0, nullable=False)

    # pending | partially-paid | paid | cancelled
    status = Column(String(16), default="pending", nullable=False)

    context_snapshot = Column(JSON, nullable=True)

    # procedure invoices only; advisory, never enforced
    advance_payment_percentage = Column(Numeric(5, 2), nullable=True)

    due_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # optimistic lock; concurrent writers lose with StaleDataError
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    patient = relationship("Patient")

    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.seq",
    )
    sources = relationship(
        "InvoiceSource",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceSource.id",
    )
    payments = relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )

    @property
    def source_ids(self):
        return [int(s.source_id) for s in (self.sources or [])]


class InvoiceItem(Base):
    __tablename__ = "billing_invoice_items"
    __table_args__ = (Index("ix_billing_items_invoice", "invoice_id"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    # S.no order for UI/print
    seq = Column(Integer, default=1)

    description = Column(String(300), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Numeric(12, 2), default=0, nullable=False)

    # quantity * unit_price
    line_total = Column(Numeric(12, 2), default=0, nullable=False)

    # originating record of this line, when there is one
    source_kind = Column(String(20), nullable=True)
    source_id = Column(Integer, nullable=True)

    invoice = relationship("Invoice", back_populates="items")


class InvoiceSource(Base):
    """
    Link from an invoice to one originating clinical record.
    A record can be linked to at most one invoice at a time.
    """

    __tablename__ = "billing_invoice_sources"
    __table_args__ = (
        UniqueConstraint("source_kind",
                         "source_id",
                         name="uq_billing_source_once"),
        Index("ix_billing_sources_invoice", "invoice_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_kind = Column(String(20), nullable=False)
    source_id = Column(Integer, nullable=False)

    invoice = relationship("Invoice", back_populates="sources")


class Payment(Base):
    """
    A completed payment against one invoice. Immutable once written.
    """

    __tablename__ = "billing_payments"
    __table_args__ = (Index("ix_billing_payments_invoice", "invoice_id"), )

    id = Column(Integer, primary_key=True, index=True)
    payment_number = Column(String(32), unique=True, index=True, nullable=False)

    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    patient_id = Column(Integer,
                        ForeignKey("patients.id", ondelete="SET NULL"),
                        nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(32), nullable=False)
    transaction_id = Column(String(100), nullable=True)
    notes = Column(String(255), nullable=True)
    status = Column(String(16), default="completed", nullable=False)
    payment_date = Column(DateTime, default=utcnow)

    # client supplied retry token
    idempotency_key = Column(String(64), unique=True, nullable=True)

    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    invoice = relationship("Invoice", back_populates="payments")


class NumberSeries(Base):
    __tablename__ = "billing_number_series"
    __table_args__ = (UniqueConstraint("doc_type",
                                       "prefix",
                                       name="uq_billing_series_prefix"), )

    id = Column(Integer, primary_key=True)
    doc_type = Column(String(20), nullable=False)
    prefix = Column(String(20), nullable=False)
    reset_period = Column(String(10), nullable=False, default="NONE")
    padding = Column(Integer, nullable=False, default=6)
    next_number = Column(Integer, nullable=False, default=1)
    last_period_key = Column(String(10), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
