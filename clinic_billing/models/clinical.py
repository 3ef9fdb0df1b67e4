# FILE: clinic_billing/models/clinical.py
"""
Clinical source records that originate billable items.

These tables belong to the scheduling / charting / lab / prescription
modules; billing only reads their cost fields and writes the invoice
back-reference (and, for multi-item kinds, the payment share).
"""
from __future__ import annotations

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import relationship

from clinic_billing.db.base import Base
from clinic_billing.utils.timezone import utcnow


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_dentist", "dentist_id"), )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id"),
                        nullable=False,
                        index=True)
    dentist_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    appointment_date = Column(DateTime, default=utcnow, nullable=False)
    # checkup | cleaning | filling | extraction | root-canal | crown | consultation | emergency | other
    appointment_type = Column(String(32), default="checkup")
    # scheduled | confirmed | in-progress | completed | cancelled | no-show
    status = Column(String(20), default="scheduled")

    checkup_fee = Column(Numeric(12, 2), nullable=True)

    invoice_id = Column(Integer,
                        ForeignKey("billing_invoices.id", ondelete="SET NULL"),
                        nullable=True,
                        index=True)

    patient = relationship("Patient")
    dentist = relationship("User")


class Treatment(Base):
    __tablename__ = "treatments"
    __table_args__ = (Index("ix_treatments_dentist", "dentist_id"), )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id"),
                        nullable=False,
                        index=True)
    dentist_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    treatment_type = Column(String(40), nullable=False, default="other")
    description = Column(Text, nullable=True)
    procedure_name = Column(String(200), nullable=True)
    teeth = Column(JSON, nullable=True)  # list of tooth numbers

    # planned | in-progress | completed | cancelled
    status = Column(String(20), default="planned")
    start_date = Column(DateTime, default=utcnow)

    estimated_cost = Column(Numeric(12, 2), nullable=True)
    actual_cost = Column(Numeric(12, 2), nullable=True)

    invoice_id = Column(Integer,
                        ForeignKey("billing_invoices.id", ondelete="SET NULL"),
                        nullable=True,
                        index=True)

    # written only by the payment distribution step
    paid_amount_share = Column(Numeric(12, 2), default=0, nullable=False)
    payment_status = Column(String(16), default="unpaid", nullable=False)

    patient = relationship("Patient")
    dentist = relationship("User")


class LabWork(Base):
    __tablename__ = "lab_works"
    __table_args__ = (Index("ix_lab_works_dentist", "dentist_id"), )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id"),
                        nullable=False,
                        index=True)
    dentist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    treatment_id = Column(Integer, ForeignKey("treatments.id"), nullable=True)

    lab_name = Column(String(120), nullable=False)
    # crown | bridge | denture | implant | veneer | retainer | mouthguard | other
    work_type = Column(String(32), nullable=False, default="other")
    description = Column(Text, nullable=True)
    request_date = Column(DateTime, default=utcnow)
    # requested | in-progress | completed | delivered | cancelled
    status = Column(String(20), default="requested")

    cost = Column(Numeric(12, 2), nullable=True)

    invoice_id = Column(Integer,
                        ForeignKey("billing_invoices.id", ondelete="SET NULL"),
                        nullable=True,
                        index=True)

    paid_amount_share = Column(Numeric(12, 2), default=0, nullable=False)
    payment_status = Column(String(16), default="unpaid", nullable=False)

    patient = relationship("Patient")
    dentist = relationship("User")


class Prescription(Base):
    __tablename__ = "prescriptions"
    __table_args__ = (Index("ix_prescriptions_dentist", "dentist_id"), )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id"),
                        nullable=False,
                        index=True)
    dentist_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    prescription_number = Column(String(32), unique=True, nullable=True)
    prescription_date = Column(DateTime, default=utcnow)
    # active | completed | cancelled
    status = Column(String(20), default="active")

    # [{name, dosage, frequency, duration, quantity, unitPrice}]
    medications = Column(JSON, nullable=True)
    total_cost = Column(Numeric(12, 2), nullable=True)

    invoice_id = Column(Integer,
                        ForeignKey("billing_invoices.id", ondelete="SET NULL"),
                        nullable=True,
                        index=True)

    patient = relationship("Patient")
    dentist = relationship("User")
