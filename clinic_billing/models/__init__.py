# clinic_billing/models/__init__.py
from .user import User
from .patient import Patient
from .clinical import Appointment, Treatment, LabWork, Prescription
from .billing import (
    Invoice,
    InvoiceItem,
    InvoiceSource,
    Payment,
    NumberSeries,
)
from .audit import AuditLog

__all__ = [
    "User",
    "Patient",
    "Appointment",
    "Treatment",
    "LabWork",
    "Prescription",
    "Invoice",
    "InvoiceItem",
    "InvoiceSource",
    "Payment",
    "NumberSeries",
    "AuditLog",
]
