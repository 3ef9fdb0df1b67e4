# FILE: clinic_billing/models/patient.py
from sqlalchemy import Column, Integer, String, DateTime, func

from clinic_billing.db.base import Base


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)

    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=True)
    phone = Column(String(20), index=True, nullable=True)
    email = Column(String(191), index=True, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)
