from sqlalchemy import Column, Integer, String, Boolean, Numeric
from clinic_billing.db.base import Base


class User(Base):
    """
    Staff directory as seen by billing: callers (admin / receptionist /
    dentist) and the dentists that own clinical records.
    """
    __tablename__ = "users"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=True)
    email = Column(String(191), unique=True, nullable=False)

    # superadmin | admin | receptionist | dentist | assistant ...
    role = Column(String(32), nullable=False, default="receptionist")
    is_active = Column(Boolean, default=True)

    # dentist's standard checkup fee (used when the appointment has none)
    checkup_fee = Column(Numeric(12, 2), nullable=True)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)
