# clinic_billing/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All billing and source-record tables inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from clinic_billing.models import (  # noqa: F401,E402
    user,
    patient,
    clinical,
    billing,
    audit,
)
