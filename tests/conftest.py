import os

# must be set before clinic_billing.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./clinic_billing_test.db")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DB_CREATE_ALL", "false")

from datetime import timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from clinic_billing.db.base import Base  # noqa: E402
from clinic_billing.db.session import get_db, make_engine  # noqa: E402
from clinic_billing.main import app  # noqa: E402
from clinic_billing.models import (  # noqa: E402
    Appointment,
    LabWork,
    Patient,
    Prescription,
    Treatment,
    User,
)
from clinic_billing.utils.jwt import create_access_token  # noqa: E402
from clinic_billing.utils.timezone import utcnow  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed(db):
    admin = User(first_name="Asha", last_name="Admin", email="admin@clinic.test",
                 role="admin")
    desk = User(first_name="Ravi", last_name="Desk", email="desk@clinic.test",
                role="receptionist")
    dentist_x = User(first_name="Xavier", last_name="Lee",
                     email="x@clinic.test", role="dentist",
                     checkup_fee=Decimal("60.00"))
    dentist_y = User(first_name="Yara", last_name="Khan",
                     email="y@clinic.test", role="dentist")
    assistant = User(first_name="Nia", last_name="Help",
                     email="assist@clinic.test", role="assistant")
    p1 = Patient(first_name="Maya", last_name="Iyer", phone="555-0101",
                 email="maya@example.test")
    p2 = Patient(first_name="Tom", last_name="Otis", phone="555-0102")
    db.add_all([admin, desk, dentist_x, dentist_y, assistant, p1, p2])
    db.commit()
    return SimpleNamespace(admin=admin, desk=desk, dentist_x=dentist_x,
                           dentist_y=dentist_y, assistant=assistant,
                           p1=p1, p2=p2)


# ---------------- source record factories ----------------


def add_appointment(db, patient, dentist, fee=None, **kw):
    appt = Appointment(patient_id=patient.id, dentist_id=dentist.id,
                       appointment_date=kw.pop("appointment_date", utcnow()),
                       appointment_type=kw.pop("appointment_type", "checkup"),
                       status=kw.pop("status", "completed"),
                       checkup_fee=fee, **kw)
    db.add(appt)
    db.commit()
    return appt


def add_treatment(db, patient, dentist, estimated=None, actual=None, **kw):
    t = Treatment(patient_id=patient.id, dentist_id=dentist.id,
                  treatment_type=kw.pop("treatment_type", "filling"),
                  procedure_name=kw.pop("procedure_name", "Composite filling"),
                  teeth=kw.pop("teeth", [16]),
                  status=kw.pop("status", "completed"),
                  estimated_cost=estimated, actual_cost=actual, **kw)
    db.add(t)
    db.commit()
    return t


def add_lab_work(db, patient, dentist, cost=None, **kw):
    lw = LabWork(patient_id=patient.id, dentist_id=dentist.id,
                 lab_name=kw.pop("lab_name", "Smile Lab"),
                 work_type=kw.pop("work_type", "crown"),
                 status=kw.pop("status", "delivered"),
                 cost=cost, **kw)
    db.add(lw)
    db.commit()
    return lw


def add_prescription(db, patient, dentist, medications=None, total=None,
                     number="RX-0001", **kw):
    rx = Prescription(patient_id=patient.id, dentist_id=dentist.id,
                      prescription_number=number,
                      medications=medications, total_cost=total, **kw)
    db.add(rx)
    db.commit()
    return rx


def past(days: int):
    return utcnow() - timedelta(days=days)


# ---------------- API ----------------


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
