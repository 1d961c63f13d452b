import os
from datetime import datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from clinic.database import Base  # noqa: E402
from clinic.models.appointment import Appointment  # noqa: E402
from clinic.models.availability import DoctorAvailability  # noqa: E402
from clinic.models.patient import Patient  # noqa: E402
from clinic.models.user import User  # noqa: E402

# Monday morning, before the clinic opens.
FIXED_NOW = datetime(2024, 6, 10, 8, 0)


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def route_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for module in ('clinic.routes.availability_routes', 'clinic.routes.appointment_routes'):
        monkeypatch.setattr(f'{module}.ensure_database_ready', lambda: None)
        monkeypatch.setattr(f'{module}.current_time', lambda: FIXED_NOW)


def _add(db, instance):
    db.add(instance)
    db.commit()
    db.refresh(instance)
    return instance


@pytest.fixture
def doctor(db_session) -> User:
    return _add(db_session, User(email='rahman@clinic.test', name='Dr. Rahman', role='doctor'))


@pytest.fixture
def other_doctor(db_session) -> User:
    return _add(db_session, User(email='sen@clinic.test', name='Dr. Sen', role='doctor'))


@pytest.fixture
def admin(db_session) -> User:
    return _add(db_session, User(email='front-desk@clinic.test', name='Front Desk', role='admin'))


@pytest.fixture
def patient(db_session, doctor) -> Patient:
    return _add(db_session, Patient(name='Ayesha Khan', phone='+8801700000000', doctor_id=doctor.id))


@pytest.fixture
def monday_hours(db_session, doctor) -> DoctorAvailability:
    return _add(
        db_session,
        DoctorAvailability(
            doctor_id=doctor.id,
            day_of_week=1,
            is_available=True,
            start_time=time(9, 0),
            end_time=time(17, 0),
            lunch_break_start=time(13, 0),
            lunch_break_end=time(14, 0),
            slot_duration=20,
        ),
    )


@pytest.fixture
def add_appointment(db_session, doctor, patient):
    def factory(when: datetime, status: str = 'upcoming') -> Appointment:
        return _add(
            db_session,
            Appointment(
                patient_id=patient.id,
                doctor_id=doctor.id,
                date_time=when,
                appointment_type='consultation',
                status=status,
            ),
        )

    return factory
