"""Load a doctor's rules and appointments as slot engine records."""

from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from clinic.models.appointment import Appointment
from clinic.models.availability import DoctorAvailability
from clinic.models.patient import Patient
from clinic.scheduling.slot_engine import AppointmentRecord, WeeklyAvailabilityRule


def get_availability_rows(doctor_id: int, db: Session) -> list[DoctorAvailability]:
    return db.query(DoctorAvailability).filter(
        DoctorAvailability.doctor_id == doctor_id,
    ).order_by(DoctorAvailability.day_of_week.asc()).all()


def load_rules(doctor_id: int, db: Session) -> list[WeeklyAvailabilityRule]:
    return [WeeklyAvailabilityRule.model_validate(row) for row in get_availability_rows(doctor_id, db)]


def load_appointments(
    doctor_id: int,
    range_start: date,
    range_end: date,
    db: Session,
    exclude_appointment_id: int | None = None,
) -> list[AppointmentRecord]:
    """Appointments for ``doctor_id`` from ``range_start`` up to, not including, ``range_end``."""
    query = db.query(Appointment, Patient.name).outerjoin(
        Patient, Patient.id == Appointment.patient_id,
    ).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date_time >= datetime.combine(range_start, time.min),
        Appointment.date_time < datetime.combine(range_end, time.min),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return [
        AppointmentRecord(
            date_time=appointment.date_time,
            status=appointment.status or 'upcoming',
            patient_id=appointment.patient_id,
            patient_name=patient_name,
            doctor_id=appointment.doctor_id,
        )
        for appointment, patient_name in query.order_by(Appointment.date_time.asc()).all()
    ]


def load_appointments_for_day(
    doctor_id: int,
    day: date,
    db: Session,
    exclude_appointment_id: int | None = None,
) -> list[AppointmentRecord]:
    return load_appointments(doctor_id, day, day + timedelta(days=1), db, exclude_appointment_id)
