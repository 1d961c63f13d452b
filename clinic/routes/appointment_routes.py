import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ROLE_ADMIN, ROLE_DOCTOR, require_role
from clinic.database import get_db
from clinic.models.appointment import Appointment
from clinic.models.patient import Patient
from clinic.models.user import User
from clinic.routes.common import (
    current_time,
    database_unavailable,
    ensure_database_ready,
    get_doctor_or_404,
    resolve_booking_doctor,
    resolve_doctor_scope,
)
from clinic.scheduling.queries import load_appointments_for_day, load_rules
from clinic.scheduling.slot_engine import (
    CANCELLED_STATUS,
    REASON_ALREADY_BOOKED,
    REASON_DAY_OFF,
    REASON_LUNCH_BREAK,
    REASON_OUTSIDE_HOURS,
    REASON_PAST_DATE,
    REASON_PAST_TIME,
    validate_booking_request,
)

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600
APPOINTMENT_TYPES = {'consultation', 'follow-up', 'emergency'}
APPOINTMENT_STATUSES = {'upcoming', 'completed', CANCELLED_STATUS}
SLOT_TAKEN_MESSAGE = 'This slot was just taken — please choose another.'

REJECTION_RESPONSES = {
    REASON_PAST_DATE: (status.HTTP_400_BAD_REQUEST, 'Appointments must be scheduled in the future.'),
    REASON_PAST_TIME: (status.HTTP_400_BAD_REQUEST, 'Appointments must be scheduled in the future.'),
    REASON_DAY_OFF: (status.HTTP_400_BAD_REQUEST, 'The doctor is not available on this day.'),
    REASON_LUNCH_BREAK: (status.HTTP_400_BAD_REQUEST, "This time falls within the doctor's lunch break."),
    REASON_OUTSIDE_HOURS: (status.HTTP_400_BAD_REQUEST, "This time is not one of the doctor's appointment slots."),
    REASON_ALREADY_BOOKED: (status.HTTP_409_CONFLICT, SLOT_TAKEN_MESSAGE),
}


def _normalize_date_time(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def _normalize_appointment_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in APPOINTMENT_TYPES:
        raise ValueError('Invalid appointment type.')
    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    doctor_id: int | None = None
    date_time: datetime
    appointment_type: str = 'consultation'
    notes: str | None = None

    @field_validator('date_time')
    @classmethod
    def validate_date_time(cls, value: datetime) -> datetime:
        return _normalize_date_time(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        return _normalize_appointment_type(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateAppointmentRequest(BaseModel):
    date_time: datetime | None = None
    appointment_type: str | None = None
    status: str | None = None
    notes: str | None = None

    @field_validator('date_time')
    @classmethod
    def validate_date_time(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return _normalize_date_time(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_appointment_type(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str | None = None
    doctor_id: int
    date_time: datetime
    appointment_type: str
    status: str
    notes: str | None = None


def to_response(appointment: Appointment, patient_name: str | None) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        patient_name=patient_name,
        doctor_id=appointment.doctor_id,
        date_time=appointment.date_time,
        appointment_type=appointment.appointment_type or 'consultation',
        status=appointment.status or 'upcoming',
        notes=appointment.notes,
    )


def reject_booking(reason: str | None) -> HTTPException:
    status_code, message = REJECTION_RESPONSES.get(
        reason, (status.HTTP_400_BAD_REQUEST, 'This time cannot be booked.'),
    )
    return HTTPException(status_code=status_code, detail={'reason': reason, 'message': message})


def ensure_slot_bookable(
    doctor_id: int,
    start_time: datetime,
    db: Session,
    exclude_appointment_id: int | None = None,
) -> None:
    """Re-check the slot against the rows visible inside the current transaction."""
    decision = validate_booking_request(
        start_time.date(),
        start_time.time(),
        doctor_id,
        load_rules(doctor_id, db),
        load_appointments_for_day(doctor_id, start_time.date(), db, exclude_appointment_id),
        current_time(),
    )
    if not decision.accepted:
        logger.info('Rejected booking for doctor %s at %s: %s', doctor_id, start_time, decision.reason)
        raise reject_booking(decision.reason)


def get_appointment_or_404(appointment_id: int, current_user: User, db: Session) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()

    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )

    if current_user.role == ROLE_DOCTOR and appointment.doctor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Access denied.',
        )

    return appointment


def get_patient_name(patient_id: int, db: Session) -> str | None:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    return patient.name if patient else None


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(require_role(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment, Patient.name).outerjoin(Patient, Patient.id == Appointment.patient_id)
        scoped_doctor_id = resolve_doctor_scope(current_user, doctor_id)
        if scoped_doctor_id is not None:
            query = query.filter(Appointment.doctor_id == scoped_doctor_id)

        return [
            to_response(appointment, patient_name)
            for appointment, patient_name in query.order_by(Appointment.date_time.asc()).all()
        ]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/date/{day}', response_model=list[AppointmentResponse])
def list_appointments_for_day(
    day: date,
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(require_role(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    scoped_doctor_id = resolve_doctor_scope(current_user, doctor_id)
    if scoped_doctor_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Doctor is required.',
        )

    ensure_database_ready()

    try:
        rows = db.query(Appointment, Patient.name).outerjoin(
            Patient, Patient.id == Appointment.patient_id,
        ).filter(
            Appointment.doctor_id == scoped_doctor_id,
            Appointment.date_time >= datetime.combine(day, datetime.min.time()),
            Appointment.date_time < datetime.combine(day + timedelta(days=1), datetime.min.time()),
        ).order_by(Appointment.date_time.asc()).all()

        return [to_response(appointment, patient_name) for appointment, patient_name in rows]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(require_role(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    doctor_id = resolve_booking_doctor(current_user, data.doctor_id)

    ensure_database_ready()

    try:
        get_doctor_or_404(doctor_id, db, lock=True)

        patient = db.query(Patient).filter(Patient.id == data.patient_id).first()
        if not patient:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found.',
            )
        if patient.doctor_id != doctor_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Patient is not registered with this doctor.',
            )

        ensure_slot_bookable(doctor_id, data.date_time, db)

        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor_id,
            date_time=data.date_time,
            appointment_type=data.appointment_type,
            status='upcoming',
            notes=data.notes,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        logger.info('Booked appointment %s for doctor %s at %s', appointment.id, doctor_id, appointment.date_time)

        return to_response(appointment, patient.name)
    except IntegrityError as exc:
        db.rollback()
        logger.warning('Slot for doctor %s at %s was taken concurrently', doctor_id, data.date_time)
        raise reject_booking(REASON_ALREADY_BOOKED) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(require_role(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, current_user, db)

        target_time = data.date_time if data.date_time is not None else appointment.date_time
        was_cancelled = (appointment.status or '').strip().lower() == CANCELLED_STATUS
        stays_live = (data.status or appointment.status or '').strip().lower() != CANCELLED_STATUS

        # A cancelled booking that comes back into the calendar is checked like a new one.
        if stays_live and (target_time != appointment.date_time or was_cancelled):
            get_doctor_or_404(appointment.doctor_id, db, lock=True)
            ensure_slot_bookable(appointment.doctor_id, target_time, db, exclude_appointment_id=appointment.id)

        appointment.date_time = target_time

        if data.appointment_type is not None:
            appointment.appointment_type = data.appointment_type
        if data.status is not None:
            appointment.status = data.status
        if data.notes is not None:
            appointment.notes = data.notes

        db.commit()
        db.refresh(appointment)

        return to_response(appointment, get_patient_name(appointment.patient_id, db))
    except IntegrityError as exc:
        db.rollback()
        logger.warning('Update of appointment %s collides with a booked slot', appointment_id)
        raise reject_booking(REASON_ALREADY_BOOKED) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    current_user: User = Depends(require_role(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, current_user, db)
        db.delete(appointment)
        db.commit()
        logger.info('Deleted appointment %s', appointment_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
