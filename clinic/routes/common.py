from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ROLE_ADMIN, ROLE_DOCTOR
from clinic.database import ensure_appointment_schema, ensure_availability_schema
from clinic.models.user import User

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def current_time() -> datetime:
    return datetime.now()


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_doctor_or_404(doctor_id: int, db: Session, lock: bool = False) -> User:
    query = db.query(User).filter(
        User.id == doctor_id,
        User.role == ROLE_DOCTOR,
        User.is_active.is_(True),
    )
    if lock:
        # Serializes bookings per doctor where the backend supports row locks.
        query = query.with_for_update()

    doctor = query.first()
    if doctor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found.',
        )
    return doctor


def resolve_doctor_scope(current_user: User, doctor_id: int | None) -> int | None:
    if current_user.role == ROLE_DOCTOR:
        return current_user.id
    return doctor_id


def resolve_booking_doctor(current_user: User, doctor_id: int | None) -> int:
    if current_user.role == ROLE_DOCTOR:
        if doctor_id is not None and doctor_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Doctors can only book appointments in their own calendar.',
            )
        return current_user.id

    if current_user.role == ROLE_ADMIN and doctor_id is not None:
        return doctor_id

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail='Doctor is required.',
    )
