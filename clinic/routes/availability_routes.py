import logging
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ROLE_DOCTOR, get_current_user, require_role
from clinic.core import config
from clinic.database import get_db
from clinic.models.availability import DoctorAvailability
from clinic.models.user import User
from clinic.routes.common import (
    current_time,
    database_unavailable,
    ensure_database_ready,
    get_doctor_or_404,
)
from clinic.scheduling.queries import get_availability_rows, load_appointments, load_rules
from clinic.scheduling.slot_engine import (
    DaySlots,
    build_slot_grid,
    find_next_available_slot,
    generate_day_slots,
)
from clinic.scheduling.timeofday import minutes_to_time, to_minutes

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

MIN_SLOT_DURATION_MINUTES = 5
MAX_SLOT_DURATION_MINUTES = 240
MAX_LOOKAHEAD_DAYS = 31


class AvailabilityRuleRequest(BaseModel):
    day_of_week: int
    is_available: bool = True
    start_time: time
    end_time: time
    lunch_break_start: time | None = None
    lunch_break_end: time | None = None
    slot_duration: int = 20

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time', 'lunch_break_start', 'lunch_break_end', mode='before')
    @classmethod
    def parse_time_of_day(cls, value):
        if isinstance(value, str):
            if not value.strip():
                return None
            return minutes_to_time(to_minutes(value))
        return value

    @field_validator('slot_duration')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if not MIN_SLOT_DURATION_MINUTES <= value <= MAX_SLOT_DURATION_MINUTES:
            raise ValueError(
                f'Slot duration must be between {MIN_SLOT_DURATION_MINUTES} '
                f'and {MAX_SLOT_DURATION_MINUTES} minutes.'
            )
        return value

    @model_validator(mode='after')
    def validate_working_window(self) -> 'AvailabilityRuleRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')

        if (self.lunch_break_start is None) != (self.lunch_break_end is None):
            raise ValueError('Lunch break needs both a start and an end time.')

        if self.lunch_break_start is not None:
            if not self.start_time <= self.lunch_break_start < self.lunch_break_end <= self.end_time:
                raise ValueError('Lunch break must fall within working hours.')

        return self


class AvailabilityRuleResponse(BaseModel):
    id: int
    doctor_id: int
    day_of_week: int
    is_available: bool
    start_time: time
    end_time: time
    lunch_break_start: time | None = None
    lunch_break_end: time | None = None
    slot_duration: int

    class Config:
        from_attributes = True


class DaySlotLabelsResponse(BaseModel):
    doctor_id: int
    day_of_week: int
    is_configured: bool
    slots: list[str]


class NextSlotResponse(BaseModel):
    doctor_id: int
    date_time: datetime | None = None


@router.get('/rules', response_model=list[AvailabilityRuleResponse])
def list_my_rules(
    current_user: User = Depends(require_role(ROLE_DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return get_availability_rows(current_user.id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/rules/{doctor_id}', response_model=list[AvailabilityRuleResponse])
def list_doctor_rules(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        get_doctor_or_404(doctor_id, db)
        return get_availability_rows(doctor_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/rules', response_model=AvailabilityRuleResponse)
def upsert_rule(
    data: AvailabilityRuleRequest,
    current_user: User = Depends(require_role(ROLE_DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rule = db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == current_user.id,
            DoctorAvailability.day_of_week == data.day_of_week,
        ).first()

        if rule is None:
            rule = DoctorAvailability(doctor_id=current_user.id, day_of_week=data.day_of_week)
            db.add(rule)

        for field_name, value in data.model_dump().items():
            setattr(rule, field_name, value)

        db.commit()
        db.refresh(rule)
        logger.info('Saved availability for doctor %s on day %s', current_user.id, data.day_of_week)

        return rule
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/rules/{day_of_week}', status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    day_of_week: int,
    current_user: User = Depends(require_role(ROLE_DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rule = db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == current_user.id,
            DoctorAvailability.day_of_week == day_of_week,
        ).first()

        if not rule:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability not found.',
            )

        db.delete(rule)
        db.commit()
        logger.info('Removed availability for doctor %s on day %s', current_user.id, day_of_week)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/day-slots', response_model=DaySlotLabelsResponse)
def list_day_slots(
    doctor_id: int = Query(...),
    day_of_week: int = Query(..., ge=0, le=6),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        get_doctor_or_404(doctor_id, db)
        rule = next(
            (rule for rule in load_rules(doctor_id, db) if rule.day_of_week == day_of_week),
            None,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return DaySlotLabelsResponse(
        doctor_id=doctor_id,
        day_of_week=day_of_week,
        is_configured=rule is not None,
        slots=generate_day_slots(rule),
    )


@router.get('/calendar', response_model=list[DaySlots])
def get_calendar(
    doctor_id: int = Query(...),
    start_date: date | None = Query(default=None),
    days: int = Query(default=7, ge=1, le=config.CALENDAR_MAX_DAYS),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    now = current_time()
    range_start = start_date or now.date()

    try:
        get_doctor_or_404(doctor_id, db)
        rules = load_rules(doctor_id, db)
        appointments = load_appointments(doctor_id, range_start, range_start + timedelta(days=days), db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return build_slot_grid(range_start, days, rules, appointments, now)


@router.get('/next-slot', response_model=NextSlotResponse)
def get_next_available_slot(
    doctor_id: int = Query(...),
    lookahead_days: int = Query(default=config.NEXT_SLOT_LOOKAHEAD_DAYS, ge=1, le=MAX_LOOKAHEAD_DAYS),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    now = current_time()

    try:
        get_doctor_or_404(doctor_id, db)
        rules = load_rules(doctor_id, db)
        appointments = load_appointments(
            doctor_id, now.date(), now.date() + timedelta(days=lookahead_days), db,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    next_slot = find_next_available_slot(doctor_id, rules, appointments, now, lookahead_days)
    if next_slot is None:
        logger.info('No free slot for doctor %s in the next %s days', doctor_id, lookahead_days)

    return NextSlotResponse(doctor_id=doctor_id, date_time=next_slot)
