"""Slot availability and booking rules for a doctor's weekly calendar.

Pure functions over (availability rules, appointments, now). Nothing here reads
the clock or the database; callers pass ``now`` and the records they loaded.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta

from pydantic import BaseModel, field_validator

from clinic.scheduling.timeofday import minutes_to_label, minutes_to_time, to_minutes

SLOT_AVAILABLE = 'available'
SLOT_BOOKED = 'booked'
SLOT_BLOCKED = 'blocked'

REASON_PAST_DATE = 'past_date'
REASON_PAST_TIME = 'past_time'
REASON_DAY_OFF = 'day_off'
REASON_LUNCH_BREAK = 'lunch_break'
REASON_ALREADY_BOOKED = 'already_booked'
REASON_OUTSIDE_HOURS = 'outside_hours'

CANCELLED_STATUS = 'cancelled'

DEFAULT_START_TIME = time(9, 0)
DEFAULT_END_TIME = time(19, 0)
DEFAULT_LUNCH_BREAK_START = time(13, 0)
DEFAULT_LUNCH_BREAK_END = time(14, 0)
DEFAULT_SLOT_DURATION_MINUTES = 20


class WeeklyAvailabilityRule(BaseModel):
    """Working hours for one weekday. ``day_of_week`` uses Sunday=0."""

    day_of_week: int
    is_available: bool = True
    start_time: time = DEFAULT_START_TIME
    end_time: time = DEFAULT_END_TIME
    lunch_break_start: time | None = None
    lunch_break_end: time | None = None
    slot_duration: int = DEFAULT_SLOT_DURATION_MINUTES

    class Config:
        from_attributes = True
        frozen = True

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


class AppointmentRecord(BaseModel):
    date_time: datetime
    status: str = 'upcoming'
    patient_id: int | str | None = None
    patient_name: str | None = None
    doctor_id: int | str | None = None

    class Config:
        from_attributes = True
        frozen = True

    @property
    def occupies_slot(self) -> bool:
        return (self.status or '').strip().lower() != CANCELLED_STATUS


class SlotClassification(BaseModel):
    date: date
    time: str
    status: str
    reason: str | None = None
    patient_id: int | str | None = None
    patient_name: str | None = None


class BookingDecision(BaseModel):
    accepted: bool
    reason: str | None = None


class DaySlots(BaseModel):
    date: date
    day_of_week: int
    slots: list[SlotClassification]


DEFAULT_RULE = WeeklyAvailabilityRule(
    day_of_week=0,
    lunch_break_start=DEFAULT_LUNCH_BREAK_START,
    lunch_break_end=DEFAULT_LUNCH_BREAK_END,
)

RuleSet = Iterable[WeeklyAvailabilityRule] | Mapping[int, WeeklyAvailabilityRule]


def day_of_week_for(slot_date: date) -> int:
    return (slot_date.weekday() + 1) % 7


def index_rules(rules: RuleSet) -> dict[int, WeeklyAvailabilityRule]:
    if isinstance(rules, Mapping):
        return dict(rules)

    # First rule wins when a weekday is configured twice.
    indexed: dict[int, WeeklyAvailabilityRule] = {}
    for rule in rules:
        indexed.setdefault(rule.day_of_week, rule)
    return indexed


def lunch_window(rule: WeeklyAvailabilityRule) -> tuple[int, int] | None:
    if rule.lunch_break_start is None or rule.lunch_break_end is None:
        return None

    lunch_start = to_minutes(rule.lunch_break_start)
    lunch_end = to_minutes(rule.lunch_break_end)
    if lunch_start >= lunch_end:
        return None
    return lunch_start, lunch_end


def is_lunch_break_slot(slot_minutes: int, rule: WeeklyAvailabilityRule) -> bool:
    window = lunch_window(rule)
    if window is None:
        return False
    return window[0] <= slot_minutes < window[1]


def generate_day_slot_minutes(
    rule: WeeklyAvailabilityRule | None = None,
    slot_duration: int | None = None,
) -> list[int]:
    """Slot starts for one day as minutes since midnight, ascending.

    ``slot_duration`` overrides the rule's own duration. No partial slots are
    emitted: a slot must end by the end of the working window and may not run
    into the lunch break. A rule with no usable window or a non-positive
    duration yields no slots.
    """
    rule = rule or DEFAULT_RULE
    start = to_minutes(rule.start_time)
    end = to_minutes(rule.end_time)
    duration = rule.slot_duration if slot_duration is None else slot_duration

    if duration <= 0 or start >= end:
        return []

    window = lunch_window(rule)
    slots: list[int] = []
    current = start

    while current + duration <= end:
        if window is None or not (
            window[0] <= current < window[1]
            or current < window[0] < current + duration
        ):
            slots.append(current)
        current += duration

    return slots


def generate_day_slots(
    rule: WeeklyAvailabilityRule | None = None,
    slot_duration: int | None = None,
) -> list[str]:
    return [minutes_to_label(slot_minutes) for slot_minutes in generate_day_slot_minutes(rule, slot_duration)]


def find_appointment_at(
    slot_date: date,
    slot_minutes: int,
    appointments: Iterable[AppointmentRecord],
) -> AppointmentRecord | None:
    for appointment in appointments:
        if (
            appointment.occupies_slot
            and appointment.date_time.date() == slot_date
            and to_minutes(appointment.date_time) == slot_minutes
        ):
            return appointment
    return None


def classify_slot(
    slot_date: date,
    slot_time: time | str | int,
    rules: RuleSet,
    appointments: Iterable[AppointmentRecord],
    now: datetime,
) -> SlotClassification:
    """Classify one (date, time) cell of a doctor's calendar.

    Checks run in a fixed order and the first match wins: past date, past time
    today (a slot starting at the current minute counts as past), day off,
    lunch break, existing non-cancelled appointment, then available.

    A time value that cannot be read as a time of day (``'25:99'``, ``1440``)
    is reported as blocked ``outside_hours``. Only a value of an unsupported
    type raises.
    """
    if isinstance(slot_date, datetime):
        slot_date = slot_date.date()

    try:
        slot_minutes = to_minutes(slot_time)
    except ValueError:
        return SlotClassification(
            date=slot_date, time=str(slot_time), status=SLOT_BLOCKED, reason=REASON_OUTSIDE_HOURS,
        )

    label = minutes_to_label(slot_minutes)
    today = now.date()

    if slot_date < today:
        return SlotClassification(date=slot_date, time=label, status=SLOT_BLOCKED, reason=REASON_PAST_DATE)

    if slot_date == today and slot_minutes <= to_minutes(now):
        return SlotClassification(date=slot_date, time=label, status=SLOT_BLOCKED, reason=REASON_PAST_TIME)

    rule = index_rules(rules).get(day_of_week_for(slot_date))
    if rule is None or not rule.is_available:
        return SlotClassification(date=slot_date, time=label, status=SLOT_BLOCKED, reason=REASON_DAY_OFF)

    if is_lunch_break_slot(slot_minutes, rule):
        return SlotClassification(date=slot_date, time=label, status=SLOT_BLOCKED, reason=REASON_LUNCH_BREAK)

    appointment = find_appointment_at(slot_date, slot_minutes, appointments)
    if appointment is not None:
        return SlotClassification(
            date=slot_date,
            time=label,
            status=SLOT_BOOKED,
            reason=REASON_ALREADY_BOOKED,
            patient_id=appointment.patient_id,
            patient_name=appointment.patient_name,
        )

    return SlotClassification(date=slot_date, time=label, status=SLOT_AVAILABLE)


def _same_doctor(appointment: AppointmentRecord, doctor_id: int | str) -> bool:
    return appointment.doctor_id is None or str(appointment.doctor_id) == str(doctor_id)


def validate_booking_request(
    slot_date: date,
    slot_time: time | str | int,
    doctor_id: int | str,
    rules: RuleSet,
    appointments: Iterable[AppointmentRecord],
    now: datetime,
) -> BookingDecision:
    """Decide whether a booking at (date, time) may be written.

    Must be called again inside the write transaction, not only when the
    calendar was rendered.
    """
    if isinstance(slot_date, datetime):
        slot_date = slot_date.date()

    rules_by_day = index_rules(rules)
    doctor_appointments = [appointment for appointment in appointments if _same_doctor(appointment, doctor_id)]

    classification = classify_slot(slot_date, slot_time, rules_by_day, doctor_appointments, now)
    if classification.status != SLOT_AVAILABLE:
        return BookingDecision(accepted=False, reason=classification.reason)

    rule = rules_by_day[day_of_week_for(slot_date)]
    if to_minutes(slot_time) not in generate_day_slot_minutes(rule):
        return BookingDecision(accepted=False, reason=REASON_OUTSIDE_HOURS)

    return BookingDecision(accepted=True)


def build_slot_grid(
    start_date: date,
    days: int,
    rules: RuleSet,
    appointments: Iterable[AppointmentRecord],
    now: datetime,
) -> list[DaySlots]:
    """Classify every cell of a calendar starting at ``start_date``.

    Rows are the union of the slot starts of every available rule, or the
    default rule's slots when no day is available. A cell that is free but not
    on its own day's slot grid is reported as ``outside_hours``.
    """
    rules_by_day = index_rules(rules)
    appointments = list(appointments)
    available_rules = [rule for rule in rules_by_day.values() if rule.is_available]

    row_minutes = sorted({
        slot_minutes
        for rule in (available_rules or [None])
        for slot_minutes in generate_day_slot_minutes(rule)
    })

    grid: list[DaySlots] = []
    for offset in range(max(days, 0)):
        current_day = start_date + timedelta(days=offset)
        day_of_week = day_of_week_for(current_day)
        rule = rules_by_day.get(day_of_week)
        day_slot_minutes = set(generate_day_slot_minutes(rule)) if rule and rule.is_available else set()

        cells: list[SlotClassification] = []
        for slot_minutes in row_minutes:
            cell = classify_slot(current_day, slot_minutes, rules_by_day, appointments, now)
            if cell.status == SLOT_AVAILABLE and slot_minutes not in day_slot_minutes:
                cell = cell.model_copy(update={'status': SLOT_BLOCKED, 'reason': REASON_OUTSIDE_HOURS})
            cells.append(cell)

        grid.append(DaySlots(date=current_day, day_of_week=day_of_week, slots=cells))

    return grid


def find_next_available_slot(
    doctor_id: int | str,
    rules: RuleSet,
    appointments: Iterable[AppointmentRecord],
    now: datetime,
    lookahead_days: int = 7,
) -> datetime | None:
    rules_by_day = index_rules(rules)
    if not rules_by_day:
        return None

    appointments = list(appointments)
    for offset in range(lookahead_days):
        current_day = now.date() + timedelta(days=offset)
        rule = rules_by_day.get(day_of_week_for(current_day))
        if rule is None or not rule.is_available:
            continue

        for slot_minutes in generate_day_slot_minutes(rule):
            decision = validate_booking_request(
                current_day, slot_minutes, doctor_id, rules_by_day, appointments, now
            )
            if decision.accepted:
                return datetime.combine(current_day, minutes_to_time(slot_minutes))

    return None
