from datetime import date, datetime, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic.models.availability import DoctorAvailability
from clinic.routes.availability_routes import (
    AvailabilityRuleRequest,
    delete_rule,
    get_calendar,
    get_next_available_slot,
    list_day_slots,
    list_doctor_rules,
    list_my_rules,
    upsert_rule,
)
from clinic.scheduling.slot_engine import (
    REASON_DAY_OFF,
    REASON_PAST_DATE,
    SLOT_AVAILABLE,
    SLOT_BOOKED,
)


def test_rule_request_parses_labels_and_24_hour_strings() -> None:
    request = AvailabilityRuleRequest(
        day_of_week=0,
        start_time='12:00 PM',
        end_time='19:00',
        lunch_break_start='3:00 PM',
        lunch_break_end='15:30',
        slot_duration=30,
    )

    assert request.start_time == time(12, 0)
    assert request.lunch_break_start == time(15, 0)
    assert request.lunch_break_end == time(15, 30)


def test_rule_request_allows_day_without_lunch_break() -> None:
    request = AvailabilityRuleRequest(
        day_of_week=6,
        start_time='10:00',
        end_time='13:00',
        lunch_break_start='',
        lunch_break_end='',
    )

    assert request.lunch_break_start is None
    assert request.lunch_break_end is None


@pytest.mark.parametrize(
    'overrides',
    [
        {'day_of_week': 7},
        {'start_time': '19:00', 'end_time': '09:00'},
        {'start_time': '09:00', 'end_time': '09:00'},
        {'slot_duration': 0},
        {'slot_duration': -20},
        {'lunch_break_start': '13:00', 'lunch_break_end': None},
        {'lunch_break_start': '14:00', 'lunch_break_end': '13:00'},
        {'lunch_break_start': '08:00', 'lunch_break_end': '09:30'},
        {'start_time': 'noon'},
    ],
)
def test_rule_request_rejects_invalid_settings(overrides: dict) -> None:
    payload = {
        'day_of_week': 1,
        'start_time': '09:00',
        'end_time': '19:00',
        'lunch_break_start': '13:00',
        'lunch_break_end': '14:00',
        'slot_duration': 20,
    }
    payload.update(overrides)

    with pytest.raises(ValidationError):
        AvailabilityRuleRequest(**payload)


def test_upsert_rule_creates_then_updates_same_weekday(db_session, doctor) -> None:
    created = upsert_rule(
        AvailabilityRuleRequest(day_of_week=1, start_time='09:00', end_time='17:00',
                                lunch_break_start='13:00', lunch_break_end='14:00'),
        current_user=doctor,
        db=db_session,
    )
    updated = upsert_rule(
        AvailabilityRuleRequest(day_of_week=1, start_time='10:00', end_time='16:00', slot_duration=30),
        current_user=doctor,
        db=db_session,
    )

    assert updated.id == created.id
    assert updated.start_time == time(10, 0)
    assert updated.slot_duration == 30
    assert updated.lunch_break_start is None
    assert db_session.query(DoctorAvailability).count() == 1


def test_list_my_rules_orders_by_weekday(db_session, doctor) -> None:
    for day_of_week in (5, 0, 3):
        upsert_rule(
            AvailabilityRuleRequest(day_of_week=day_of_week, start_time='09:00', end_time='12:00'),
            current_user=doctor,
            db=db_session,
        )

    rules = list_my_rules(current_user=doctor, db=db_session)

    assert [rule.day_of_week for rule in rules] == [0, 3, 5]


def test_list_doctor_rules_rejects_unknown_doctor(db_session, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_doctor_rules(doctor_id=999, current_user=admin, db=db_session)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_list_doctor_rules_returns_rules_for_any_user(db_session, admin, doctor, monday_hours) -> None:
    rules = list_doctor_rules(doctor_id=doctor.id, current_user=admin, db=db_session)

    assert [rule.id for rule in rules] == [monday_hours.id]


def test_delete_rule_removes_weekday(db_session, doctor, monday_hours) -> None:
    delete_rule(day_of_week=1, current_user=doctor, db=db_session)

    assert db_session.query(DoctorAvailability).count() == 0


def test_delete_rule_returns_not_found_when_missing(db_session, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        delete_rule(day_of_week=2, current_user=doctor, db=db_session)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Availability not found.'


def test_list_day_slots_falls_back_to_default_rule(db_session, doctor, admin) -> None:
    response = list_day_slots(doctor_id=doctor.id, day_of_week=2, current_user=admin, db=db_session)

    assert response.is_configured is False
    assert response.slots[:3] == ['9:00 AM', '9:20 AM', '9:40 AM']
    assert '1:00 PM' not in response.slots


def test_list_day_slots_uses_configured_rule(db_session, doctor, admin, monday_hours) -> None:
    response = list_day_slots(doctor_id=doctor.id, day_of_week=1, current_user=admin, db=db_session)

    assert response.is_configured is True
    assert response.slots[-1] == '4:40 PM'


def test_get_calendar_marks_booked_and_closed_days(db_session, doctor, admin, monday_hours, add_appointment) -> None:
    add_appointment(datetime(2024, 6, 10, 10, 0))
    add_appointment(datetime(2024, 6, 10, 11, 0), status='cancelled')

    grid = get_calendar(
        doctor_id=doctor.id,
        start_date=date(2024, 6, 10),
        days=2,
        current_user=admin,
        db=db_session,
    )

    monday = {slot.time: slot for slot in grid[0].slots}
    assert monday['10:00 AM'].status == SLOT_BOOKED
    assert monday['10:00 AM'].patient_name == 'Ayesha Khan'
    assert monday['11:00 AM'].status == SLOT_AVAILABLE
    assert all(slot.reason == REASON_DAY_OFF for slot in grid[1].slots)


def test_get_calendar_defaults_to_today(db_session, doctor, admin, monday_hours) -> None:
    grid = get_calendar(doctor_id=doctor.id, start_date=None, days=1, current_user=admin, db=db_session)

    assert grid[0].date == date(2024, 6, 10)


def test_get_calendar_blocks_past_week(db_session, doctor, admin, monday_hours) -> None:
    grid = get_calendar(doctor_id=doctor.id, start_date=date(2024, 6, 3), days=1, current_user=admin, db=db_session)

    assert all(slot.reason == REASON_PAST_DATE for slot in grid[0].slots)


def test_get_next_available_slot_skips_booked_start(db_session, doctor, admin, monday_hours, add_appointment) -> None:
    add_appointment(datetime(2024, 6, 10, 9, 0))

    response = get_next_available_slot(doctor_id=doctor.id, lookahead_days=7, current_user=admin, db=db_session)

    assert response.date_time == datetime(2024, 6, 10, 9, 20)


def test_get_next_available_slot_without_rules(db_session, doctor, admin) -> None:
    response = get_next_available_slot(doctor_id=doctor.id, lookahead_days=7, current_user=admin, db=db_session)

    assert response.doctor_id == doctor.id
    assert response.date_time is None
