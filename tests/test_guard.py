from datetime import date

import pytest

from salonshift.availability_data import AvailabilitySnapshot, build_leave_map, build_lending_maps
from salonshift.errors import AvailabilityConflict
from salonshift.guard import check_shift, ensure_shift_allowed, validate_branch_hours, validate_commit
from salonshift.resolver import RosterMember

MAIN = 10
HOURS = {
    "monday": {"isOpen": True, "open": "09:00", "close": "19:00"},
    "sunday": {"isOpen": False, "open": None, "close": None},
}


def _lending_docs():
    return [
        {"id": 1, "stylistId": 2, "fromBranchId": MAIN, "toBranchId": 20, "toBranchName": "Branch X",
         "startDate": "2024-03-01", "endDate": "2024-03-05", "status": "approved"},
        {"id": 2, "stylistId": 5, "fromBranchId": 30, "toBranchId": MAIN, "fromBranchName": "North",
         "startDate": "2024-03-04", "endDate": "2024-03-08", "status": "active"},
    ]


def _snapshot():
    outbound, inbound = build_lending_maps(_lending_docs(), MAIN)
    leaves = build_leave_map(
        [{"id": 1, "employeeId": 1, "startDate": "2024-02-01", "endDate": "2024-02-03",
          "status": "approved", "type": "vacation"}]
    )
    return AvailabilitySnapshot(branch_id=MAIN, leaves=leaves, outbound=outbound, inbound=inbound)


def _members(snapshot):
    alice = RosterMember(employee_id=1, name="Alice Ray", home_branch_id=MAIN)
    bob = RosterMember(employee_id=2, name="Bob Stone", home_branch_id=MAIN)
    nina = RosterMember(
        employee_id=5,
        name="Nina Vale",
        home_branch_id=30,
        is_borrowed=True,
        lending_windows=tuple(snapshot.inbound[5]),
    )
    return alice, bob, nina


def test_leave_blocks_through_last_day_only():
    snapshot = _snapshot()
    alice, _, _ = _members(snapshot)

    blocked = check_shift(alice, date(2024, 2, 3), "09:00", "17:00", snapshot)
    assert not blocked.allowed
    assert blocked.reasons == ["on_leave"]
    assert "On leave from Feb 01, 2024 to Feb 03, 2024" in blocked.violations[0].message

    assert check_shift(alice, date(2024, 2, 4), "09:00", "17:00", snapshot).allowed


def test_availability_is_checked_before_branch_hours():
    snapshot = _snapshot()
    _, bob, _ = _members(snapshot)
    # 2024-03-03 is a Sunday, when the branch is closed.
    result = check_shift(bob, date(2024, 3, 3), "06:00", "23:00", snapshot, HOURS)
    assert result.reasons == ["lent_out"]


def test_outbound_lending_names_destination_branch():
    snapshot = _snapshot()
    _, bob, _ = _members(snapshot)

    with pytest.raises(AvailabilityConflict) as exc_info:
        ensure_shift_allowed(bob, date(2024, 3, 3), "09:00", "17:00", snapshot)
    assert exc_info.value.reasons == ["lent_out"]
    assert "Branch X" in str(exc_info.value)

    ensure_shift_allowed(bob, date(2024, 3, 6), "09:00", "17:00", snapshot)


def test_borrowed_staff_only_inside_lending_window():
    snapshot = _snapshot()
    _, _, nina = _members(snapshot)

    assert check_shift(nina, date(2024, 3, 5), "10:00", "16:00", snapshot).allowed
    outside = check_shift(nina, date(2024, 3, 9), "10:00", "16:00", snapshot)
    assert outside.reasons == ["outside_lending_period"]
    assert "Mar 04, 2024 to Mar 08, 2024" in outside.violations[0].message


def test_branch_hours_checks_apply_only_to_configured_days():
    assert validate_branch_hours(HOURS, "sunday", "10:00", "14:00")[0] == "branch_closed"
    assert validate_branch_hours(HOURS, "monday", "08:00", "14:00") == (
        "outside_operating_hours",
        "Start time must be after branch opening time (09:00)",
    )
    assert validate_branch_hours(HOURS, "monday", "10:00", "20:00") == (
        "outside_operating_hours",
        "End time must be before branch closing time (19:00)",
    )
    assert validate_branch_hours(HOURS, "monday", "14:00", "10:00")[0] == "invalid_time_range"
    assert validate_branch_hours(HOURS, "monday", "09:00", "19:00") is None
    assert validate_branch_hours(HOURS, "tuesday", "05:00", "23:00") is None
    assert validate_branch_hours(None, "sunday", "10:00", "14:00") is None


def test_validate_commit_maps_day_keys_to_dates_from_start_date():
    snapshot = _snapshot()
    alice, bob, nina = _members(snapshot)
    roster = {m.employee_id: m for m in (alice, bob, nina)}
    shifts = {
        "1": {"thursday": {"start": "09:00", "end": "17:00"}},
        "2": {"monday": {"start": "09:00", "end": "17:00"}, "wednesday": {"start": "09:00", "end": "17:00"}},
        "5": {"saturday": {"start": "10:00", "end": "16:00"}},
    }

    # Monday 2024-01-29: Alice's Thursday falls on 2024-02-01, inside her leave.
    violations = validate_commit(shifts, date(2024, 1, 29), roster, snapshot)
    assert [(v.employee_id, v.day, v.reason) for v in violations] == [
        (1, date(2024, 2, 1), "on_leave"),
        (5, date(2024, 2, 3), "outside_lending_period"),
    ]

    # Friday 2024-03-01: Bob's Monday becomes 2024-03-04, inside his lending,
    # and Nina's Saturday becomes 2024-03-02, before hers starts.
    violations = validate_commit(shifts, date(2024, 3, 1), roster, snapshot)
    assert [(v.employee_id, v.day, v.reason) for v in violations] == [
        (2, date(2024, 3, 4), "lent_out"),
        (5, date(2024, 3, 2), "outside_lending_period"),
    ]
