from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from salonshift.availability_data import AvailabilitySnapshot, build_leave_map
from salonshift.db import Base
from salonshift.editor import BulkShiftEditor, EditorState, working_set_from_week
from salonshift.errors import (
    AvailabilityConflict,
    AvailabilityUnavailableError,
    EditorBusyError,
    EditorStateError,
    ScheduleValidationError,
)
from salonshift.models import Branch, ScheduleConfiguration, StaffMember
from salonshift.resolver import ConfigurationVersion, RosterMember


def make_session(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test_editor.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def _setup(tmp_path, leave_docs=()):
    db = make_session(tmp_path)
    branch = Branch(
        name="Main",
        operating_hours={"sunday": {"isOpen": False, "open": None, "close": None}},
    )
    db.add(branch)
    db.flush()
    alice = StaffMember(branch_id=branch.id, first_name="Alice", last_name="Ray")
    bob = StaffMember(branch_id=branch.id, first_name="Bob", last_name="Stone")
    db.add_all([alice, bob])
    db.commit()

    snapshot = AvailabilitySnapshot(
        branch_id=branch.id,
        leaves=build_leave_map(
            [dict(doc, employeeId=bob.id) for doc in leave_docs]
        ),
    )
    roster = [RosterMember.from_staff(alice), RosterMember.from_staff(bob)]
    editor = BulkShiftEditor(db, branch.id, roster, snapshot, branch.operating_hours)
    return db, editor, alice, bob


BOB_SICK_TUESDAY = {
    "id": 1,
    "startDate": "2024-01-09",
    "endDate": "2024-01-09",
    "status": "approved",
    "type": "sick",
}


def test_commit_creates_configuration_and_resets_editor(tmp_path):
    db, editor, alice, _ = _setup(tmp_path)
    editor.begin()
    editor.set_shift(alice.id, "Monday", "09:00", "17:00")
    editor.set_shift(alice.id, "friday", "09:00", "13:00", on_date=date(2024, 1, 12))

    row = editor.commit(date(2024, 1, 8), "Calendar-based configuration")

    assert row.is_active is True
    assert row.start_date == date(2024, 1, 8)
    assert row.shifts == {
        str(alice.id): {
            "monday": {"start": "09:00", "end": "17:00"},
            "friday": {"start": "09:00", "end": "13:00"},
        }
    }
    assert editor.state == EditorState.IDLE
    assert editor.working_set == {}


def test_commit_with_one_leave_violation_rejects_everything(tmp_path):
    db, editor, alice, bob = _setup(tmp_path, [BOB_SICK_TUESDAY])
    editor.begin(
        {
            str(alice.id): {"monday": {"start": "09:00", "end": "17:00"}},
            str(bob.id): {"tuesday": {"start": "09:00", "end": "17:00"}},
        }
    )

    with pytest.raises(AvailabilityConflict) as exc_info:
        editor.commit(date(2024, 1, 8))

    violations = exc_info.value.violations
    assert len(violations) == 1
    assert violations[0].employee_id == bob.id
    assert violations[0].day_key == "tuesday"
    assert violations[0].day == date(2024, 1, 9)
    assert "Bob Stone - Tuesday (Jan 09, 2024)" in violations[0].message
    assert db.execute(select(ScheduleConfiguration)).scalars().all() == []
    assert editor.state == EditorState.ERROR
    assert str(bob.id) in editor.working_set

    # Same entries one week later no longer hit the leave.
    row = editor.commit(date(2024, 1, 15))
    assert row.start_date == date(2024, 1, 15)
    assert editor.state == EditorState.IDLE


def test_single_cell_edit_is_checked_against_leave_and_hours(tmp_path):
    _, editor, alice, bob = _setup(tmp_path, [BOB_SICK_TUESDAY])
    editor.begin()

    with pytest.raises(AvailabilityConflict) as exc_info:
        editor.set_shift(bob.id, "tuesday", "09:00", "17:00", on_date=date(2024, 1, 9))
    assert exc_info.value.reasons == ["on_leave"]

    with pytest.raises(AvailabilityConflict) as exc_info:
        editor.set_shift(alice.id, "sunday", "10:00", "14:00")
    assert exc_info.value.reasons == ["branch_closed"]

    with pytest.raises(ScheduleValidationError):
        editor.set_shift(alice.id, "monday", "17:00", "09:00")

    assert editor.working_set == {}
    assert editor.state == EditorState.EDITING


def test_commit_requires_start_date_and_some_shifts(tmp_path):
    _, editor, alice, _ = _setup(tmp_path)
    editor.begin()
    editor.set_shift(alice.id, "monday", "09:00", "17:00")

    with pytest.raises(ScheduleValidationError, match="start date"):
        editor.commit(None)
    assert editor.state == EditorState.ERROR

    editor.clear_shift(alice.id, "monday")
    assert editor.state == EditorState.EDITING
    with pytest.raises(ScheduleValidationError, match="at least one shift"):
        editor.commit(date(2024, 1, 8))


def test_commit_while_saving_is_refused(tmp_path):
    db, editor, alice, _ = _setup(tmp_path)
    attempts = []

    def refresh(start, end):
        with pytest.raises(EditorBusyError):
            editor.commit(start)
        attempts.append((start, end))
        return editor.snapshot

    editor.refresh_snapshot = refresh
    editor.begin()
    editor.set_shift(alice.id, "monday", "09:00", "17:00")

    row = editor.commit(date(2024, 1, 8))

    assert attempts == [(date(2024, 1, 8), date(2024, 1, 14))]
    assert len(db.execute(select(ScheduleConfiguration)).scalars().all()) == 1
    assert row.id is not None


def test_editor_rejects_operations_outside_an_edit(tmp_path):
    _, editor, alice, _ = _setup(tmp_path)
    with pytest.raises(EditorStateError):
        editor.set_shift(alice.id, "monday", "09:00", "17:00")
    with pytest.raises(EditorStateError):
        editor.commit(date(2024, 1, 8))
    editor.begin()
    with pytest.raises(EditorStateError):
        editor.begin()
    editor.cancel()
    assert editor.state == EditorState.IDLE


def test_assign_bulk_is_all_or_nothing(tmp_path):
    _, editor, alice, bob = _setup(tmp_path, [BOB_SICK_TUESDAY])
    editor.begin()

    with pytest.raises(AvailabilityConflict) as exc_info:
        editor.assign_bulk([alice.id, bob.id], ["monday", "tuesday"], "09:00", "17:00", week_start=date(2024, 1, 8))
    assert [(v.employee_id, v.day) for v in exc_info.value.violations] == [(bob.id, date(2024, 1, 9))]
    assert editor.working_set == {}

    assert editor.assign_bulk([alice.id, bob.id], ["monday"], "09:00", "17:00", week_start=date(2024, 1, 8)) == 2
    assert set(editor.working_set) == {str(alice.id), str(bob.id)}


def test_working_set_seeded_from_resolved_week():
    alice = RosterMember(employee_id=1, name="Alice Ray", home_branch_id=10)
    configs = [
        ConfigurationVersion(
            id=1,
            start_date=date(2024, 1, 1),
            shifts={"1": {"monday": {"start": "09:00", "end": "17:00"}}},
        )
    ]
    overrides = {1: {"2024-01-10": {"start": "12:00", "end": "14:00", "override_id": 3}}}

    seed = working_set_from_week([alice], date(2024, 1, 8), configs, overrides)

    assert seed == {"1": {"monday": {"start": "09:00", "end": "17:00"}}}


def test_commit_refuses_to_save_when_leave_data_is_unavailable(tmp_path):
    db, editor, alice, _ = _setup(tmp_path)
    editor.refresh_snapshot = lambda start, end: AvailabilitySnapshot(
        branch_id=editor.branch_id, errors=["leave_requests_unavailable"]
    )
    editor.begin({str(alice.id): {"monday": {"start": "09:00", "end": "17:00"}}})

    with pytest.raises(AvailabilityUnavailableError) as exc_info:
        editor.commit(date(2024, 1, 8))

    assert exc_info.value.errors == ["leave_requests_unavailable"]
    assert db.execute(select(ScheduleConfiguration)).scalars().all() == []
    assert editor.state == EditorState.ERROR
    assert str(alice.id) in editor.working_set


def test_commit_rejects_staff_outside_the_roster(tmp_path):
    db, editor, alice, _ = _setup(tmp_path)
    other_branch = Branch(name="North")
    db.add(other_branch)
    db.flush()
    outsider = StaffMember(branch_id=other_branch.id, first_name="Nina", last_name="Vale")
    db.add(outsider)
    db.commit()

    editor.begin(
        {
            str(alice.id): {"monday": {"start": "09:00", "end": "17:00"}},
            str(outsider.id): {"tuesday": {"start": "09:00", "end": "17:00"}},
        }
    )
    with pytest.raises(ScheduleValidationError, match="not on this branch's roster"):
        editor.commit(date(2024, 1, 8))
    assert db.execute(select(ScheduleConfiguration)).scalars().all() == []

    editor.clear_all()
    editor.set_shift(alice.id, "monday", "09:00", "17:00")
    assert editor.commit(date(2024, 1, 8)).id is not None
