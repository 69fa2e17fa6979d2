"""In-memory working set for editing a branch's weekly shifts.

The editor is a small state machine::

    idle -> editing -> validating -> committing -> idle
                  ^         |             |
                  +------ error <---------+

Single-cell edits are checked right away but only advisorily; the commit
re-derives the real calendar date of every entry from the chosen start date
and checks all of them again before anything is written.
"""

from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Mapping

import structlog
from sqlalchemy.orm import Session

from . import schedule_store
from .availability_data import AvailabilitySnapshot
from .errors import (
    AvailabilityConflict,
    AvailabilityUnavailableError,
    EditorBusyError,
    EditorStateError,
    ScheduleValidationError,
    Violation,
)
from .guard import check_shift, validate_branch_hours, validate_commit
from .resolver import ConfigurationVersion, RosterMember, resolve_shift
from .timeutils import (
    DAY_LABELS,
    date_for_day_key,
    day_key_for,
    normalize_day,
    normalize_day_key,
    week_dates,
)

logger = structlog.get_logger("salonshift.editor")


class EditorState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    VALIDATING = "validating"
    COMMITTING = "committing"
    ERROR = "error"


def working_set_from_week(
    roster: Iterable[RosterMember],
    week_start: date,
    configs: Iterable[ConfigurationVersion],
    overrides: Mapping | None = None,
    outbound: Mapping | None = None,
) -> dict[str, dict[str, dict]]:
    """Seed a working set from what currently resolves for each day of the week."""
    configs = list(configs)
    seed: dict[str, dict[str, dict]] = {}
    for member in roster:
        for day in week_dates(week_start):
            resolved = resolve_shift(member, day, configs, overrides, outbound)
            if resolved is None or resolved.is_lending or resolved.is_date_specific:
                continue
            seed.setdefault(str(member.employee_id), {})[day_key_for(day)] = {
                "start": resolved.start,
                "end": resolved.end,
            }
    return seed


class BulkShiftEditor:
    def __init__(
        self,
        db: Session,
        branch_id: int,
        roster: Iterable[RosterMember],
        snapshot: AvailabilitySnapshot,
        branch_hours: Mapping | None = None,
        *,
        refresh_snapshot: Callable[[date, date], AvailabilitySnapshot] | None = None,
        actor_email: str | None = None,
    ):
        self.db = db
        self.branch_id = branch_id
        self.roster = {member.employee_id: member for member in roster}
        self.snapshot = snapshot
        self.branch_hours = branch_hours
        self.refresh_snapshot = refresh_snapshot
        self.actor_email = actor_email
        self.working_set: dict[str, dict[str, dict]] = {}
        self.state = EditorState.IDLE
        self.last_error: Exception | None = None

    def _member(self, employee_id) -> RosterMember:
        member = self.roster.get(int(employee_id))
        if member is None:
            raise ScheduleValidationError(f"Staff member {employee_id} is not on this branch's roster")
        return member

    def _require_editing(self) -> None:
        if self.state in (EditorState.VALIDATING, EditorState.COMMITTING):
            raise EditorBusyError("A save is already in progress")
        if self.state == EditorState.IDLE:
            raise EditorStateError("No edit in progress")
        if self.state == EditorState.ERROR:
            self.state = EditorState.EDITING
            self.last_error = None

    def begin(self, seed: Mapping | None = None) -> None:
        if self.state != EditorState.IDLE:
            raise EditorStateError(f"Cannot start editing while {self.state.value}")
        self.working_set = {
            str(employee_id): {
                normalize_day_key(day_key): dict(shift or {})
                for day_key, shift in (day_map or {}).items()
            }
            for employee_id, day_map in (seed or {}).items()
        }
        self.state = EditorState.EDITING

    def cancel(self) -> None:
        if self.state in (EditorState.VALIDATING, EditorState.COMMITTING):
            raise EditorBusyError("A save is already in progress")
        self.working_set = {}
        self.last_error = None
        self.state = EditorState.IDLE

    def _cell_violation(self, member, day_key, start, end, on_date) -> Violation | None:
        if on_date is not None:
            result = check_shift(member, on_date, start, end, self.snapshot, self.branch_hours)
            return result.violations[0] if result.violations else None
        failure = validate_branch_hours(self.branch_hours, day_key, start, end)
        if failure is None:
            return None
        reason, detail = failure
        return Violation(
            reason=reason,
            message=f"{member.name} - {DAY_LABELS[day_key]}: {detail}",
            employee_id=member.employee_id,
            employee_name=member.name,
            day_key=day_key,
        )

    def set_shift(self, employee_id, day_key: str, start: str, end: str, on_date=None) -> None:
        self._require_editing()
        member = self._member(employee_id)
        try:
            day_key = normalize_day_key(day_key)
        except ValueError as exc:
            raise ScheduleValidationError(str(exc)) from exc
        schedule_store.validate_shift_pair(start, end, label=member.name)
        day = normalize_day(on_date) if on_date is not None else None

        violation = self._cell_violation(member, day_key, start, end, day)
        if violation is not None:
            raise AvailabilityConflict([violation])

        self.working_set.setdefault(str(member.employee_id), {})[day_key] = {
            "start": start,
            "end": end,
        }

    def assign_bulk(
        self,
        employee_ids: Iterable,
        day_keys: Iterable[str],
        start: str,
        end: str,
        week_start: date | None = None,
    ) -> int:
        """Give several staff members the same hours on several days, all or nothing."""
        self._require_editing()
        schedule_store.validate_shift_pair(start, end)
        members = [self._member(employee_id) for employee_id in employee_ids]
        try:
            keys = [normalize_day_key(key) for key in day_keys]
        except ValueError as exc:
            raise ScheduleValidationError(str(exc)) from exc
        if not members or not keys:
            raise ScheduleValidationError("Please select at least one stylist and one day")

        violations = []
        for member in members:
            for key in keys:
                on_date = date_for_day_key(week_start, key) if week_start is not None else None
                violation = self._cell_violation(member, key, start, end, on_date)
                if violation is not None:
                    violations.append(violation)
        if violations:
            raise AvailabilityConflict(violations)

        for member in members:
            for key in keys:
                self.working_set.setdefault(str(member.employee_id), {})[key] = {
                    "start": start,
                    "end": end,
                }
        return len(members) * len(keys)

    def clear_shift(self, employee_id, day_key: str) -> None:
        self._require_editing()
        day_key = normalize_day_key(day_key)
        employee_shifts = self.working_set.get(str(employee_id))
        if employee_shifts is not None and day_key in employee_shifts:
            employee_shifts[day_key] = {"start": None, "end": None}

    def clear_all(self) -> None:
        self._require_editing()
        self.working_set = {}

    def pending_shifts(self) -> dict[str, dict[str, dict]]:
        """Working set with empty entries and empty employees stripped."""
        out: dict[str, dict[str, dict]] = {}
        for employee_id, day_map in self.working_set.items():
            kept = {
                day_key: {"start": shift["start"], "end": shift["end"]}
                for day_key, shift in day_map.items()
                if shift and shift.get("start") and shift.get("end")
            }
            if kept:
                out[employee_id] = kept
        return out

    def _fail(self, exc: Exception) -> Exception:
        self.state = EditorState.ERROR
        self.last_error = exc
        return exc

    def commit(self, start_date, notes: str | None = None):
        if self.state in (EditorState.VALIDATING, EditorState.COMMITTING):
            raise EditorBusyError("A save is already in progress")
        if self.state == EditorState.IDLE:
            raise EditorStateError("No edit in progress")

        effective_start = normalize_day(start_date) if start_date else None
        if effective_start is None:
            raise self._fail(
                ScheduleValidationError("Please set a start date for this configuration")
            )
        shifts = self.pending_shifts()
        if not shifts:
            raise self._fail(
                ScheduleValidationError(
                    "Please configure at least one shift for at least one staff member"
                )
            )

        self.state = EditorState.VALIDATING
        try:
            shifts = schedule_store.clean_shift_map(shifts)
            for employee_id in shifts:
                self._member(employee_id)
            if self.refresh_snapshot is not None:
                self.snapshot = self.refresh_snapshot(
                    effective_start, effective_start + timedelta(days=6)
                )
            if self.snapshot.errors:
                logger.warning(
                    "commit_blocked_availability_unavailable",
                    branch_id=self.branch_id,
                    errors=self.snapshot.errors,
                )
                raise AvailabilityUnavailableError(self.snapshot.errors)
            violations = validate_commit(
                shifts, effective_start, self.roster, self.snapshot, self.branch_hours
            )
        except Exception as exc:
            self._fail(exc)
            raise
        if violations:
            logger.info(
                "commit_rejected",
                branch_id=self.branch_id,
                start_date=effective_start.isoformat(),
                violations=len(violations),
            )
            raise self._fail(AvailabilityConflict(violations))

        self.state = EditorState.COMMITTING
        try:
            row = schedule_store.create_configuration(
                self.db,
                self.branch_id,
                shifts,
                effective_start,
                notes,
                actor_email=self.actor_email,
            )
        except Exception as exc:
            self._fail(exc)
            raise

        self.working_set = {}
        self.last_error = None
        self.state = EditorState.IDLE
        logger.info(
            "commit_succeeded",
            branch_id=self.branch_id,
            configuration_id=row.id,
            employees=len(shifts),
        )
        return row
