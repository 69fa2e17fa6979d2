"""Availability checks run before a shift is added, edited or committed.

Checks run in a fixed order and a cell reports only the first one it fails:
leave, outbound lending, inbound lending window, branch operating hours.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Mapping

import structlog

from .availability_data import AvailabilitySnapshot
from .errors import AvailabilityConflict, Violation
from .resolver import RosterMember
from .timeutils import (
    DAY_LABELS,
    date_for_day_key,
    day_key_for,
    format_day,
    hhmm_to_minutes,
    is_valid_hhmm,
    normalize_day_key,
)

logger = structlog.get_logger("salonshift.guard")

ON_LEAVE = "on_leave"
LENT_OUT = "lent_out"
OUTSIDE_LENDING_PERIOD = "outside_lending_period"
BRANCH_CLOSED = "branch_closed"
OUTSIDE_OPERATING_HOURS = "outside_operating_hours"
INVALID_TIME_RANGE = "invalid_time_range"


@dataclass
class GuardResult:
    violations: list[Violation] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return not self.violations

    @property
    def reasons(self) -> list[str]:
        return [v.reason for v in self.violations]


def validate_branch_hours(
    branch_hours: Mapping | None, day_key: str, start: str, end: str
) -> tuple[str, str] | None:
    """Return ``(reason, detail)`` when the shift does not fit the branch's hours for ``day_key``."""
    if not branch_hours:
        return None
    day_hours = branch_hours.get(day_key)
    if day_hours is None:
        return None
    if not day_hours.get("isOpen"):
        return BRANCH_CLOSED, f"{DAY_LABELS[day_key]} is closed"
    if not is_valid_hhmm(start) or not is_valid_hhmm(end):
        return INVALID_TIME_RANGE, "Invalid time format. Use HH:mm format (e.g., 09:00)"
    if hhmm_to_minutes(start) >= hhmm_to_minutes(end):
        return INVALID_TIME_RANGE, "End time must be after start time"
    opens = day_hours.get("open")
    closes = day_hours.get("close")
    if is_valid_hhmm(opens) and hhmm_to_minutes(start) < hhmm_to_minutes(opens):
        return OUTSIDE_OPERATING_HOURS, f"Start time must be after branch opening time ({opens})"
    if is_valid_hhmm(closes) and hhmm_to_minutes(end) > hhmm_to_minutes(closes):
        return OUTSIDE_OPERATING_HOURS, f"End time must be before branch closing time ({closes})"
    return None


def _first_failure(
    member: RosterMember,
    day: date,
    start: str,
    end: str,
    snapshot: AvailabilitySnapshot,
    branch_hours: Mapping | None,
) -> tuple[str, str] | None:
    leave = snapshot.leave_on(member.employee_id, day)
    if leave is not None:
        return ON_LEAVE, f"On leave from {format_day(leave.start)} to {format_day(leave.end)}"

    lending = snapshot.outbound_on(member.employee_id, day)
    if lending is not None:
        return LENT_OUT, (
            f"Lent out to {lending.to_branch_name} "
            f"from {format_day(lending.start)} to {format_day(lending.end)}"
        )

    if member.is_borrowed and member.lending_window_on(day) is None:
        window = member.lending_windows[0]
        return OUTSIDE_LENDING_PERIOD, (
            f"Only lent to this branch from {format_day(window.start)} to {format_day(window.end)}"
        )

    return validate_branch_hours(branch_hours, day_key_for(day), start, end)


def check_shift(
    member: RosterMember,
    day: date,
    start: str,
    end: str,
    snapshot: AvailabilitySnapshot,
    branch_hours: Mapping | None = None,
) -> GuardResult:
    failure = _first_failure(member, day, start, end, snapshot, branch_hours)
    if failure is None:
        return GuardResult()
    reason, detail = failure
    day_key = day_key_for(day)
    return GuardResult(
        violations=[
            Violation(
                reason=reason,
                message=f"{member.name} - {DAY_LABELS[day_key]} ({format_day(day)}): {detail}",
                employee_id=member.employee_id,
                employee_name=member.name,
                day_key=day_key,
                day=day,
            )
        ]
    )


def ensure_shift_allowed(
    member: RosterMember,
    day: date,
    start: str,
    end: str,
    snapshot: AvailabilitySnapshot,
    branch_hours: Mapping | None = None,
) -> None:
    result = check_shift(member, day, start, end, snapshot, branch_hours)
    if not result.allowed:
        raise AvailabilityConflict(result.violations)


def validate_commit(
    shifts: Mapping[str, Mapping[str, dict]],
    start_date: date,
    roster: Mapping[int, RosterMember],
    snapshot: AvailabilitySnapshot,
    branch_hours: Mapping | None = None,
) -> list[Violation]:
    """Re-check every entry of a working set against the dates it will actually cover.

    Each day key is mapped to its date within the seven days starting at
    ``start_date``. Every failing cell is reported, not only the first.
    """
    violations: list[Violation] = []
    for raw_employee_id, day_map in shifts.items():
        employee_id = int(raw_employee_id)
        member = roster.get(employee_id) or RosterMember(
            employee_id=employee_id,
            name="Staff member",
            home_branch_id=snapshot.branch_id,
        )
        for raw_day_key, shift in (day_map or {}).items():
            if not shift or not shift.get("start") or not shift.get("end"):
                continue
            day = date_for_day_key(start_date, normalize_day_key(raw_day_key))
            result = check_shift(member, day, shift["start"], shift["end"], snapshot, branch_hours)
            violations.extend(result.violations)

    if violations:
        logger.info(
            "commit_validation_failed",
            branch_id=snapshot.branch_id,
            start_date=start_date.isoformat(),
            violations=len(violations),
            reasons=sorted({v.reason for v in violations}),
        )
    return violations
