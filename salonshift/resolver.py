"""Date-based shift resolution.

Configurations are versions: each one is in force from its ``start_date``
until a later one starts. Resolving a shift for a calendar date therefore
never looks at ``is_active``; it picks the newest version that had already
started on that date. Precedence, first match wins:

1. outbound lending covering the date
2. one-off override for exactly that date
3. the recurring configuration selected by date
4. the legacy shift stored on the staff record, when the selected
   configuration has nothing for that staff member and day (or none has
   started yet); a legacy entry marked ``isActive: False`` counts as absent

Leave is not part of resolution. :func:`build_week_view` layers it on top.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping

from .availability_data import AvailabilitySnapshot, LendingInterval
from .timeutils import DAY_LABELS, day_key_for, format_day, normalize_day, week_dates


@dataclass(frozen=True)
class ConfigurationVersion:
    id: int
    start_date: date
    created_at: datetime | None = None
    shifts: Mapping = field(default_factory=dict)
    is_active: bool = False

    @classmethod
    def from_row(cls, row) -> "ConfigurationVersion":
        return cls(
            id=row.id,
            start_date=normalize_day(row.start_date),
            created_at=row.created_at,
            shifts=dict(row.shifts or {}),
            is_active=bool(row.is_active),
        )

    def shift_for(self, employee_id, day_key: str) -> dict | None:
        entry = (self.shifts.get(str(employee_id)) or {}).get(day_key)
        if not entry or not entry.get("start") or not entry.get("end"):
            return None
        return entry


@dataclass(frozen=True)
class RosterMember:
    employee_id: int
    name: str
    home_branch_id: int
    role: str = "stylist"
    legacy_shifts: Mapping | None = None
    is_borrowed: bool = False
    lending_windows: tuple[LendingInterval, ...] = ()

    @classmethod
    def from_staff(cls, row, *, lending_windows: Iterable[LendingInterval] = ()) -> "RosterMember":
        windows = tuple(lending_windows)
        return cls(
            employee_id=row.id,
            name=row.full_name,
            home_branch_id=row.branch_id,
            role=row.role,
            legacy_shifts=dict(row.legacy_shifts or {}),
            is_borrowed=bool(windows),
            lending_windows=windows,
        )

    def lending_window_on(self, day: date) -> LendingInterval | None:
        for window in self.lending_windows:
            if window.covers(day):
                return window
        return None


@dataclass(frozen=True)
class ResolvedShift:
    start: str | None = None
    end: str | None = None
    is_recurring: bool = False
    is_active: bool = False
    config_id: int | None = None
    config_start_date: date | None = None
    is_date_specific: bool = False
    override_id: int | None = None
    is_legacy: bool = False
    is_lending: bool = False
    lending_branch: str | None = None
    lending_branch_id: int | None = None

    def to_dict(self) -> dict:
        if self.is_lending:
            return {
                "isLending": True,
                "lendingBranch": self.lending_branch,
                "lendingBranchId": self.lending_branch_id,
            }
        payload = {"start": self.start, "end": self.end}
        if self.is_date_specific:
            payload.update(isDateSpecific=True, overrideId=self.override_id)
        else:
            payload.update(
                isRecurring=self.is_recurring,
                isActive=self.is_active,
                configId=self.config_id,
                startDate=self.config_start_date.isoformat() if self.config_start_date else None,
            )
            if self.is_legacy:
                payload["isLegacy"] = True
        return payload


def _precedence_key(config: ConfigurationVersion):
    return (config.start_date, config.created_at or datetime.min, config.id or 0)


def select_configuration(
    configs: Iterable[ConfigurationVersion], day: date
) -> ConfigurationVersion | None:
    """Latest ``start_date <= day``; ties go to the latest ``created_at``, then the highest id."""
    eligible = [c for c in configs if c.start_date is not None and c.start_date <= day]
    if not eligible:
        return None
    return max(eligible, key=_precedence_key)


def _legacy_shift(member: RosterMember, day_key: str) -> ResolvedShift | None:
    entry = (member.legacy_shifts or {}).get(day_key)
    if not entry:
        return None
    if entry.get("isActive") is False:
        return None
    if not entry.get("start") or not entry.get("end"):
        return None
    return ResolvedShift(
        start=entry["start"],
        end=entry["end"],
        is_recurring=True,
        is_active=True,
        is_legacy=True,
    )


def resolve_shift(
    member: RosterMember,
    day: date,
    configs: Iterable[ConfigurationVersion],
    overrides: Mapping[int, Mapping[str, dict]] | None = None,
    outbound: Mapping[int, list[LendingInterval]] | None = None,
) -> ResolvedShift | None:
    for lending in (outbound or {}).get(member.employee_id, ()):
        if lending.covers(day):
            return ResolvedShift(
                is_lending=True,
                lending_branch=lending.to_branch_name,
                lending_branch_id=lending.to_branch_id,
            )

    override = ((overrides or {}).get(member.employee_id) or {}).get(day.isoformat())
    if override and override.get("start") and override.get("end"):
        return ResolvedShift(
            start=override["start"],
            end=override["end"],
            is_date_specific=True,
            override_id=override.get("override_id"),
        )

    day_key = day_key_for(day)
    config = select_configuration(configs, day)
    entry = config.shift_for(member.employee_id, day_key) if config is not None else None
    if entry is not None:
        return ResolvedShift(
            start=entry["start"],
            end=entry["end"],
            is_recurring=True,
            is_active=True,
            config_id=config.id,
            config_start_date=config.start_date,
        )

    return _legacy_shift(member, day_key)


def build_roster(home_staff, borrowed_staff, inbound: Mapping[int, list[LendingInterval]]):
    """Home staff first, then staff lent into the branch, each listed once."""
    roster: list[RosterMember] = []
    seen: set[int] = set()
    for row in home_staff:
        if row.id in seen:
            continue
        seen.add(row.id)
        roster.append(RosterMember.from_staff(row))
    for row in borrowed_staff:
        if row.id in seen:
            continue
        seen.add(row.id)
        roster.append(RosterMember.from_staff(row, lending_windows=inbound.get(row.id, ())))
    return roster


def build_week_view(
    roster: Iterable[RosterMember],
    week_start: date,
    configs: Iterable[ConfigurationVersion],
    overrides: Mapping[int, Mapping[str, dict]] | None,
    snapshot: AvailabilitySnapshot,
) -> dict:
    configs = list(configs)
    dates = week_dates(week_start)
    rows = []
    for member in roster:
        cells = {}
        for day in dates:
            leave = snapshot.leave_on(member.employee_id, day)
            if leave is not None:
                cells[day.isoformat()] = {
                    "isOnLeave": True,
                    "leaveType": leave.type,
                    "leaveStatus": leave.status,
                    "leaveStart": format_day(leave.start),
                    "leaveEnd": format_day(leave.end),
                }
                continue
            if member.is_borrowed and member.lending_window_on(day) is None:
                cells[day.isoformat()] = {"outsideLendingPeriod": True}
                continue
            resolved = resolve_shift(member, day, configs, overrides, snapshot.outbound)
            cells[day.isoformat()] = resolved.to_dict() if resolved else None
        rows.append(
            {
                "employeeId": member.employee_id,
                "name": member.name,
                "role": member.role,
                "isBorrowed": member.is_borrowed,
                "shifts": cells,
            }
        )

    return {
        "weekStart": week_start.isoformat(),
        "days": [
            {"date": day.isoformat(), "dayKey": day_key_for(day), "label": DAY_LABELS[day_key_for(day)]}
            for day in dates
        ],
        "staff": rows,
        "availabilityErrors": list(snapshot.errors),
    }
