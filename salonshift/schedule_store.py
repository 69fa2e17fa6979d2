"""Versioned shift configurations and one-off date overrides.

A configuration holds every employee's weekly shifts for a branch from its
``start_date`` on. Saving a new one never rewrites the old one: the previous
active row is only flagged ``is_active=False`` and given an ``end_date``, so
every past and future week can still be resolved by date.
"""

from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit import log_schedule_audit_event
from .errors import RecordNotFoundError, ScheduleValidationError
from .models import Branch, DateShiftOverride, ScheduleConfiguration
from .timeutils import (
    DAY_KEYS,
    hhmm_to_minutes,
    is_valid_hhmm,
    normalize_day,
    normalize_day_key,
    utc_now_naive,
)

logger = structlog.get_logger("salonshift.schedule_store")


def validate_shift_pair(start, end, *, label: str = "shift") -> tuple[str, str]:
    if not start or not end:
        raise ScheduleValidationError(f"Both start and end times required for {label}")
    if not is_valid_hhmm(start) or not is_valid_hhmm(end):
        raise ScheduleValidationError(
            f"Invalid time format for {label}. Use HH:mm format (e.g., 09:00)"
        )
    if hhmm_to_minutes(end) <= hhmm_to_minutes(start):
        raise ScheduleValidationError(f"End time must be after start time for {label}")
    return start, end


def clean_shift_map(shifts) -> dict[str, dict[str, dict[str, str]]]:
    """Validate a ``{employee: {day_key: {start, end}}}`` map and drop empty entries.

    An entry with neither start nor end is treated as cleared. Anything
    half-filled, malformed or with ``end <= start`` raises
    :class:`ScheduleValidationError`.
    """
    if not isinstance(shifts, dict):
        raise ScheduleValidationError("Shifts object is required")

    cleaned: dict[str, dict[str, dict[str, str]]] = {}
    for employee_id, employee_shifts in shifts.items():
        if not employee_shifts:
            continue
        if not isinstance(employee_shifts, dict):
            raise ScheduleValidationError(f"Shifts for {employee_id} must be a mapping")
        employee_clean: dict[str, dict[str, str]] = {}
        for raw_day_key, shift in employee_shifts.items():
            try:
                day_key = normalize_day_key(raw_day_key)
            except ValueError as exc:
                raise ScheduleValidationError(str(exc)) from exc
            shift = shift or {}
            start = shift.get("start") or None
            end = shift.get("end") or None
            if start is None and end is None:
                continue
            start, end = validate_shift_pair(start, end, label=f"{employee_id} - {day_key}")
            employee_clean[day_key] = {"start": start, "end": end}
        if employee_clean:
            cleaned[str(employee_id)] = {
                key: employee_clean[key] for key in DAY_KEYS if key in employee_clean
            }

    if not cleaned:
        raise ScheduleValidationError(
            "Please configure at least one shift for at least one staff member"
        )
    return cleaned


def get_branch_or_raise(db: Session, branch_id: int) -> Branch:
    branch = db.get(Branch, branch_id)
    if branch is None:
        raise RecordNotFoundError(f"Branch {branch_id} not found")
    return branch


def list_configurations(db: Session, branch_id: int) -> list[ScheduleConfiguration]:
    stmt = (
        select(ScheduleConfiguration)
        .where(ScheduleConfiguration.branch_id == branch_id)
        .order_by(
            ScheduleConfiguration.start_date.desc(),
            ScheduleConfiguration.created_at.desc(),
            ScheduleConfiguration.id.desc(),
        )
    )
    return list(db.execute(stmt).scalars().all())


def get_active_configuration(db: Session, branch_id: int) -> ScheduleConfiguration | None:
    stmt = (
        select(ScheduleConfiguration)
        .where(
            ScheduleConfiguration.branch_id == branch_id,
            ScheduleConfiguration.is_active.is_(True),
        )
        .order_by(ScheduleConfiguration.created_at.desc(), ScheduleConfiguration.id.desc())
    )
    return db.execute(stmt).scalars().first()


def create_configuration(
    db: Session,
    branch_id: int,
    shifts: dict,
    start_date=None,
    notes: str | None = "",
    *,
    actor_email: str | None = None,
) -> ScheduleConfiguration:
    get_branch_or_raise(db, branch_id)
    cleaned = clean_shift_map(shifts)

    if start_date is None:
        effective_start = utc_now_naive().date()
    else:
        effective_start = normalize_day(start_date)
        if effective_start is None:
            raise ScheduleValidationError(f"Invalid start date '{start_date}'")

    now = utc_now_naive()
    try:
        previous = (
            db.execute(
                select(ScheduleConfiguration).where(
                    ScheduleConfiguration.branch_id == branch_id,
                    ScheduleConfiguration.is_active.is_(True),
                )
            )
            .scalars()
            .all()
        )
        for old in previous:
            old.is_active = False
            old.end_date = effective_start
            old.updated_at = now

        row = ScheduleConfiguration(
            branch_id=branch_id,
            start_date=effective_start,
            end_date=None,
            shifts=cleaned,
            is_active=True,
            notes=(notes or "").strip()[:500],
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        db.flush()
        log_schedule_audit_event(
            db=db,
            branch_id=branch_id,
            action="configuration.create",
            actor_email=actor_email,
            related_id=f"configuration:{row.id}",
            payload={
                "start_date": effective_start.isoformat(),
                "employees": len(cleaned),
                "superseded": [old.id for old in previous],
            },
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("configuration_create_failed", branch_id=branch_id)
        raise

    db.refresh(row)
    logger.info(
        "configuration_created",
        branch_id=branch_id,
        configuration_id=row.id,
        start_date=effective_start.isoformat(),
        superseded=len(previous),
    )
    return row


def deactivate_entry(
    db: Session,
    employee_id,
    day_of_week: str,
    branch_id: int,
    *,
    actor_email: str | None = None,
) -> ScheduleConfiguration:
    try:
        day_key = normalize_day_key(day_of_week)
    except ValueError as exc:
        raise ScheduleValidationError(str(exc)) from exc

    active = get_active_configuration(db, branch_id)
    employee_key = str(employee_id)
    employee_shifts = dict((active.shifts or {}).get(employee_key) or {}) if active else {}
    if active is None or day_key not in employee_shifts:
        raise ScheduleValidationError("No active schedule found to deactivate")

    employee_shifts.pop(day_key)
    updated = dict(active.shifts)
    if employee_shifts:
        updated[employee_key] = employee_shifts
    else:
        updated.pop(employee_key)

    try:
        active.shifts = updated
        active.updated_at = utc_now_naive()
        log_schedule_audit_event(
            db=db,
            branch_id=branch_id,
            action="configuration.deactivate_entry",
            actor_email=actor_email,
            employee_id=int(employee_id),
            related_id=f"configuration:{active.id}",
            payload={"day": day_key},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(active)
    logger.info(
        "configuration_entry_deactivated",
        branch_id=branch_id,
        configuration_id=active.id,
        employee_id=employee_key,
        day=day_key,
    )
    return active


def employee_schedule_history(db: Session, branch_id: int, employee_id) -> list[dict]:
    employee_key = str(employee_id)
    out = []
    for config in list_configurations(db, branch_id):
        out.append(
            {
                "id": config.id,
                "branch_id": config.branch_id,
                "start_date": config.start_date,
                "end_date": config.end_date,
                "is_active": bool(config.is_active),
                "notes": config.notes,
                "created_at": config.created_at,
                "shifts": dict((config.shifts or {}).get(employee_key) or {}),
            }
        )
    return out


def _active_overrides_for_day(
    db: Session, branch_id: int, employee_id: int, day: date
) -> list[DateShiftOverride]:
    return list(
        db.execute(
            select(DateShiftOverride).where(
                DateShiftOverride.branch_id == branch_id,
                DateShiftOverride.employee_id == employee_id,
                DateShiftOverride.day == day,
                DateShiftOverride.is_active.is_(True),
            )
        )
        .scalars()
        .all()
    )


def set_date_override(
    db: Session,
    branch_id: int,
    employee_id: int,
    day: date,
    start: str,
    end: str,
    notes: str | None = None,
    *,
    actor_email: str | None = None,
) -> DateShiftOverride:
    get_branch_or_raise(db, branch_id)
    start, end = validate_shift_pair(start, end, label=day.isoformat())
    now = utc_now_naive()
    try:
        for existing in _active_overrides_for_day(db, branch_id, employee_id, day):
            existing.is_active = False
            existing.deactivated_at = now
        row = DateShiftOverride(
            branch_id=branch_id,
            employee_id=employee_id,
            day=day,
            start=start,
            end=end,
            notes=(notes or "").strip()[:500] or None,
            is_active=True,
            created_at=now,
        )
        db.add(row)
        db.flush()
        log_schedule_audit_event(
            db=db,
            branch_id=branch_id,
            action="override.set",
            actor_email=actor_email,
            employee_id=employee_id,
            related_id=f"override:{row.id}",
            payload={"day": day.isoformat(), "start": start, "end": end},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(row)
    return row


def remove_date_override(
    db: Session,
    branch_id: int,
    employee_id: int,
    day: date,
    *,
    actor_email: str | None = None,
) -> int:
    rows = _active_overrides_for_day(db, branch_id, employee_id, day)
    if not rows:
        raise RecordNotFoundError(f"No one-off shift on {day.isoformat()}")
    now = utc_now_naive()
    try:
        for row in rows:
            row.is_active = False
            row.deactivated_at = now
        log_schedule_audit_event(
            db=db,
            branch_id=branch_id,
            action="override.remove",
            actor_email=actor_email,
            employee_id=employee_id,
            payload={"day": day.isoformat()},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return len(rows)


def list_date_overrides(
    db: Session,
    branch_id: int,
    start: date | None = None,
    end: date | None = None,
    employee_id: int | None = None,
) -> list[DateShiftOverride]:
    stmt = select(DateShiftOverride).where(
        DateShiftOverride.branch_id == branch_id,
        DateShiftOverride.is_active.is_(True),
    )
    if start is not None:
        stmt = stmt.where(DateShiftOverride.day >= start)
    if end is not None:
        stmt = stmt.where(DateShiftOverride.day <= end)
    if employee_id is not None:
        stmt = stmt.where(DateShiftOverride.employee_id == employee_id)
    stmt = stmt.order_by(DateShiftOverride.day.asc(), DateShiftOverride.id.asc())
    return list(db.execute(stmt).scalars().all())


def override_map(rows) -> dict[int, dict[str, dict]]:
    """``{employee_id: {"YYYY-MM-DD": {start, end, override_id}}}``, latest row per date wins."""
    out: dict[int, dict[str, dict]] = {}
    for row in rows:
        out.setdefault(int(row.employee_id), {})[row.day.isoformat()] = {
            "start": row.start,
            "end": row.end,
            "override_id": row.id,
        }
    return out
