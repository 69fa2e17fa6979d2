from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from . import schedule_store
from .audit import log_schedule_audit_event
from .availability_data import AvailabilitySnapshot, load_availability_snapshot
from .models import Branch, LeaveRequest, StaffMember, StylistLending
from .resolver import ConfigurationVersion, RosterMember, build_roster, build_week_view
from .timeutils import (
    DAY_KEYS,
    day_end,
    day_start,
    hhmm_to_minutes,
    is_valid_hhmm,
    utc_now_naive,
)

logger = structlog.get_logger("salonshift.services")

STAFF_ROLES = {"stylist", "receptionist", "branchManager", "inventoryController"}

LEAVE_TYPES = {
    "vacation": "Vacation Leave",
    "sick": "Sick Leave",
    "personal": "Personal Leave",
    "emergency": "Emergency Leave",
    "maternity": "Maternity Leave",
    "paternity": "Paternity Leave",
    "bereavement": "Bereavement Leave",
    "undetermined": "Undetermined Leave",
}
ALLOWED_LEAVE_TRANSITIONS = {
    "pending": {"approved", "rejected", "cancelled"},
    "approved": {"cancelled"},
    "rejected": set(),
    "cancelled": set(),
}
ALLOWED_LENDING_TRANSITIONS = {
    "pending": {"approved", "rejected", "cancelled"},
    "approved": {"active", "completed", "cancelled"},
    "active": {"completed", "cancelled"},
    "rejected": set(),
    "completed": set(),
    "cancelled": set(),
}


def _clean_email(value: str | None) -> str | None:
    return (value or "").strip().lower()[:160] or None


def normalize_operating_hours(hours: dict | None) -> dict | None:
    if hours is None:
        return None
    out = {}
    for raw_key, entry in hours.items():
        key = (raw_key or "").strip().lower()
        if key not in DAY_KEYS:
            raise ValueError(f"Invalid day of week '{raw_key}'")
        entry = entry or {}
        is_open = bool(entry.get("isOpen"))
        opens = entry.get("open") or None
        closes = entry.get("close") or None
        if is_open:
            if not is_valid_hhmm(opens) or not is_valid_hhmm(closes):
                raise ValueError(f"Opening hours for {key} must use HH:mm format")
            if hhmm_to_minutes(closes) <= hhmm_to_minutes(opens):
                raise ValueError(f"Closing time must be after opening time for {key}")
        out[key] = {"isOpen": is_open, "open": opens, "close": closes}
    return {key: out[key] for key in DAY_KEYS if key in out}


def create_branch(db: Session, name: str, operating_hours: dict | None = None) -> Branch:
    normalized = " ".join((name or "").split())
    if not normalized:
        raise ValueError("Branch name is required")
    existing = db.execute(select(Branch).where(Branch.name == normalized)).scalar_one_or_none()
    if existing is not None:
        raise ValueError("Branch already exists")
    row = Branch(name=normalized, operating_hours=normalize_operating_hours(operating_hours))
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_branches(db: Session) -> list[Branch]:
    return db.execute(select(Branch).order_by(Branch.name.asc(), Branch.id.asc())).scalars().all()


def get_branch(db: Session, branch_id: int) -> Branch | None:
    return db.get(Branch, branch_id)


def set_operating_hours(db: Session, branch_id: int, operating_hours: dict | None) -> Branch | None:
    row = get_branch(db, branch_id)
    if row is None:
        return None
    row.operating_hours = normalize_operating_hours(operating_hours)
    db.commit()
    db.refresh(row)
    return row


def create_staff_member(
    db: Session,
    branch_id: int,
    *,
    first_name: str,
    last_name: str = "",
    role: str = "stylist",
    legacy_shifts: dict | None = None,
) -> StaffMember | None:
    if get_branch(db, branch_id) is None:
        return None
    first = (first_name or "").strip()
    if not first:
        raise ValueError("First name is required")
    if role not in STAFF_ROLES:
        raise ValueError("Invalid staff role")
    row = StaffMember(
        branch_id=branch_id,
        first_name=first[:80],
        last_name=(last_name or "").strip()[:80],
        role=role,
        is_active=True,
        legacy_shifts=legacy_shifts or None,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_staff(db: Session, branch_id: int, include_inactive: bool = False) -> list[StaffMember]:
    stmt = select(StaffMember).where(StaffMember.branch_id == branch_id)
    if not include_inactive:
        stmt = stmt.where(StaffMember.is_active.is_(True))
    stmt = stmt.order_by(StaffMember.first_name.asc(), StaffMember.last_name.asc(), StaffMember.id.asc())
    return db.execute(stmt).scalars().all()


def get_staff_member(db: Session, employee_id: int) -> StaffMember | None:
    return db.get(StaffMember, employee_id)


def load_roster(db: Session, branch_id: int, snapshot: AvailabilitySnapshot) -> list[RosterMember]:
    home = list_staff(db, branch_id)
    borrowed_ids = [sid for sid in snapshot.inbound if sid not in {row.id for row in home}]
    borrowed = []
    if borrowed_ids:
        borrowed = (
            db.execute(
                select(StaffMember)
                .where(StaffMember.id.in_(borrowed_ids), StaffMember.is_active.is_(True))
                .order_by(StaffMember.first_name.asc(), StaffMember.id.asc())
            )
            .scalars()
            .all()
        )
    return build_roster(home, borrowed, snapshot.inbound)


def load_configuration_versions(db: Session, branch_id: int) -> list[ConfigurationVersion]:
    return [ConfigurationVersion.from_row(row) for row in schedule_store.list_configurations(db, branch_id)]


def get_week_view(db: Session, branch_id: int, week_start: date) -> dict | None:
    if get_branch(db, branch_id) is None:
        return None
    window = (week_start, week_start + timedelta(days=6))
    snapshot = load_availability_snapshot(db, branch_id, window)
    roster = load_roster(db, branch_id, snapshot)
    configs = load_configuration_versions(db, branch_id)
    overrides = schedule_store.override_map(
        schedule_store.list_date_overrides(db, branch_id, window[0], window[1])
    )
    if snapshot.errors:
        logger.warning("week_view_degraded", branch_id=branch_id, errors=snapshot.errors)
    return build_week_view(roster, week_start, configs, overrides, snapshot)


def _day_count(start: datetime, end: datetime) -> int:
    return (end.date() - start.date()).days + 1


def create_leave_request(
    db: Session,
    branch_id: int,
    *,
    employee_id: int,
    start_day: date,
    end_day: date,
    leave_type: str = "vacation",
    reason: str | None = None,
    requested_by: str | None = None,
    auto_approve: bool = False,
) -> LeaveRequest | None:
    employee = get_staff_member(db, employee_id)
    if employee is None or get_branch(db, branch_id) is None:
        return None
    if end_day < start_day:
        raise ValueError("end_day must be >= start_day")
    normalized_type = (leave_type or "").strip().lower()
    if normalized_type not in LEAVE_TYPES:
        raise ValueError("Invalid leave type")

    start = day_start(start_day)
    end = day_end(end_day)
    conflict = db.execute(
        select(LeaveRequest.id).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(["pending", "approved"]),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
    ).first()
    if conflict is not None:
        raise ValueError("Overlapping leave already exists")

    now = utc_now_naive()
    status = "approved" if auto_approve else "pending"
    row = LeaveRequest(
        employee_id=employee_id,
        branch_id=branch_id,
        start_date=start,
        end_date=end,
        status=status,
        type=normalized_type,
        reason=(reason or "").strip()[:500] or None,
        days=_day_count(start, end),
        requested_by=_clean_email(requested_by),
        decided_by=_clean_email(requested_by) if auto_approve else None,
        decided_at=now if auto_approve else None,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    log_schedule_audit_event(
        db=db,
        branch_id=branch_id,
        action="leave.approve" if auto_approve else "leave.create",
        actor_email=requested_by,
        employee_id=employee_id,
        related_id=f"leave:{row.id}",
        payload={
            "start_day": start_day.isoformat(),
            "end_day": end_day.isoformat(),
            "type": normalized_type,
        },
    )
    db.commit()
    db.refresh(row)
    logger.info("leave_request_created", leave_id=row.id, employee_id=employee_id, status=status)
    return row


def list_leave_requests(
    db: Session,
    branch_id: int,
    *,
    status_filter: str | None = None,
    employee_id: int | None = None,
    start_day: date | None = None,
    end_day: date | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).where(LeaveRequest.branch_id == branch_id)
    if status_filter:
        stmt = stmt.where(LeaveRequest.status == status_filter.strip().lower())
    if employee_id:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if start_day:
        stmt = stmt.where(LeaveRequest.end_date >= day_start(start_day))
    if end_day:
        stmt = stmt.where(LeaveRequest.start_date <= day_end(end_day))
    stmt = stmt.order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
    return db.execute(stmt).scalars().all()


def decide_leave_request(
    db: Session,
    leave_id: int,
    *,
    decision: str,
    decision_note: str | None = None,
    decided_by: str | None = None,
) -> LeaveRequest | None:
    row = db.get(LeaveRequest, leave_id)
    if row is None:
        return None
    normalized = (decision or "").strip().lower()
    if normalized not in ALLOWED_LEAVE_TRANSITIONS.get(row.status, set()):
        raise ValueError(f"Cannot change leave from {row.status} to {normalized or 'nothing'}")

    now = utc_now_naive()
    row.status = normalized
    row.decided_by = _clean_email(decided_by)
    row.decision_note = (decision_note or "").strip()[:500] or None
    row.decided_at = now
    row.updated_at = now
    log_schedule_audit_event(
        db=db,
        branch_id=row.branch_id,
        action="leave.decide",
        actor_email=decided_by,
        employee_id=row.employee_id,
        related_id=f"leave:{row.id}",
        payload={"decision": normalized},
    )
    db.commit()
    db.refresh(row)
    return row


def request_lending(
    db: Session,
    *,
    stylist_id: int,
    from_branch_id: int,
    to_branch_id: int,
    start_day: date,
    end_day: date,
    reason: str | None = None,
    requested_by: str | None = None,
) -> StylistLending | None:
    stylist = get_staff_member(db, stylist_id)
    if stylist is None or get_branch(db, from_branch_id) is None or get_branch(db, to_branch_id) is None:
        return None
    if from_branch_id == to_branch_id:
        raise ValueError("A stylist cannot be lent to their own branch")
    if stylist.branch_id != from_branch_id:
        raise ValueError("Stylist does not belong to the lending branch")
    if end_day < start_day:
        raise ValueError("end_day must be >= start_day")

    start = day_start(start_day)
    end = day_end(end_day)
    conflict = db.execute(
        select(StylistLending.id).where(
            StylistLending.stylist_id == stylist_id,
            StylistLending.status.in_(["pending", "approved", "active"]),
            StylistLending.start_date <= end,
            StylistLending.end_date >= start,
        )
    ).first()
    if conflict is not None:
        raise ValueError("Overlapping lending already exists")

    now = utc_now_naive()
    row = StylistLending(
        stylist_id=stylist_id,
        from_branch_id=from_branch_id,
        to_branch_id=to_branch_id,
        start_date=start,
        end_date=end,
        status="pending",
        reason=(reason or "").strip()[:500] or None,
        requested_by=_clean_email(requested_by),
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    log_schedule_audit_event(
        db=db,
        branch_id=to_branch_id,
        action="lending.request",
        actor_email=requested_by,
        employee_id=stylist_id,
        related_id=f"lending:{row.id}",
        payload={
            "from_branch_id": from_branch_id,
            "start_day": start_day.isoformat(),
            "end_day": end_day.isoformat(),
        },
    )
    db.commit()
    db.refresh(row)
    return row


def list_lending(
    db: Session, branch_id: int, *, status_filter: str | None = None
) -> list[StylistLending]:
    stmt = select(StylistLending).where(
        or_(StylistLending.from_branch_id == branch_id, StylistLending.to_branch_id == branch_id)
    )
    if status_filter:
        stmt = stmt.where(StylistLending.status == status_filter.strip().lower())
    stmt = stmt.order_by(StylistLending.start_date.desc(), StylistLending.id.desc())
    return db.execute(stmt).scalars().all()


def decide_lending(
    db: Session,
    lending_id: int,
    *,
    decision: str,
    decided_by: str | None = None,
) -> StylistLending | None:
    row = db.get(StylistLending, lending_id)
    if row is None:
        return None
    normalized = (decision or "").strip().lower()
    if normalized not in ALLOWED_LENDING_TRANSITIONS.get(row.status, set()):
        raise ValueError(f"Cannot change lending from {row.status} to {normalized or 'nothing'}")

    now = utc_now_naive()
    row.status = normalized
    row.decided_by = _clean_email(decided_by)
    row.decided_at = now
    row.updated_at = now
    log_schedule_audit_event(
        db=db,
        branch_id=row.from_branch_id,
        action="lending.decide",
        actor_email=decided_by,
        employee_id=row.stylist_id,
        related_id=f"lending:{row.id}",
        payload={"decision": normalized, "to_branch_id": row.to_branch_id},
    )
    db.commit()
    db.refresh(row)
    return row
