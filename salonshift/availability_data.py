"""Leave and stylist-lending windows for one branch.

Everything here is read-only. Rows are turned into plain documents, the
documents are normalized (see :func:`salonshift.timeutils.normalize_timestamp`)
and grouped per employee. A record that cannot be normalized is dropped with a
warning; it never aborts the fetch.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable

import structlog
from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .models import LeaveRequest, StylistLending
from .timeutils import day_end, day_start, normalize_timestamp

logger = structlog.get_logger("salonshift.availability_data")

SCHEDULING_LEAVE_STATUSES = ("pending", "approved")
LENDING_INTERVAL_STATUSES = ("approved", "active")


@dataclass(frozen=True)
class LeaveInterval:
    start: datetime
    end: datetime
    status: str
    type: str | None = None
    reason: str | None = None
    leave_id: int | None = None

    def covers(self, day: date) -> bool:
        return self.start <= day_start(day) <= self.end


@dataclass(frozen=True)
class LendingInterval:
    stylist_id: int
    from_branch_id: int
    to_branch_id: int
    start: datetime
    end: datetime
    from_branch_name: str = ""
    to_branch_name: str = ""
    lending_id: int | None = None

    def covers(self, day: date) -> bool:
        return self.start <= day_start(day) <= self.end


@dataclass
class AvailabilitySnapshot:
    branch_id: int
    leaves: dict[int, list[LeaveInterval]] = field(default_factory=dict)
    outbound: dict[int, list[LendingInterval]] = field(default_factory=dict)
    inbound: dict[int, list[LendingInterval]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def leave_on(self, employee_id: int, day: date) -> LeaveInterval | None:
        for interval in self.leaves.get(employee_id, ()):
            if interval.covers(day):
                return interval
        return None

    def is_on_leave(self, employee_id: int, day: date) -> bool:
        return self.leave_on(employee_id, day) is not None

    def outbound_on(self, employee_id: int, day: date) -> LendingInterval | None:
        for interval in self.outbound.get(employee_id, ()):
            if interval.covers(day):
                return interval
        return None

    def inbound_windows(self, employee_id: int) -> list[LendingInterval]:
        return list(self.inbound.get(employee_id, ()))


def _normalize_window(start, end) -> tuple[datetime | None, datetime | None]:
    start_dt = normalize_timestamp(start)
    end_dt = normalize_timestamp(end)
    if start_dt is None or end_dt is None:
        return None, None
    return day_start(start_dt), day_end(end_dt)


def leave_document(row: LeaveRequest) -> dict:
    return {
        "id": row.id,
        "employeeId": row.employee_id,
        "branchId": row.branch_id,
        "startDate": row.start_date,
        "endDate": row.end_date,
        "status": row.status,
        "type": row.type,
        "reason": row.reason,
    }


def lending_document(row: StylistLending) -> dict:
    return {
        "id": row.id,
        "stylistId": row.stylist_id,
        "fromBranchId": row.from_branch_id,
        "toBranchId": row.to_branch_id,
        "fromBranchName": row.from_branch.name if row.from_branch else None,
        "toBranchName": row.to_branch.name if row.to_branch else None,
        "startDate": row.start_date,
        "endDate": row.end_date,
        "status": row.status,
    }


def build_leave_map(documents: Iterable[dict]) -> dict[int, list[LeaveInterval]]:
    """Group pending/approved leave documents per employee, oldest first."""
    leave_map: dict[int, list[LeaveInterval]] = {}
    for doc in documents:
        status = str(doc.get("status") or "").strip().lower()
        if status not in SCHEDULING_LEAVE_STATUSES:
            continue
        start, end = _normalize_window(doc.get("startDate"), doc.get("endDate"))
        if start is None or end is None:
            logger.warning(
                "leave_record_dropped",
                leave_id=doc.get("id"),
                employee_id=doc.get("employeeId"),
                reason="unparseable_timestamp",
            )
            continue
        employee_id = int(doc["employeeId"])
        leave_map.setdefault(employee_id, []).append(
            LeaveInterval(
                start=start,
                end=end,
                status=status,
                type=doc.get("type"),
                reason=doc.get("reason"),
                leave_id=doc.get("id"),
            )
        )
    for intervals in leave_map.values():
        intervals.sort(key=lambda interval: interval.start)
    return leave_map


def build_lending_maps(
    documents: Iterable[dict], branch_id: int
) -> tuple[dict[int, list[LendingInterval]], dict[int, list[LendingInterval]]]:
    """Split approved/active lending documents into (outbound, inbound) maps."""
    outbound: dict[int, list[LendingInterval]] = {}
    inbound: dict[int, list[LendingInterval]] = {}
    seen: set = set()
    for doc in documents:
        doc_id = doc.get("id")
        if doc_id is not None:
            if doc_id in seen:
                continue
            seen.add(doc_id)
        status = str(doc.get("status") or "").strip().lower()
        if status not in LENDING_INTERVAL_STATUSES:
            continue
        if doc.get("stylistId") is None:
            continue
        start, end = _normalize_window(doc.get("startDate"), doc.get("endDate"))
        if start is None or end is None:
            logger.warning(
                "lending_record_dropped",
                lending_id=doc_id,
                stylist_id=doc.get("stylistId"),
                reason="unparseable_timestamp",
            )
            continue
        interval = LendingInterval(
            stylist_id=int(doc["stylistId"]),
            from_branch_id=int(doc["fromBranchId"]),
            to_branch_id=int(doc["toBranchId"]),
            start=start,
            end=end,
            from_branch_name=doc.get("fromBranchName") or settings.LENDING_UNKNOWN_BRANCH_NAME,
            to_branch_name=doc.get("toBranchName") or settings.LENDING_UNKNOWN_BRANCH_NAME,
            lending_id=doc_id,
        )
        if interval.from_branch_id == branch_id:
            outbound.setdefault(interval.stylist_id, []).append(interval)
        if interval.to_branch_id == branch_id:
            inbound.setdefault(interval.stylist_id, []).append(interval)
    for mapping in (outbound, inbound):
        for intervals in mapping.values():
            intervals.sort(key=lambda interval: interval.start)
    return outbound, inbound


def _fetch_with_fallback(
    db: Session,
    build_stmt: Callable[[bool], Select],
    sort_key: Callable,
    *,
    label: str,
) -> tuple[list, bool]:
    try:
        return list(db.execute(build_stmt(True)).scalars().all()), True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("ordered_query_failed", query=label, error=str(exc))

    try:
        rows = list(db.execute(build_stmt(False)).scalars().all())
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("fallback_query_failed", query=label, error=str(exc))
        return [], False
    rows.sort(key=sort_key, reverse=True)
    return rows, True


def _row_start_sort_key(row) -> datetime:
    return normalize_timestamp(row.start_date) or datetime.min


def fetch_leave_map(
    db: Session,
    branch_id: int,
    window: tuple[date, date] | None = None,
) -> tuple[dict[int, list[LeaveInterval]], bool]:
    def build_stmt(ordered: bool) -> Select:
        stmt = select(LeaveRequest).where(
            LeaveRequest.branch_id == branch_id,
            LeaveRequest.status.in_(SCHEDULING_LEAVE_STATUSES),
        )
        if window is not None:
            stmt = stmt.where(
                LeaveRequest.end_date >= day_start(window[0]),
                LeaveRequest.start_date <= day_end(window[1]),
            )
        if ordered:
            stmt = stmt.order_by(LeaveRequest.start_date.desc())
        return stmt

    rows, ok = _fetch_with_fallback(db, build_stmt, _row_start_sort_key, label="leave_requests")
    return build_leave_map(leave_document(row) for row in rows), ok


def fetch_lending_maps(
    db: Session,
    branch_id: int,
    window: tuple[date, date] | None = None,
) -> tuple[dict[int, list[LendingInterval]], dict[int, list[LendingInterval]], bool]:
    def statement_for(column) -> Callable[[bool], Select]:
        def build_stmt(ordered: bool) -> Select:
            stmt = select(StylistLending).where(
                column == branch_id,
                StylistLending.status.in_(LENDING_INTERVAL_STATUSES),
            )
            if window is not None:
                stmt = stmt.where(
                    StylistLending.end_date >= day_start(window[0]),
                    StylistLending.start_date <= day_end(window[1]),
                )
            if ordered:
                stmt = stmt.order_by(StylistLending.start_date.desc())
            return stmt

        return build_stmt

    from_rows, from_ok = _fetch_with_fallback(
        db,
        statement_for(StylistLending.from_branch_id),
        _row_start_sort_key,
        label="stylist_lending_outbound",
    )
    to_rows, to_ok = _fetch_with_fallback(
        db,
        statement_for(StylistLending.to_branch_id),
        _row_start_sort_key,
        label="stylist_lending_inbound",
    )
    documents = [lending_document(row) for row in [*from_rows, *to_rows]]
    outbound, inbound = build_lending_maps(documents, branch_id)
    return outbound, inbound, from_ok and to_ok


def load_availability_snapshot(
    db: Session,
    branch_id: int,
    window: tuple[date, date] | None = None,
) -> AvailabilitySnapshot:
    leaves, leaves_ok = fetch_leave_map(db, branch_id, window)
    outbound, inbound, lending_ok = fetch_lending_maps(db, branch_id, window)
    snapshot = AvailabilitySnapshot(
        branch_id=branch_id,
        leaves=leaves,
        outbound=outbound,
        inbound=inbound,
    )
    if not leaves_ok:
        snapshot.errors.append("leave_requests_unavailable")
    if not lending_ok:
        snapshot.errors.append("stylist_lending_unavailable")
    return snapshot
