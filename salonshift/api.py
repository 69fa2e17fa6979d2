from datetime import date

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schedule_store, services
from .availability_data import load_availability_snapshot
from .config import settings
from .db import get_db
from .editor import BulkShiftEditor
from .errors import (
    AvailabilityConflict,
    AvailabilityUnavailableError,
    EditorStateError,
    RecordNotFoundError,
)
from .guard import check_shift, ensure_shift_allowed
from .models import (
    Branch,
    DateShiftOverride,
    LeaveRequest,
    ScheduleConfiguration,
    StaffMember,
    StylistLending,
)
from .receipts import check_receipts, export_receipt_check_csv
from .schemas import (
    BranchCreate,
    BranchHoursUpdate,
    BranchOut,
    CommitIn,
    ConfigurationCreate,
    ConfigurationOut,
    LeaveCreate,
    LeaveDecision,
    LeaveOut,
    LendingCreate,
    LendingDecision,
    LendingOut,
    OverrideOut,
    OverrideSet,
    ReceiptCheckIn,
    ReceiptCheckOut,
    ReceiptMatchOut,
    ScheduleHistoryOut,
    ShiftCheckIn,
    ShiftCheckOut,
    StaffCreate,
    StaffOut,
    ViolationOut,
)

logger = structlog.get_logger("salonshift.api")

router = APIRouter(prefix="/api")

STORE_UNAVAILABLE = "Schedule store is unavailable, please try again"


def _to_branch_out(row: Branch) -> BranchOut:
    return BranchOut(
        id=row.id,
        name=row.name,
        operating_hours=row.operating_hours,
        created_at=row.created_at,
    )


def _to_staff_out(row: StaffMember) -> StaffOut:
    return StaffOut(
        id=row.id,
        branch_id=row.branch_id,
        first_name=row.first_name,
        last_name=row.last_name,
        full_name=row.full_name,
        role=row.role,
        is_active=row.is_active,
    )


def _to_configuration_out(row: ScheduleConfiguration) -> ConfigurationOut:
    return ConfigurationOut(
        id=row.id,
        branch_id=row.branch_id,
        start_date=row.start_date,
        end_date=row.end_date,
        is_active=row.is_active,
        notes=row.notes,
        shifts=row.shifts or {},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_override_out(row: DateShiftOverride) -> OverrideOut:
    return OverrideOut(
        id=row.id,
        branch_id=row.branch_id,
        employee_id=row.employee_id,
        day=row.day,
        start=row.start,
        end=row.end,
        notes=row.notes,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _to_leave_out(row: LeaveRequest) -> LeaveOut:
    return LeaveOut(
        id=row.id,
        employee_id=row.employee_id,
        employee_name=row.employee.full_name if row.employee else f"#{row.employee_id}",
        branch_id=row.branch_id,
        start_date=row.start_date,
        end_date=row.end_date,
        days=row.days,
        status=row.status,
        type=row.type,
        reason=row.reason,
        requested_by=row.requested_by,
        decided_by=row.decided_by,
        decision_note=row.decision_note,
        decided_at=row.decided_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_lending_out(row: StylistLending) -> LendingOut:
    return LendingOut(
        id=row.id,
        stylist_id=row.stylist_id,
        stylist_name=row.stylist.full_name if row.stylist else f"#{row.stylist_id}",
        from_branch_id=row.from_branch_id,
        from_branch_name=row.from_branch.name if row.from_branch else "",
        to_branch_id=row.to_branch_id,
        to_branch_name=row.to_branch.name if row.to_branch else "",
        start_date=row.start_date,
        end_date=row.end_date,
        status=row.status,
        reason=row.reason,
        requested_by=row.requested_by,
        decided_by=row.decided_by,
        decided_at=row.decided_at,
        created_at=row.created_at,
    )


def _conflict(exc: AvailabilityConflict) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": str(exc),
            "violations": [v.to_dict() for v in exc.violations],
        },
    )


def _store_unavailable(exc: SQLAlchemyError, operation: str) -> HTTPException:
    logger.error("store_write_failed", operation=operation, error=str(exc))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=STORE_UNAVAILABLE)


def _require_branch(db: Session, branch_id: int) -> Branch:
    branch = services.get_branch(db, branch_id)
    if branch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found")
    return branch


@router.post("/branches", response_model=BranchOut)
def add_branch(payload: BranchCreate, db: Session = Depends(get_db)):
    hours = (
        {key: value.model_dump() for key, value in payload.operating_hours.items()}
        if payload.operating_hours is not None
        else None
    )
    try:
        row = services.create_branch(db, payload.name, hours)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return _to_branch_out(row)


@router.get("/branches", response_model=list[BranchOut])
def list_branches(db: Session = Depends(get_db)):
    return [_to_branch_out(row) for row in services.list_branches(db)]


@router.get("/branches/{branch_id}", response_model=BranchOut)
def get_branch(branch_id: int, db: Session = Depends(get_db)):
    return _to_branch_out(_require_branch(db, branch_id))


@router.put("/branches/{branch_id}/hours", response_model=BranchOut)
def put_branch_hours(branch_id: int, payload: BranchHoursUpdate, db: Session = Depends(get_db)):
    hours = (
        {key: value.model_dump() for key, value in payload.operating_hours.items()}
        if payload.operating_hours is not None
        else None
    )
    try:
        row = services.set_operating_hours(db, branch_id, hours)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found")
    return _to_branch_out(row)


@router.post("/branches/{branch_id}/staff", response_model=StaffOut)
def add_staff(branch_id: int, payload: StaffCreate, db: Session = Depends(get_db)):
    try:
        row = services.create_staff_member(
            db,
            branch_id,
            first_name=payload.first_name,
            last_name=payload.last_name,
            role=payload.role,
            legacy_shifts=payload.legacy_shifts,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found")
    return _to_staff_out(row)


@router.get("/branches/{branch_id}/staff", response_model=list[StaffOut])
def list_staff(
    branch_id: int,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    return [_to_staff_out(row) for row in services.list_staff(db, branch_id, include_inactive)]


@router.get("/branches/{branch_id}/schedule/configurations", response_model=list[ConfigurationOut])
def list_configurations(branch_id: int, db: Session = Depends(get_db)):
    _require_branch(db, branch_id)
    return [_to_configuration_out(row) for row in schedule_store.list_configurations(db, branch_id)]


@router.post("/branches/{branch_id}/schedule/configurations", response_model=ConfigurationOut)
def add_configuration(
    branch_id: int,
    payload: ConfigurationCreate,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    shifts = {
        employee_id: {day_key: shift.model_dump() for day_key, shift in day_map.items()}
        for employee_id, day_map in payload.shifts.items()
    }
    try:
        row = schedule_store.create_configuration(
            db,
            branch_id,
            shifts,
            payload.start_date,
            payload.notes if payload.notes is not None else settings.SCHEDULE_DEFAULT_NOTES,
            actor_email=x_actor_email,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc, "configuration.create")
    return _to_configuration_out(row)


@router.delete(
    "/branches/{branch_id}/schedule/entries/{employee_id}/{day_of_week}",
    response_model=ConfigurationOut,
)
def remove_configuration_entry(
    branch_id: int,
    employee_id: int,
    day_of_week: str,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    try:
        row = schedule_store.deactivate_entry(
            db, employee_id, day_of_week, branch_id, actor_email=x_actor_email
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc, "configuration.deactivate_entry")
    return _to_configuration_out(row)


@router.get("/branches/{branch_id}/schedule/week")
def get_week(
    branch_id: int,
    start: date = Query(...),
    db: Session = Depends(get_db),
):
    view = services.get_week_view(db, branch_id, start)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found")
    return view


@router.post("/branches/{branch_id}/schedule/check", response_model=ShiftCheckOut)
def check_single_shift(branch_id: int, payload: ShiftCheckIn, db: Session = Depends(get_db)):
    branch = _require_branch(db, branch_id)
    snapshot = load_availability_snapshot(db, branch_id)
    roster = {member.employee_id: member for member in services.load_roster(db, branch_id, snapshot)}
    member = roster.get(payload.employee_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
    result = check_shift(
        member, payload.day, payload.start, payload.end, snapshot, branch.operating_hours
    )
    return ShiftCheckOut(
        allowed=result.allowed,
        violations=[ViolationOut(**v.to_dict()) for v in result.violations],
        availability_errors=list(snapshot.errors),
    )


@router.post("/branches/{branch_id}/schedule/commit", response_model=ConfigurationOut)
def commit_schedule(
    branch_id: int,
    payload: CommitIn,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    branch = _require_branch(db, branch_id)
    snapshot = load_availability_snapshot(db, branch_id)
    editor = BulkShiftEditor(
        db,
        branch_id,
        services.load_roster(db, branch_id, snapshot),
        snapshot,
        branch.operating_hours,
        refresh_snapshot=lambda start, end: load_availability_snapshot(db, branch_id, (start, end)),
        actor_email=x_actor_email,
    )
    try:
        editor.begin(
            {
                employee_id: {day_key: shift.model_dump() for day_key, shift in day_map.items()}
                for employee_id, day_map in payload.shifts.items()
            }
        )
        row = editor.commit(
            payload.start_date,
            payload.notes if payload.notes is not None else settings.SCHEDULE_DEFAULT_NOTES,
        )
    except AvailabilityConflict as exc:
        raise _conflict(exc)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except EditorStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except AvailabilityUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc, "schedule.commit")
    return _to_configuration_out(row)


@router.get("/branches/{branch_id}/schedule/overrides", response_model=list[OverrideOut])
def list_overrides(
    branch_id: int,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    employee_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    rows = schedule_store.list_date_overrides(db, branch_id, start, end, employee_id)
    return [_to_override_out(row) for row in rows]


@router.put(
    "/branches/{branch_id}/schedule/overrides/{employee_id}/{day}",
    response_model=OverrideOut,
)
def put_override(
    branch_id: int,
    employee_id: int,
    day: date,
    payload: OverrideSet,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    branch = _require_branch(db, branch_id)
    roster = {
        m.employee_id: m
        for m in services.load_roster(db, branch_id, load_availability_snapshot(db, branch_id))
    }
    snapshot = load_availability_snapshot(db, branch_id, (day, day))
    member = roster.get(employee_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
    try:
        ensure_shift_allowed(member, day, payload.start, payload.end, snapshot, branch.operating_hours)
        row = schedule_store.set_date_override(
            db,
            branch_id,
            employee_id,
            day,
            payload.start,
            payload.end,
            payload.notes,
            actor_email=x_actor_email,
        )
    except AvailabilityConflict as exc:
        raise _conflict(exc)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc, "override.set")
    return _to_override_out(row)


@router.delete(
    "/branches/{branch_id}/schedule/overrides/{employee_id}/{day}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_override(
    branch_id: int,
    employee_id: int,
    day: date,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    try:
        schedule_store.remove_date_override(
            db, branch_id, employee_id, day, actor_email=x_actor_email
        )
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except SQLAlchemyError as exc:
        raise _store_unavailable(exc, "override.remove")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/branches/{branch_id}/staff/{employee_id}/schedule-history",
    response_model=list[ScheduleHistoryOut],
)
def staff_schedule_history(branch_id: int, employee_id: int, db: Session = Depends(get_db)):
    _require_branch(db, branch_id)
    if services.get_staff_member(db, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
    return [
        ScheduleHistoryOut(**entry)
        for entry in schedule_store.employee_schedule_history(db, branch_id, employee_id)
    ]


@router.post("/branches/{branch_id}/leave", response_model=LeaveOut)
def add_leave(
    branch_id: int,
    payload: LeaveCreate,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    try:
        row = services.create_leave_request(
            db,
            branch_id,
            employee_id=payload.employee_id,
            start_day=payload.start_day,
            end_day=payload.end_day,
            leave_type=payload.type,
            reason=payload.reason,
            requested_by=x_actor_email,
            auto_approve=payload.auto_approve,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch or employee not found")
    return _to_leave_out(row)


@router.get("/branches/{branch_id}/leave", response_model=list[LeaveOut])
def list_leave(
    branch_id: int,
    status_filter: str | None = Query(default=None, alias="status"),
    employee_id: int | None = Query(default=None),
    start_day: date | None = Query(default=None),
    end_day: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    rows = services.list_leave_requests(
        db,
        branch_id,
        status_filter=status_filter,
        employee_id=employee_id,
        start_day=start_day,
        end_day=end_day,
    )
    return [_to_leave_out(row) for row in rows]


@router.post("/leave/{leave_id}/decision", response_model=LeaveOut)
def decide_leave(
    leave_id: int,
    payload: LeaveDecision,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    try:
        row = services.decide_leave_request(
            db,
            leave_id,
            decision=payload.decision,
            decision_note=payload.decision_note,
            decided_by=x_actor_email,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave request not found")
    return _to_leave_out(row)


@router.post("/branches/{branch_id}/lending", response_model=LendingOut)
def add_lending(
    branch_id: int,
    payload: LendingCreate,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    try:
        row = services.request_lending(
            db,
            stylist_id=payload.stylist_id,
            from_branch_id=payload.from_branch_id,
            to_branch_id=branch_id,
            start_day=payload.start_day,
            end_day=payload.end_day,
            reason=payload.reason,
            requested_by=x_actor_email,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch or stylist not found")
    return _to_lending_out(row)


@router.get("/branches/{branch_id}/lending", response_model=list[LendingOut])
def list_lending(
    branch_id: int,
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
):
    _require_branch(db, branch_id)
    return [
        _to_lending_out(row)
        for row in services.list_lending(db, branch_id, status_filter=status_filter)
    ]


@router.post("/lending/{lending_id}/decision", response_model=LendingOut)
def decide_lending(
    lending_id: int,
    payload: LendingDecision,
    x_actor_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    try:
        row = services.decide_lending(
            db, lending_id, decision=payload.decision, decided_by=x_actor_email
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lending request not found")
    return _to_lending_out(row)


@router.post("/branches/{branch_id}/receipts/check", response_model=ReceiptCheckOut)
def receipts_check(branch_id: int, payload: ReceiptCheckIn, db: Session = Depends(get_db)):
    _require_branch(db, branch_id)
    try:
        result = check_receipts(db, branch_id, payload.receipts)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ReceiptCheckOut(
        found=[
            ReceiptMatchOut(
                receipt_number=number,
                bill_id=bill.id,
                client_name=bill.client_name,
                total=float(bill.total or 0),
                payment_method=bill.payment_method,
                status=bill.status,
                created_at=bill.created_at,
                is_duplicate=duplicate,
            )
            for number, bill, duplicate in result.found
        ],
        not_found=result.not_found,
        stats=result.stats,
    )


@router.post("/branches/{branch_id}/receipts/export")
def receipts_export(branch_id: int, payload: ReceiptCheckIn, db: Session = Depends(get_db)):
    _require_branch(db, branch_id)
    try:
        result = check_receipts(db, branch_id, payload.receipts)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    filename = f"receipt-check-{date.today().isoformat()}.csv"
    return Response(
        content=export_receipt_check_csv(result),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
