from datetime import date, datetime

from pydantic import BaseModel, Field, validator

HHMM_PATTERN = "^([01][0-9]|2[0-3]):[0-5][0-9]$"


class DayHours(BaseModel):
    isOpen: bool = True
    open: str | None = Field(default=None, pattern=HHMM_PATTERN)
    close: str | None = Field(default=None, pattern=HHMM_PATTERN)


class BranchCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    operating_hours: dict[str, DayHours] | None = None


class BranchHoursUpdate(BaseModel):
    operating_hours: dict[str, DayHours] | None = None


class BranchOut(BaseModel):
    id: int
    name: str
    operating_hours: dict | None = None
    created_at: datetime


class StaffCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(default="", max_length=80)
    role: str = Field(default="stylist", max_length=40)
    legacy_shifts: dict[str, dict] | None = None


class StaffOut(BaseModel):
    id: int
    branch_id: int
    first_name: str
    last_name: str
    full_name: str
    role: str
    is_active: bool


class ShiftTimes(BaseModel):
    start: str | None = None
    end: str | None = None


class ConfigurationCreate(BaseModel):
    start_date: date | None = None
    notes: str | None = Field(default=None, max_length=500)
    shifts: dict[str, dict[str, ShiftTimes]]


class ConfigurationOut(BaseModel):
    id: int
    branch_id: int
    start_date: date
    end_date: date | None = None
    is_active: bool
    notes: str | None = None
    shifts: dict
    created_at: datetime
    updated_at: datetime


class ScheduleHistoryOut(BaseModel):
    id: int
    branch_id: int
    start_date: date
    end_date: date | None = None
    is_active: bool
    notes: str | None = None
    created_at: datetime
    shifts: dict


class ShiftCheckIn(BaseModel):
    employee_id: int = Field(gt=0)
    day: date
    start: str = Field(pattern=HHMM_PATTERN)
    end: str = Field(pattern=HHMM_PATTERN)


class ViolationOut(BaseModel):
    reason: str
    message: str
    employee_id: int | None = None
    employee_name: str | None = None
    day_key: str | None = None
    day: date | None = None


class ShiftCheckOut(BaseModel):
    allowed: bool
    violations: list[ViolationOut]
    availability_errors: list[str] = []


class CommitIn(BaseModel):
    start_date: date | None = None
    notes: str | None = Field(default=None, max_length=500)
    shifts: dict[str, dict[str, ShiftTimes]]


class OverrideSet(BaseModel):
    start: str = Field(pattern=HHMM_PATTERN)
    end: str = Field(pattern=HHMM_PATTERN)
    notes: str | None = Field(default=None, max_length=500)

    @validator("end")
    @classmethod
    def validate_end_after_start(cls, value: str, values: dict):
        start = values.get("start")
        if start and value <= start:
            raise ValueError("end must be after start")
        return value


class OverrideOut(BaseModel):
    id: int
    branch_id: int
    employee_id: int
    day: date
    start: str
    end: str
    notes: str | None = None
    is_active: bool
    created_at: datetime


class LeaveCreate(BaseModel):
    employee_id: int = Field(gt=0)
    start_day: date
    end_day: date
    type: str = Field(
        default="vacation",
        pattern="^(vacation|sick|personal|emergency|maternity|paternity|bereavement|undetermined)$",
    )
    reason: str | None = Field(default=None, max_length=500)
    auto_approve: bool = False

    @validator("end_day")
    @classmethod
    def validate_end_after_start(cls, value: date, values: dict):
        start_day = values.get("start_day")
        if start_day and value < start_day:
            raise ValueError("end_day must be >= start_day")
        return value


class LeaveDecision(BaseModel):
    decision: str = Field(pattern="^(approved|rejected|cancelled)$")
    decision_note: str | None = Field(default=None, max_length=500)


class LeaveOut(BaseModel):
    id: int
    employee_id: int
    employee_name: str
    branch_id: int
    start_date: datetime
    end_date: datetime
    days: int
    status: str
    type: str
    reason: str | None = None
    requested_by: str | None = None
    decided_by: str | None = None
    decision_note: str | None = None
    decided_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class LendingCreate(BaseModel):
    stylist_id: int = Field(gt=0)
    from_branch_id: int = Field(gt=0)
    start_day: date
    end_day: date
    reason: str | None = Field(default=None, max_length=500)

    @validator("end_day")
    @classmethod
    def validate_end_after_start(cls, value: date, values: dict):
        start_day = values.get("start_day")
        if start_day and value < start_day:
            raise ValueError("end_day must be >= start_day")
        return value


class LendingDecision(BaseModel):
    decision: str = Field(pattern="^(approved|rejected|active|completed|cancelled)$")


class LendingOut(BaseModel):
    id: int
    stylist_id: int
    stylist_name: str
    from_branch_id: int
    from_branch_name: str
    to_branch_id: int
    to_branch_name: str
    start_date: datetime
    end_date: datetime
    status: str
    reason: str | None = None
    requested_by: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime


class ReceiptCheckIn(BaseModel):
    receipts: str = Field(min_length=1)


class ReceiptMatchOut(BaseModel):
    receipt_number: str
    bill_id: int
    client_name: str | None = None
    total: float
    payment_method: str
    status: str
    created_at: datetime
    is_duplicate: bool


class ReceiptCheckOut(BaseModel):
    found: list[ReceiptMatchOut]
    not_found: list[str]
    stats: dict
