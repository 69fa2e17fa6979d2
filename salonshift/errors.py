from dataclasses import asdict, dataclass
from datetime import date


class ScheduleValidationError(ValueError):
    pass


class RecordNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class Violation:
    reason: str
    message: str
    employee_id: int | None = None
    employee_name: str | None = None
    day_key: str | None = None
    day: date | None = None

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["day"] = self.day.isoformat() if self.day else None
        return payload


class AvailabilityConflict(ValueError):
    def __init__(self, violations: list[Violation]):
        self.violations = list(violations)
        if len(self.violations) == 1:
            message = self.violations[0].message
        else:
            message = "Cannot save shifts for the following:\n" + "\n".join(
                v.message for v in self.violations
            )
        super().__init__(message)

    @property
    def reasons(self) -> list[str]:
        return [v.reason for v in self.violations]


class EditorStateError(RuntimeError):
    pass


class EditorBusyError(EditorStateError):
    pass


class AvailabilityUnavailableError(RuntimeError):
    """Leave or lending records could not be read, so nothing can be safely checked."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            "Leave and lending records are unavailable, please try again ("
            + ", ".join(self.errors)
            + ")"
        )
