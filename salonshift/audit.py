import json

from sqlalchemy.orm import Session

from .models import ScheduleAuditEvent
from .request_context import actor_email_ctx
from .timeutils import utc_now_naive


def _to_payload_json(payload: dict | None) -> str | None:
    if not payload:
        return None
    try:
        return json.dumps(
            payload, ensure_ascii=True, separators=(",", ":"), default=str
        )
    except TypeError:
        return json.dumps({"raw": str(payload)}, ensure_ascii=True)


def log_schedule_audit_event(
    db: Session,
    branch_id: int,
    action: str,
    *,
    actor_email: str | None = None,
    employee_id: int | None = None,
    related_id: str | None = None,
    payload: dict | None = None,
) -> ScheduleAuditEvent:
    actor = actor_email if actor_email is not None else actor_email_ctx.get()
    row = ScheduleAuditEvent(
        branch_id=branch_id,
        action=(action or "").strip()[:80],
        actor_email=(actor or "").strip().lower() or None,
        employee_id=employee_id,
        related_id=(related_id or "").strip()[:120] or None,
        payload_json=_to_payload_json(payload),
        created_at=utc_now_naive(),
    )
    db.add(row)
    db.flush()
    return row
