import re
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import settings
from .models import Bill

RECEIPT_SPLIT_RE = re.compile(r"[\n\r,;\t]+")
PAYMENT_METHOD_LABELS = {
    "cash": "Cash",
    "card": "Card",
    "voucher": "Voucher",
    "gift_card": "Gift Card",
}
EXPORT_HEADER = "Receipt Number,Status,Bill ID,Date,Client,Amount,Payment Method,Status"


@dataclass
class ReceiptCheck:
    found: list[tuple[str, Bill, bool]] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    total_checked: int = 0

    @property
    def stats(self) -> dict:
        return {
            "totalChecked": self.total_checked,
            "found": len(self.found),
            "notFound": len(self.not_found),
            "uniqueFound": len({receipt for receipt, _, _ in self.found}),
            "totalAmount": round(sum(float(bill.total or 0) for _, bill, _ in self.found), 2),
            "duplicates": sum(1 for _, _, duplicate in self.found if duplicate),
        }


def parse_receipt_numbers(raw: str | None) -> list[str]:
    """Split on newlines, commas, semicolons or tabs; upper-case and de-duplicate in order."""
    if not raw or not raw.strip():
        return []
    seen: dict[str, None] = {}
    for part in RECEIPT_SPLIT_RE.split(raw):
        number = part.strip().upper()
        if number:
            seen.setdefault(number, None)
    return list(seen)


def payment_method_label(method: str | None) -> str:
    return PAYMENT_METHOD_LABELS.get(method or "", method or "")


def check_receipts(db: Session, branch_id: int, raw: str | None) -> ReceiptCheck:
    numbers = parse_receipt_numbers(raw)
    if not numbers:
        raise ValueError("Please enter at least one receipt number")
    if len(numbers) > settings.RECEIPT_CHECK_MAX:
        raise ValueError(
            f"Maximum {settings.RECEIPT_CHECK_MAX} receipt numbers allowed at once"
        )

    bills = (
        db.execute(
            select(Bill)
            .where(
                Bill.branch_id == branch_id,
                func.upper(Bill.receipt_number).in_(numbers),
            )
            .order_by(Bill.created_at.asc(), Bill.id.asc())
        )
        .scalars()
        .all()
    )
    by_receipt: dict[str, list[Bill]] = {}
    for bill in bills:
        by_receipt.setdefault(bill.receipt_number.upper(), []).append(bill)

    result = ReceiptCheck(total_checked=len(numbers))
    for number in numbers:
        matches = by_receipt.get(number, [])
        if not matches:
            result.not_found.append(number)
            continue
        for index, bill in enumerate(matches):
            result.found.append((number, bill, index > 0))
    return result


def export_receipt_check_csv(result: ReceiptCheck) -> str:
    # Fields are joined as-is; embedded commas are not quoted.
    rows = [EXPORT_HEADER]
    for number, bill, _ in result.found:
        rows.append(
            ",".join(
                [
                    number,
                    "Found",
                    str(bill.id)[-8:],
                    bill.created_at.date().isoformat() if bill.created_at else "",
                    bill.client_name or "",
                    f"{float(bill.total or 0):.2f}",
                    payment_method_label(bill.payment_method),
                    bill.status or "",
                ]
            )
        )
    for number in result.not_found:
        rows.append(",".join([number, "Not Found", "", "", "", "", "", ""]))
    return "\n".join(rows)
