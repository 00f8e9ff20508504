import csv
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Optional, Sequence

from dateutil import parser as date_parser

from models import Transaction, TransactionType
from periods import to_utc_naive, utcnow
from schemas import ImportRow, SkippedRow

TEMPLATE_HEADER = ["Date", "Description", "Amount", "Type", "Category"]
TEMPLATE_EXAMPLES = [
    ["2024-10-31", "Grocery shopping", "1500", "EXPENSE", "Food"],
    ["2024-11-01", "Salary", "50000", "INCOME", "Others"],
]
DEFAULT_CATEGORY = "Others"

_AMOUNT_NOISE = re.compile(r"[^0-9.\-]+")
_LEADING_NUMBER = re.compile(r"^-?(?:\d+(?:\.\d*)?|\.\d+)")
_CENT = Decimal("0.01")
_MAX_AMOUNT = Decimal("9999999999.99")

_FORMULA_TRIGGERS = ("=", "+", "-", "@", "\t", "\r")
_DANGEROUS_PATTERNS = [
    r"^cmd\s*",
    r"^powershell\s*",
    r"^bash\s*",
    r"^sh\s*",
    r"^\.",
    r"^http[s]?://",
]


class CSVImportError(ValueError):
    pass


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()
    if value.startswith(_FORMULA_TRIGGERS):
        return "\t" + value
    for pattern in _DANGEROUS_PATTERNS:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value
    return value


def parse_amount(value: str) -> Optional[Decimal]:
    """
    Read a currency string such as "₹1,000.50" as a decimal.

    Everything except digits, "." and "-" is dropped, then the longest leading
    number is taken, so trailing garbage ("12.5.3") does not invalidate the
    value. Returns None when no number can be read.
    """
    clean = _AMOUNT_NOISE.sub("", value)
    match = _LEADING_NUMBER.match(clean)
    if not match:
        return None
    try:
        amount = Decimal(match.group(0))
    except InvalidOperation:
        return None
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value or not value.strip():
        return None
    try:
        return to_utc_naive(date_parser.parse(value.strip()))
    except (ValueError, OverflowError):
        return None


def _normalize_row(raw: dict) -> dict[str, str]:
    row: dict[str, str] = {}
    for key, value in raw.items():
        # DictReader files surplus cells under None
        if key is None:
            continue
        row[key.strip().lower()] = value if isinstance(value, str) else ""
    return row


def parse_import_csv(
    content: bytes, *, now: Optional[datetime] = None
) -> tuple[list[ImportRow], list[SkippedRow]]:
    text = content.decode("utf-8-sig", errors="replace")
    fallback_date = now or utcnow()
    reader = csv.DictReader(StringIO(text, newline=""))
    rows: list[ImportRow] = []
    skipped: list[SkippedRow] = []
    try:
        for idx, raw in enumerate(reader, start=1):
            row = _normalize_row(raw)

            amount_raw = row.get("amount") or ""
            if not amount_raw:
                skipped.append(SkippedRow(row=idx, reason="Missing amount"))
                continue

            amount = parse_amount(amount_raw)
            if amount is None:
                skipped.append(SkippedRow(row=idx, reason="Unreadable amount"))
                continue
            if amount <= 0:
                skipped.append(SkippedRow(row=idx, reason="Amount must be positive"))
                continue
            if amount > _MAX_AMOUNT:
                skipped.append(SkippedRow(row=idx, reason="Amount out of range"))
                continue

            type_raw = (row.get("type") or "").strip().upper()
            txn_type = (
                TransactionType.income
                if type_raw == TransactionType.income.value
                else TransactionType.expense
            )
            category = (row.get("category") or "").strip() or DEFAULT_CATEGORY
            notes = (row.get("description") or row.get("notes") or "").strip()
            rows.append(
                ImportRow(
                    type=txn_type,
                    category=category,
                    amount=amount,
                    notes=notes,
                    date=parse_date(row.get("date")) or fallback_date,
                )
            )
    except csv.Error as exc:
        raise CSVImportError(f"Malformed CSV: {exc}") from exc
    return rows, skipped


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(TEMPLATE_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(timespec="seconds"),
                sanitize_csv_value(txn.notes or ""),
                f"{txn.amount:.2f}",
                txn.type.value,
                sanitize_csv_value(txn.category),
            ]
        )
    return output.getvalue()


def template_csv() -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(TEMPLATE_HEADER)
    writer.writerows(TEMPLATE_EXAMPLES)
    return output.getvalue()
