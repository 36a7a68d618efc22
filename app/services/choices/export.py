"""CSV renderings of the item and user reports."""
import csv
import io
import re
from decimal import Decimal
from typing import Optional

from app.models.choices.choice_models import ChoiceItemType
from app.schemas.choices.report import ItemsReport, UsersReport


NOT_PARTICIPATING = "Not Participating"


def _money(value: Optional[Decimal]) -> str:
    return f"{value:.2f}" if value is not None else ""


def _writer(buffer: io.StringIO):
    return csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")


def items_report_to_csv(report: ItemsReport) -> str:
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(["Item", "Type", "Total Quantity", "Unit Price", "Total Price", "Distinct Users"])
    for row in report.items:
        opt_out = row.item_type == ChoiceItemType.NO_PARTICIPATION
        writer.writerow([
            NOT_PARTICIPATING if opt_out else row.name,
            "NO_PARTICIPATION" if opt_out else "NORMAL",
            row.qty_total,
            _money(row.unit_price),
            _money(row.total_price),
            row.distinct_users,
        ])
    writer.writerow([])
    writer.writerow(["Grand Total", "", "", "", _money(report.grand_total_price), ""])
    return buffer.getvalue()


def users_report_to_csv(report: UsersReport) -> str:
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(["User", "Status", "Item", "Quantity", "Price", "Note"])
    for user in report.users:
        name = user.display_name or f"User {user.user_id}"
        if user.is_no_participation:
            writer.writerow([name, NOT_PARTICIPATING.upper(), "", "", "", user.note or ""])
            continue
        if not user.lines:
            writer.writerow([name, "No items", "", "", "", user.note or ""])
            continue
        for line in user.lines:
            writer.writerow([
                name, "Participating", line.item_name, line.quantity,
                _money(line.line_price), line.note or "",
            ])
        writer.writerow([name, "Total", "", "", _money(user.user_total_price), user.note or ""])
    writer.writerow([])
    writer.writerow(["Grand Total", "", "", "", _money(report.grand_total_price), ""])
    return buffer.getvalue()


def export_filename(choice_name: str, kind: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", choice_name).strip("_").lower() or "choice"
    return f"{slug}_{kind}_report.csv"
