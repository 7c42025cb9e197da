# backend/revshare/core/earnings_export.py
from __future__ import annotations

import csv
import io
import uuid
from decimal import Decimal
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core.clock import as_utc
from revshare.core.earning_ledger import iter_earnings_for_export
from revshare.models.instructor_earning import InstructorEarning
from revshare.schemas.earnings import EarningFilters

CSV_COLUMNS = (
    "date",
    "student",
    "course",
    "section",
    "paid amount",
    "instructor %",
    "instructor amount",
    "platform %",
    "platform amount",
    "payment method",
)


def _pct(value: Decimal | float | int) -> str:
    d = Decimal(str(value)).normalize()
    # 70.00 -> "70", 72.50 -> "72.5"
    return format(d, "f")


def earning_row(e: InstructorEarning) -> list[str]:
    return [
        as_utc(e.accrued_at).date().isoformat(),
        e.student_name or (str(e.student_id) if e.student_id else ""),
        e.course_name or str(e.course_id),
        e.section_name or "",
        str(e.student_paid_amount),
        _pct(e.instructor_percentage),
        str(e.instructor_amount),
        _pct(e.platform_percentage),
        str(e.platform_amount),
        e.payment_method or "",
    ]


def render_earnings_csv(earnings: Iterable[InstructorEarning]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for e in earnings:
        writer.writerow(earning_row(e))
    return buf.getvalue()


async def export_earnings_csv(
    db: AsyncSession,
    instructor_id: uuid.UUID | None,
    filters: EarningFilters | None = None,
) -> str:
    rows = await iter_earnings_for_export(db, instructor_id, filters)
    return render_earnings_csv(rows)
