"""
Query/Filter/Export Engine - pure functions over loaded change requests
"""

import csv
import io
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Union

from crportal.core.config import settings
from crportal.schemas.records import ChangeRequest, CRStatus


ALL_STATUSES = "All"
SEARCH_FIELDS = ("cr_code", "cr_name", "description", "application")

DATE_FILTER_FIELDS = {
    "requestDate": "request_date",
    "approvedDate": "approved_date",
    "rejectedDate": "rejected_date",
    "uatDate": "uat_date",
    "uatApprovedDate": "uat_approved_date",
    "productionDate": "production_date",
}

CSV_COLUMNS = (
    ("CR Code", "cr_code"),
    ("CR Name", "cr_name"),
    ("Application", "application"),
    ("Requester", "requester"),
    ("Request Date", "request_date"),
    ("Approved Date", "approved_date"),
    ("Rejected Date", "rejected_date"),
    ("UAT Date", "uat_date"),
    ("UAT Approved Date", "uat_approved_date"),
    ("Production Date", "production_date"),
    ("Status", "status"),
)


def _text(value) -> str:
    if isinstance(value, CRStatus):
        return value.value
    return value or ""


def search(records: Sequence[ChangeRequest], term: Optional[str]) -> List[ChangeRequest]:
    """Case-insensitive substring match on code, name, description or application"""
    if not term:
        return list(records)
    needle = term.lower()
    return [
        cr for cr in records
        if any(needle in _text(getattr(cr, name)).lower() for name in SEARCH_FIELDS)
    ]


def filter_by_status(
    records: Sequence[ChangeRequest],
    status: Optional[Union[CRStatus, str]],
) -> List[ChangeRequest]:
    if not status or status == ALL_STATUSES:
        return list(records)
    wanted = status.value if isinstance(status, CRStatus) else status
    return [cr for cr in records if cr.status.value == wanted]


def date_attribute(field_name: str) -> str:
    """Attribute behind a date filter field; accepts the JSON or the attribute name"""
    if field_name in DATE_FILTER_FIELDS:
        return DATE_FILTER_FIELDS[field_name]
    if field_name in DATE_FILTER_FIELDS.values():
        return field_name
    raise ValueError(f"Cannot filter on date field '{field_name}'")


def filter_by_date_range(
    records: Sequence[ChangeRequest],
    field_name: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> List[ChangeRequest]:
    """
    Keep records whose date field lies within [date_from, date_to].

    Either bound may be omitted; with neither the records pass through. Once
    a bound is given, records without a value in the field are excluded.
    ISO dates compare correctly as strings.
    """
    attr = date_attribute(field_name)
    if not date_from and not date_to:
        return list(records)

    selected = []
    for cr in records:
        value = getattr(cr, attr)
        if not value:
            continue
        if date_from and value < date_from:
            continue
        if date_to and value > date_to:
            continue
        selected.append(cr)
    return selected


@dataclass
class CRFilter:
    search_term: Optional[str] = None
    status: Optional[str] = ALL_STATUSES
    date_field: str = "requestDate"
    date_from: Optional[str] = None
    date_to: Optional[str] = None


def apply_filters(records: Sequence[ChangeRequest], criteria: CRFilter) -> List[ChangeRequest]:
    selected = search(records, criteria.search_term)
    selected = filter_by_status(selected, criteria.status)
    return filter_by_date_range(selected, criteria.date_field, criteria.date_from, criteria.date_to)


@dataclass
class Page:
    items: List[ChangeRequest] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 10
    total_pages: int = 0
    start_index: int = 0
    end_index: int = 0


def paginate(records: Sequence[ChangeRequest], page: int = 1, page_size: Optional[int] = None) -> Page:
    """Slice one page; the page number is clamped into range"""
    page_size = page_size or settings.CR_PAGE_SIZE
    total = len(records)
    total_pages = math.ceil(total / page_size)
    page = max(1, min(page, total_pages))

    start_index = (page - 1) * page_size
    end_index = min(start_index + page_size, total)
    return Page(
        items=list(records[start_index:end_index]),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        start_index=start_index,
        end_index=end_index,
    )


def to_csv(records: Sequence[ChangeRequest]) -> str:
    """Report with one row per record; empty values are written as N/A"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for cr in records:
        writer.writerow([_text(getattr(cr, attr)) or "N/A" for _, attr in CSV_COLUMNS])
    return buffer.getvalue()


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"CR_Report_{today.isoformat()}.csv"


def status_counts(records: Sequence[ChangeRequest]) -> Dict[str, int]:
    """Number of records per status, every status present"""
    counts = {status.value: 0 for status in CRStatus}
    for cr in records:
        counts[cr.status.value] += 1
    return counts
