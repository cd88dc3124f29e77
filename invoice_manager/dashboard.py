"""Read-only rollups for the dashboard."""

from collections import Counter as Tally
from datetime import date, datetime
from decimal import Decimal

from .lifecycle import DRAFT, OVERDUE, PAID, SENT

DEFAULT_UNPAID_STATUSES = (DRAFT, SENT, OVERDUE)
RECENT_LIMIT = 5
REVENUE_MONTHS = 12


def month_label(year, month):
    return f"{year:04d}-{month:02d}"


def trailing_months(today, count=REVENUE_MONTHS):
    """First day of the oldest month in a window ending with ``today``'s month."""
    index = today.year * 12 + (today.month - 1) - (count - 1)
    return date(index // 12, index % 12 + 1, 1)


def _as_date(value):
    return value.date() if isinstance(value, datetime) else value


def revenue_by_month(invoices, today):
    start = trailing_months(today)
    buckets = {}
    for invoice in invoices:
        if invoice.status != PAID or invoice.created_at is None:
            continue
        created = _as_date(invoice.created_at)
        if created < start or created > today:
            continue
        label = month_label(created.year, created.month)
        buckets[label] = buckets.get(label, Decimal("0")) + Decimal(invoice.total)
    return [{"month": label, "revenue": float(buckets[label])} for label in sorted(buckets)]


def recent_activity(projects, invoices, limit=RECENT_LIMIT):
    def newest(records):
        return sorted(records, key=lambda r: r.updated_at, reverse=True)[:limit]

    feed = [
        {
            "type": "project",
            "id": p.id,
            "date": p.updated_at.isoformat(),
            "description": p.title,
            "status": p.status,
            "_sort": p.updated_at,
        }
        for p in newest(projects)
    ]
    feed += [
        {
            "type": "invoice",
            "id": i.id,
            "date": i.updated_at.isoformat(),
            "description": f"Invoice {i.invoice_number}",
            "status": i.status,
            "_sort": i.updated_at,
        }
        for i in newest(invoices)
    ]
    feed.sort(key=lambda entry: entry["_sort"], reverse=True)
    for entry in feed:
        del entry["_sort"]
    return feed[:limit]


def summarize(projects, invoices, today=None, unpaid_statuses=DEFAULT_UNPAID_STATUSES):
    """
    Build the dashboard for one owner's ``projects`` and ``invoices``.

    Nothing is written. Callers are responsible for passing only the
    requesting owner's records.
    """
    today = today or date.today()
    projects = list(projects)
    invoices = list(invoices)

    project_status = Tally(p.status for p in projects)
    unpaid = set(unpaid_statuses)
    categories = Tally(p.category for p in projects if p.category)

    total_revenue = sum((Decimal(i.total) for i in invoices if i.status == PAID), Decimal("0"))

    return {
        "total_revenue": float(total_revenue),
        "active_projects": project_status.get("in-progress", 0),
        "pending_invoices": sum(1 for i in invoices if i.status in unpaid),
        "completed_projects": project_status.get("completed", 0),
        "revenue_by_month": revenue_by_month(invoices, today),
        "projects_by_category": [
            {"name": name, "value": count} for name, count in sorted(categories.items())
        ],
        "recent_activity": recent_activity(projects, invoices),
    }
