r"""
Invoice status transitions and post-creation updates.

    draft ----> sent ----> paid
      |  \        |  ^
      |   \       v  |
      |    \-> overdue ---> paid
      v           |
    cancelled <---+

``paid`` and ``cancelled`` are terminal. Only the fields in
``UPDATABLE_FIELDS`` may change after creation; owner, number and project
never do.
"""

from datetime import date

from .errors import DisallowedFieldError, InvalidTransitionError, ValidationError
from .logging_config import get_logger
from .models import InvoiceItem
from .totals import compute_totals

logger = get_logger("lifecycle")

DRAFT = "draft"
SENT = "sent"
PAID = "paid"
OVERDUE = "overdue"
CANCELLED = "cancelled"

STATUSES = (DRAFT, SENT, PAID, OVERDUE, CANCELLED)
INITIAL_STATUS = DRAFT
TERMINAL_STATUSES = frozenset({PAID, CANCELLED})

TRANSITIONS = {
    DRAFT: frozenset({SENT, PAID, CANCELLED}),
    SENT: frozenset({PAID, OVERDUE, CANCELLED}),
    OVERDUE: frozenset({PAID, SENT, CANCELLED}),
    PAID: frozenset(),
    CANCELLED: frozenset(),
}

UPDATABLE_FIELDS = frozenset({"status", "items", "due_date", "notes", "invoice_date", "tax_rate"})


def can_transition(current, requested):
    return requested == current or requested in TRANSITIONS.get(current, ())


def check_transition(current, requested):
    if requested not in STATUSES:
        raise ValidationError(
            f"Unknown invoice status '{requested}'",
            details=[f"status: must be one of {', '.join(STATUSES)}"],
        )
    if not can_transition(current, requested):
        raise InvalidTransitionError(current, requested)


def check_fields(changes):
    disallowed = set(changes) - UPDATABLE_FIELDS
    if disallowed:
        raise DisallowedFieldError(disallowed)


def store_totals(invoice, totals, replace_items=True):
    if replace_items:
        invoice.items = [
            InvoiceItem(
                position=position,
                description=line.description,
                quantity=line.quantity,
                rate=line.rate,
                amount=line.amount,
            )
            for position, line in enumerate(totals.items)
        ]
    invoice.subtotal = totals.subtotal
    invoice.tax_rate = totals.tax_rate
    invoice.tax_amount = totals.tax_amount
    invoice.total = totals.total


def apply_update(invoice, changes):
    """
    Apply a partial update to ``invoice``.

    Every check runs before the first assignment, so a rejected update
    leaves the invoice untouched. Totals are recomputed only when
    ``items`` or ``tax_rate`` is part of the update.
    """
    check_fields(changes)

    if "status" in changes:
        check_transition(invoice.status, changes["status"])

    invoice_date = changes.get("invoice_date", invoice.invoice_date)
    due_date = changes.get("due_date", invoice.due_date)
    if isinstance(invoice_date, date) and isinstance(due_date, date) and due_date < invoice_date:
        raise ValidationError(
            "Due date cannot be before the invoice date",
            details=["due_date: must be on or after invoice_date"],
        )

    totals = None
    if "items" in changes or "tax_rate" in changes:
        items = changes["items"] if "items" in changes else invoice.items
        tax_rate = changes["tax_rate"] if "tax_rate" in changes else invoice.tax_rate
        totals = compute_totals(items, tax_rate)

    if totals is not None:
        store_totals(invoice, totals, replace_items="items" in changes)
    for field in ("due_date", "invoice_date", "notes"):
        if field in changes:
            setattr(invoice, field, changes[field])
    if "status" in changes and changes["status"] != invoice.status:
        logger.info(
            "invoice_status_changed",
            extra={"invoice_number": invoice.invoice_number, "from": invoice.status, "to": changes["status"]},
        )
        invoice.status = changes["status"]
    return invoice
