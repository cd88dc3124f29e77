"""
Line-item arithmetic for invoices.

``compute_totals`` is pure: the same items and tax rate always produce the
same ``InvoiceTotals``. Amounts are Decimal and rounded half-up to cents at
three points only (item amount, tax amount, total), so the stored figures
always satisfy::

    amount    = quantity * rate
    subtotal  = sum(amount)
    tax       = subtotal * tax_rate / 100
    total     = subtotal + tax
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError

CENT = Decimal("0.01")
MAX_TAX_RATE = Decimal("100")

# largest values the Numeric(12, 4) and Numeric(12, 2) columns hold
MAX_QUANTITY = Decimal("1e8")
MAX_MONEY = Decimal("1e10")


def to_money(value):
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value, field, limit=None):
    """Coerce numbers and numeric strings; reject everything else.

    With ``limit`` set, values at or above it are rejected as well.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", details=[f"{field}: required number"])
    if isinstance(value, float):
        value = repr(value)
    try:
        number = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details=[f"{field}: not a number"])
    if not number.is_finite():
        raise ValidationError(f"{field} must be a number", details=[f"{field}: not a finite number"])
    if number < 0:
        raise ValidationError(f"{field} must not be negative", details=[f"{field}: must be >= 0"])
    if limit is not None and number >= limit:
        raise ValidationError(f"{field} is too large", details=[f"{field}: must be < {limit:,f}"])
    return number


def to_tax_rate(value):
    rate = to_decimal(value, "tax_rate")
    if rate > MAX_TAX_RATE:
        raise ValidationError("tax_rate must not exceed 100", details=["tax_rate: must be <= 100"])
    return rate


@dataclass(frozen=True)
class LineAmount:
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal

    def to_dict(self):
        return {
            "description": self.description,
            "quantity": float(self.quantity),
            "rate": float(self.rate),
            "amount": float(self.amount),
        }


@dataclass(frozen=True)
class InvoiceTotals:
    items: tuple
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal


def _field(item, name):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _within_column(value, field):
    if value >= MAX_MONEY:
        raise ValidationError(f"{field} is too large", details=[f"{field}: must be < {MAX_MONEY:,f}"])
    return value


def compute_line(item, index=0):
    description = _field(item, "description")
    if not isinstance(description, str) or not description.strip():
        raise ValidationError(
            "Item description is required",
            details=[f"items.{index}.description: required"],
        )
    quantity = to_decimal(_field(item, "quantity"), f"items.{index}.quantity", limit=MAX_QUANTITY)
    rate = to_decimal(_field(item, "rate"), f"items.{index}.rate", limit=MAX_MONEY)
    amount = _within_column(to_money(quantity * rate), f"items.{index}.amount")
    return LineAmount(
        description=description.strip(),
        quantity=quantity,
        rate=rate,
        amount=amount,
    )


def compute_totals(items, tax_rate):
    """Derive amounts, subtotal, tax and total for ``items`` in input order."""
    rate = to_tax_rate(tax_rate)
    lines = tuple(compute_line(item, index) for index, item in enumerate(items))
    subtotal = _within_column(sum((line.amount for line in lines), Decimal("0.00")), "subtotal")
    tax_amount = to_money(subtotal * rate / 100)
    return InvoiceTotals(
        items=lines,
        subtotal=to_money(subtotal),
        tax_rate=rate,
        tax_amount=tax_amount,
        total=_within_column(to_money(subtotal + tax_amount), "total"),
    )
