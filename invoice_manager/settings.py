"""
Business profile defaults and the tax/currency resolver.

Resolution order for every value: explicit per-request override, then the
owner's stored Config, then the hard-coded default below.
"""

from dataclasses import dataclass
from decimal import Decimal

from .totals import to_tax_rate

DEFAULT_TAX_RATE = Decimal("0")
DEFAULT_CURRENCY = {"code": "USD", "symbol": "$"}

DEFAULT_CATEGORIES = [
    {"name": "teaching", "code": "TCH"},
    {"name": "development", "code": "DEV"},
    {"name": "consulting", "code": "CNS"},
    {"name": "pentesting", "code": "PNT"},
    {"name": "support", "code": "SPT"},
    {"name": "other", "code": "OTH"},
]

DEFAULT_BUSINESS_INFO = {
    "name": "",
    "address": "",
    "email": "",
    "phone": "",
    "website": "",
    "CNIE": "",
    "IF": "",
    "taxe_professionnelle": "",
    "ICE": "",
}


def default_config_values():
    return {
        "default_tax_rate": DEFAULT_TAX_RATE,
        "currency_code": DEFAULT_CURRENCY["code"],
        "currency_symbol": DEFAULT_CURRENCY["symbol"],
        "categories": [dict(c) for c in DEFAULT_CATEGORIES],
        "business_info": dict(DEFAULT_BUSINESS_INFO),
        "allow_registration": True,
    }


@dataclass(frozen=True)
class ResolvedConfig:
    tax_rate: Decimal
    currency_code: str
    currency_symbol: str
    categories: tuple

    @property
    def currency(self):
        return {"code": self.currency_code, "symbol": self.currency_symbol}

    def category_names(self):
        return {c["name"].lower() for c in self.categories if c.get("name")}

    def to_dict(self):
        return {
            "tax_rate": float(self.tax_rate),
            "currency": self.currency,
            "categories": [dict(c) for c in self.categories],
        }


def resolve(config=None, tax_rate=None, currency=None):
    """Merge an override, a stored Config row (or None) and the defaults."""
    if tax_rate is not None:
        rate = to_tax_rate(tax_rate)
    elif config is not None and config.default_tax_rate is not None:
        rate = Decimal(config.default_tax_rate)
    else:
        rate = DEFAULT_TAX_RATE

    currency = currency or {}
    code = currency.get("code") or (config.currency_code if config is not None else None)
    symbol = currency.get("symbol") or (config.currency_symbol if config is not None else None)

    categories = config.categories if config is not None and config.categories else DEFAULT_CATEGORIES

    return ResolvedConfig(
        tax_rate=rate,
        currency_code=code or DEFAULT_CURRENCY["code"],
        currency_symbol=symbol or DEFAULT_CURRENCY["symbol"],
        categories=tuple(dict(c) for c in categories),
    )
