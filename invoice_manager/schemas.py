"""
Request schemas

Pydantic models for every payload the API accepts. Update models forbid
unknown keys, which is how the per-entity update allow-lists are enforced:
a request naming any other field is rejected before anything is touched.
"""

from datetime import date
from decimal import Decimal
from typing import ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import DisallowedFieldError, ValidationError
from .lifecycle import STATUSES
from .models import PROJECT_STATUSES
from .totals import MAX_MONEY, MAX_QUANTITY


class Schema(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class UpdateSchema(Schema):
    # fields that may be omitted but never set to null
    non_nullable: ClassVar[tuple] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = [name for name in self.non_nullable if name in self.model_fields_set and getattr(self, name) is None]
        if nulls:
            raise ValueError(f"cannot be null: {', '.join(sorted(nulls))}")
        return self


# ----------------------
# Clients
# ----------------------

class Address(Schema):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class ClientCreate(Schema):
    name: str = Field(..., min_length=1, description="Client name")
    email: str = Field(..., min_length=3, description="Contact email, stored lower-case")
    company: Optional[str] = None
    phone: Optional[str] = None
    rc: Optional[str] = Field(None, description="Trade register number")
    ice: Optional[str] = Field(None, description="Company identifier (ICE)")
    address: Optional[Address] = None


class ClientUpdate(UpdateSchema):
    non_nullable: ClassVar[tuple] = ("name", "email")

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=3)
    company: Optional[str] = None
    phone: Optional[str] = None
    rc: Optional[str] = None
    ice: Optional[str] = None
    address: Optional[Address] = None


# ----------------------
# Projects
# ----------------------

ProjectStatus = Literal[PROJECT_STATUSES]


class ProjectCreate(Schema):
    title: str = Field(..., min_length=1)
    client_id: int
    category: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: ProjectStatus = "pending"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    template_id: Optional[str] = Field(None, max_length=64)


class ProjectUpdate(UpdateSchema):
    non_nullable: ClassVar[tuple] = ("title", "client_id", "status")

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    client_id: Optional[int] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    template_id: Optional[str] = Field(None, max_length=64)


# ----------------------
# Invoices
# ----------------------

InvoiceStatus = Literal[STATUSES]


class LineItemIn(Schema):
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., ge=0, lt=MAX_QUANTITY, allow_inf_nan=False)
    rate: Decimal = Field(..., ge=0, lt=MAX_MONEY, allow_inf_nan=False)


class InvoiceCreate(Schema):
    project_id: int
    items: List[LineItemIn] = Field(..., min_length=1)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100, description="Percent; defaults to the owner's config")
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    status: InvoiceStatus = "draft"
    notes: Optional[str] = None


class InvoiceUpdate(UpdateSchema):
    non_nullable: ClassVar[tuple] = ("status", "items", "tax_rate", "invoice_date", "due_date")

    status: Optional[InvoiceStatus] = None
    items: Optional[List[LineItemIn]] = Field(None, min_length=1)
    due_date: Optional[date] = None
    invoice_date: Optional[date] = None
    notes: Optional[str] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)


# ----------------------
# Config
# ----------------------

class CurrencyIn(Schema):
    code: Optional[str] = Field(None, min_length=3, max_length=3)
    symbol: Optional[str] = Field(None, min_length=1, max_length=8)


class CategoryIn(Schema):
    name: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=8)


class ConfigUpdate(UpdateSchema):
    non_nullable: ClassVar[tuple] = ("default_tax_rate", "currency", "categories", "allow_registration", "business_info")

    default_tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    currency: Optional[CurrencyIn] = None
    categories: Optional[List[CategoryIn]] = None
    allow_registration: Optional[bool] = None
    business_info: Optional[Dict[str, str]] = None


def _location(error):
    return ".".join(str(part) for part in error["loc"]) or "body"


def parse(schema, payload):
    """Validate ``payload`` against ``schema``, raising our own error types."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", details=["body: expected an object"])
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        errors = exc.errors()
        extra = [_location(e) for e in errors if e["type"] == "extra_forbidden" and len(e["loc"]) == 1]
        if extra:
            raise DisallowedFieldError(extra)
        raise ValidationError(
            "Request validation failed",
            details=[f"{_location(e)}: {e['msg']}" for e in errors],
        )


def changes(model):
    """Only the fields the caller actually sent, nested models as dicts."""
    return {name: _plain(getattr(model, name)) for name in model.model_fields_set}


def _plain(value):
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_unset=True)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value
