import functools
from datetime import date, timedelta

from sqlalchemy.exc import IntegrityError, OperationalError

from . import dashboard, settings
from .errors import ConflictError, NotFoundError, StorageUnavailableError, ValidationError
from .lifecycle import INITIAL_STATUS, OVERDUE, SENT, apply_update, check_transition, store_totals
from .logging_config import get_logger
from .models import Client, Config, Invoice, Project, db
from .numbering import SqlCounterStore, generate_invoice_number
from .totals import compute_totals

logger = get_logger("db")

DEFAULT_PAYMENT_TERMS = timedelta(days=14)


def storage_operation(func):
    """Roll back on any failure; report a broken database as StorageUnavailableError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OperationalError as exc:
            db.session.rollback()
            logger.error("storage_unavailable", extra={"operation": func.__name__}, exc_info=True)
            raise StorageUnavailableError("Database unavailable") from exc
        except Exception:
            db.session.rollback()
            raise
    return wrapper


# ----------------------
# Config
# ----------------------

@storage_operation
def get_or_create_config(owner_id):
    """Return the owner's Config, creating it with defaults on first use."""
    config = Config.query.filter_by(owner_id=owner_id).first()
    if config:
        return config

    config = Config(owner_id=owner_id, **settings.default_config_values())
    db.session.add(config)
    try:
        db.session.commit()
    except IntegrityError:
        # another request created it first
        db.session.rollback()
        return Config.query.filter_by(owner_id=owner_id).one()
    logger.info("config_created", extra={"owner_id": owner_id})
    return config


def resolve_config(owner_id, tax_rate=None, currency=None):
    return settings.resolve(get_or_create_config(owner_id), tax_rate=tax_rate, currency=currency)


@storage_operation
def update_config(owner_id, changes):
    config = get_or_create_config(owner_id)

    if 'currency' in changes:
        currency = changes['currency']
        if currency.get('code'):
            config.currency_code = currency['code'].upper()
        if currency.get('symbol'):
            config.currency_symbol = currency['symbol']
    if 'business_info' in changes:
        config.business_info = {**(config.business_info or {}), **changes['business_info']}
    if 'categories' in changes:
        config.categories = [
            {'name': c['name'].lower(), 'code': c['code'].upper()} for c in changes['categories']
        ]
    if 'default_tax_rate' in changes:
        config.default_tax_rate = changes['default_tax_rate']
    if 'allow_registration' in changes:
        config.allow_registration = changes['allow_registration']

    db.session.commit()
    return config


# ----------------------
# Clients
# ----------------------

@storage_operation
def add_client(owner_id, data):
    client = Client(
        owner_id=owner_id,
        name=data['name'],
        email=data['email'].strip().lower(),
        company=data.get('company'),
        phone=data.get('phone'),
        rc=data.get('rc'),
        ice=data.get('ice'),
        address=data.get('address') or {},
    )
    db.session.add(client)
    db.session.commit()
    return client


def get_clients(owner_id):
    return Client.query.filter_by(owner_id=owner_id).order_by(Client.name).all()


def get_client(owner_id, client_id):
    client = Client.query.filter_by(id=client_id, owner_id=owner_id).first()
    if client is None:
        raise NotFoundError('Client', client_id)
    return client


@storage_operation
def update_client(owner_id, client_id, changes):
    client = get_client(owner_id, client_id)
    for key, value in changes.items():
        if key == 'email':
            value = value.strip().lower()
        elif key == 'address':
            value = value or {}
        setattr(client, key, value)
    db.session.commit()
    return client


@storage_operation
def delete_client(owner_id, client_id):
    client = get_client(owner_id, client_id)
    if client.projects:
        raise ValidationError(
            "Client still has projects",
            details=[f"projects: {len(client.projects)} project(s) reference this client"],
        )
    db.session.delete(client)
    db.session.commit()
    return client


# ----------------------
# Projects
# ----------------------

def _check_category(owner_id, category):
    category = (category or '').strip().lower()
    allowed = resolve_config(owner_id).category_names()
    if category not in allowed:
        raise ValidationError(
            f"Invalid category '{category}'",
            details=[f"category: must be one of {', '.join(sorted(allowed))}"],
        )
    return category


@storage_operation
def add_project(owner_id, data):
    client = get_client(owner_id, data['client_id'])
    project = Project(
        owner_id=owner_id,
        client_id=client.id,
        title=data['title'],
        description=data.get('description'),
        category=_check_category(owner_id, data['category']),
        status=data.get('status') or 'pending',
        start_date=data.get('start_date'),
        end_date=data.get('end_date'),
        template_id=data.get('template_id'),
    )
    db.session.add(project)
    db.session.commit()
    return project


def get_projects(owner_id):
    return (
        Project.query.filter_by(owner_id=owner_id)
        .order_by(Project.created_at.desc(), Project.id.desc())
        .all()
    )


def get_project(owner_id, project_id):
    project = Project.query.filter_by(id=project_id, owner_id=owner_id).first()
    if project is None:
        raise NotFoundError('Project', project_id)
    return project


@storage_operation
def update_project(owner_id, project_id, changes):
    project = get_project(owner_id, project_id)
    if 'client_id' in changes:
        get_client(owner_id, changes['client_id'])
    for key, value in changes.items():
        setattr(project, key, value)
    db.session.commit()
    return project


@storage_operation
def delete_project(owner_id, project_id):
    project = get_project(owner_id, project_id)
    if project.invoices:
        raise ValidationError(
            "Project still has invoices",
            details=[f"invoices: {len(project.invoices)} invoice(s) reference this project"],
        )
    db.session.delete(project)
    db.session.commit()
    return project


# ----------------------
# Invoices
# ----------------------

@storage_operation
def create_invoice(owner_id, data, counters=None, today=None):
    """
    Create an invoice for one of the owner's projects.

    Totals, number and currency are derived here; the caller never supplies
    them. The counter increment happens in the same transaction as the
    insert, so a failed creation does not consume a number.
    """
    project = get_project(owner_id, data['project_id'])
    resolved = resolve_config(owner_id, tax_rate=data.get('tax_rate'))
    totals = compute_totals(data['items'], resolved.tax_rate)

    invoice_date = data.get('invoice_date') or today or date.today()
    due_date = data.get('due_date') or invoice_date + DEFAULT_PAYMENT_TERMS
    if due_date < invoice_date:
        raise ValidationError(
            "Due date cannot be before the invoice date",
            details=["due_date: must be on or after invoice_date"],
        )
    status = data.get('status') or INITIAL_STATUS
    check_transition(INITIAL_STATUS, status)

    if counters is None:
        counters = SqlCounterStore(db.session)
    number = generate_invoice_number(invoice_date, project.category, counters)

    invoice = Invoice(
        owner_id=owner_id,
        project_id=project.id,
        invoice_number=number,
        category=project.category,
        invoice_date=invoice_date,
        due_date=due_date,
        status=status,
        notes=data.get('notes'),
        currency_code=resolved.currency_code,
        currency_symbol=resolved.currency_symbol,
    )
    store_totals(invoice, totals)
    db.session.add(invoice)
    try:
        db.session.flush()
    except IntegrityError as exc:
        logger.error("duplicate_invoice_number", extra={"invoice_number": number}, exc_info=True)
        raise ConflictError(f"Duplicate invoice number detected: {number}") from exc
    db.session.commit()

    logger.info(
        "invoice_created",
        extra={"invoice_number": number, "owner_id": owner_id, "total": str(invoice.total)},
    )
    return invoice


def get_invoices(owner_id):
    return (
        Invoice.query.filter_by(owner_id=owner_id)
        .order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
        .all()
    )


def get_invoice(owner_id, invoice_id):
    invoice = Invoice.query.filter_by(id=invoice_id, owner_id=owner_id).first()
    if invoice is None:
        raise NotFoundError('Invoice', invoice_id)
    return invoice


@storage_operation
def update_invoice(owner_id, invoice_id, changes):
    invoice = get_invoice(owner_id, invoice_id)
    apply_update(invoice, changes)
    db.session.commit()
    return invoice


@storage_operation
def update_invoice_status(owner_id, invoice_id, new_status):
    return update_invoice(owner_id, invoice_id, {'status': new_status})


@storage_operation
def delete_invoice(owner_id, invoice_id):
    invoice = get_invoice(owner_id, invoice_id)
    db.session.delete(invoice)
    db.session.commit()
    logger.info("invoice_deleted", extra={"invoice_number": invoice.invoice_number, "owner_id": owner_id})
    return invoice


@storage_operation
def mark_overdue_invoices(today=None):
    """Move every sent invoice past its due date to overdue. Returns the invoices moved."""
    today = today or date.today()
    overdue = Invoice.query.filter(Invoice.status == SENT, Invoice.due_date < today).all()
    for invoice in overdue:
        apply_update(invoice, {'status': OVERDUE})
    if overdue:
        db.session.commit()
    logger.info("overdue_sweep", extra={"marked": len(overdue), "as_of": today.isoformat()})
    return overdue


def get_invoice_details(owner_id, invoice_id):
    """Invoice plus the owner's business profile, as the PDF builder expects."""
    invoice = get_invoice(owner_id, invoice_id)
    data = invoice.to_dict()
    client = invoice.project.client if invoice.project else None
    data['client'] = {
        'name': client.name if client else "Unknown Client",
        'company': client.company if client else "",
        'email': client.email if client else "",
        'phone': client.phone if client else "",
        'address': dict(client.address or {}) if client else {},
    }
    config = get_or_create_config(owner_id)
    return data, dict(config.business_info or {})


# ----------------------
# Dashboard
# ----------------------

def get_dashboard(owner_id, today=None, unpaid_statuses=dashboard.DEFAULT_UNPAID_STATUSES):
    projects = Project.query.filter_by(owner_id=owner_id).all()
    invoices = Invoice.query.filter_by(owner_id=owner_id).all()
    return dashboard.summarize(projects, invoices, today=today, unpaid_statuses=unpaid_statuses)
