from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

MONEY = db.Numeric(12, 2)
QUANTITY = db.Numeric(12, 4)
PERCENT = db.Numeric(5, 2)

PROJECT_STATUSES = ('pending', 'in-progress', 'completed', 'cancelled')


def _money(value):
    return float(value) if value is not None else 0.0


def _iso(value):
    return value.isoformat() if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Client(TimestampMixin, db.Model):
    __tablename__ = 'clients'
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String, nullable=False)
    email = db.Column(db.String, nullable=False)
    company = db.Column(db.String)
    phone = db.Column(db.String)
    rc = db.Column(db.String)
    ice = db.Column(db.String)
    # street, city, state, country, zip_code
    address = db.Column(db.JSON, default=dict)

    projects = db.relationship('Project', backref='client', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'company': self.company,
            'phone': self.phone,
            'rc': self.rc,
            'ice': self.ice,
            'address': dict(self.address or {}),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Project(TimestampMixin, db.Model):
    __tablename__ = 'projects'
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False)
    title = db.Column(db.String, nullable=False)
    description = db.Column(db.String)
    category = db.Column(db.String, nullable=False)
    status = db.Column(db.String, nullable=False, default='pending')
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    # opaque reference to an invoice template kept by the front end
    template_id = db.Column(db.String(64))

    invoices = db.relationship('Invoice', backref='project', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'status': self.status,
            'client_id': self.client_id,
            'client': {'name': self.client.name, 'company': self.client.company} if self.client else None,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'template_id': self.template_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Invoice(TimestampMixin, db.Model):
    __tablename__ = 'invoices'
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    invoice_number = db.Column(db.String, unique=True, nullable=False)
    # snapshot of the project category at creation
    category = db.Column(db.String, nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String, nullable=False, default='draft')
    subtotal = db.Column(MONEY, nullable=False, default=0)
    tax_rate = db.Column(PERCENT, nullable=False, default=0)
    tax_amount = db.Column(MONEY, nullable=False, default=0)
    total = db.Column(MONEY, nullable=False, default=0)
    currency_code = db.Column(db.String(3), nullable=False, default='USD')
    currency_symbol = db.Column(db.String(8), nullable=False, default='$')
    notes = db.Column(db.Text)

    items = db.relationship(
        'InvoiceItem', backref='invoice', lazy=True,
        cascade="all, delete-orphan", order_by='InvoiceItem.position',
    )

    def to_dict(self):
        client = self.project.client if self.project else None
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'project_id': self.project_id,
            'project': {'title': self.project.title, 'category': self.category} if self.project else None,
            'client': {'name': client.name, 'email': client.email} if client else None,
            'items': [item.to_dict() for item in self.items],
            'subtotal': _money(self.subtotal),
            'tax_rate': _money(self.tax_rate),
            'tax_amount': _money(self.tax_amount),
            'total': _money(self.total),
            'currency': {'code': self.currency_code, 'symbol': self.currency_symbol},
            'status': self.status,
            'invoice_date': _iso(self.invoice_date),
            'due_date': _iso(self.due_date),
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class InvoiceItem(db.Model):
    __tablename__ = 'invoice_items'
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String, nullable=False)
    quantity = db.Column(QUANTITY, nullable=False)
    rate = db.Column(MONEY, nullable=False)
    amount = db.Column(MONEY, nullable=False)

    def to_dict(self):
        return {
            'description': self.description,
            'quantity': float(self.quantity),
            'rate': float(self.rate),
            'amount': float(self.amount),
        }


class Counter(db.Model):
    __tablename__ = 'counters'
    # MM-YYYY-CATEGORY
    bucket = db.Column(db.String, primary_key=True)
    seq = db.Column(db.Integer, nullable=False, default=0)


class Config(TimestampMixin, db.Model):
    __tablename__ = 'configs'
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, unique=True)
    default_tax_rate = db.Column(PERCENT, nullable=False, default=0)
    currency_code = db.Column(db.String(3), nullable=False, default='USD')
    currency_symbol = db.Column(db.String(8), nullable=False, default='$')
    categories = db.Column(db.JSON, nullable=False, default=list)
    business_info = db.Column(db.JSON, nullable=False, default=dict)
    allow_registration = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            'default_tax_rate': _money(self.default_tax_rate),
            'currency': {'code': self.currency_code, 'symbol': self.currency_symbol},
            'categories': list(self.categories or []),
            'business_info': dict(self.business_info or {}),
            'allow_registration': self.allow_registration,
        }
