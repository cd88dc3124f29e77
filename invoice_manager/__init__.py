"""Small-business invoicing: clients, projects, invoices and their totals."""

__version__ = "1.0.0"
