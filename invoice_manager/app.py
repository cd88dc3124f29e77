import functools
import io
import logging
import os

from flask import Flask, current_app, g, jsonify, request, send_file
from flask_apscheduler import APScheduler
from flask_cors import CORS
from flask_migrate import Migrate, upgrade

from . import db_manager
from .cache import DEFAULT_TTL_SECONDS, InvoiceListCache
from .dashboard import DEFAULT_UNPAID_STATUSES
from .errors import InvoicingError
from .lifecycle import PAID
from .logging_config import configure_logging, get_logger
from .models import db
from .pdf_builder import InvoicePDF
from .schemas import (
    ClientCreate, ClientUpdate, ConfigUpdate, InvoiceCreate, InvoiceUpdate,
    ProjectCreate, ProjectUpdate, changes, parse,
)

logger = get_logger("app")

migrate = Migrate()
scheduler = APScheduler()

OWNER_HEADER = 'X-Owner-Id'


def _env_list(name, default):
    raw = os.environ.get(name)
    if not raw:
        return tuple(default)
    return tuple(part.strip() for part in raw.split(',') if part.strip())


def default_config():
    base_path = os.path.dirname(os.path.abspath(__file__))
    db_path = os.path.join(base_path, 'data', 'invoices.db')
    return {
        'SQLALCHEMY_DATABASE_URI': os.environ.get('DATABASE_URL', f'sqlite:///{db_path}'),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_CACHE_TTL': int(os.environ.get('INVOICE_CACHE_TTL', DEFAULT_TTL_SECONDS)),
        'SCHEDULER_ENABLED': os.environ.get('SCHEDULER_ENABLED', 'true').lower() in ('1', 'true', 'yes'),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
        'UNPAID_STATUSES': _env_list('UNPAID_STATUSES', DEFAULT_UNPAID_STATUSES),
        'MIGRATIONS_DIR': os.path.join(base_path, 'migrations'),
    }


def create_app(config=None, cache_backend=None):
    app = Flask(__name__)
    app.config.update(default_config())
    if config:
        app.config.update(config)

    configure_logging(level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    uri = app.config['SQLALCHEMY_DATABASE_URI']
    if uri.startswith('sqlite:///') and ':memory:' not in uri:
        os.makedirs(os.path.dirname(uri[len('sqlite:///'):]) or '.', exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app)  # Enable CORS for all routes
    app.extensions['invoice_cache'] = InvoiceListCache(
        backend=cache_backend, ttl_seconds=app.config['INVOICE_CACHE_TTL'],
    )

    register_routes(app)

    with app.app_context():
        # apply migrations when the project ships them, otherwise create tables directly
        if os.path.exists(app.config['MIGRATIONS_DIR']):
            upgrade(directory=app.config['MIGRATIONS_DIR'])
            logger.info("database_migrated")
        else:
            db.create_all()

    if app.config['SCHEDULER_ENABLED']:
        scheduler.init_app(app)
        # Run check daily at 9:00 AM
        scheduler.add_job(id='invoice_check', func=check_overdue_invoices, trigger='cron', hour=9)
        scheduler.start()

    return app


def invoice_cache():
    return current_app.extensions['invoice_cache']


def check_overdue_invoices():
    with scheduler.app.app_context():
        run_overdue_sweep()


def run_overdue_sweep(today=None):
    marked = db_manager.mark_overdue_invoices(today=today)
    cache = invoice_cache()
    for owner_id in {invoice.owner_id for invoice in marked}:
        cache.invalidate(owner_id)
    return marked


def owner_required(view):
    """Owner identity is authenticated upstream and forwarded in a header."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        owner_id = (request.headers.get(OWNER_HEADER) or '').strip()
        if not owner_id:
            return jsonify({'error': 'Authentication required', 'code': 'UNAUTHENTICATED'}), 401
        g.owner_id = owner_id
        return view(*args, **kwargs)
    return wrapper


def body():
    return request.get_json(silent=True)


def register_routes(app):

    @app.errorhandler(InvoicingError)
    def handle_invoicing_error(error):
        if error.status_code >= 500:
            logger.error("request_failed", extra={"path": request.path, "code": error.code}, exc_info=error)
        return jsonify(error.to_dict()), error.status_code

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})

    # ----------------------
    # Clients
    # ----------------------

    @app.route('/api/clients', methods=['GET', 'POST'])
    @owner_required
    def clients():
        if request.method == 'POST':
            payload = parse(ClientCreate, body())
            client = db_manager.add_client(g.owner_id, payload.model_dump(exclude_none=True))
            return jsonify(client.to_dict()), 201

        return jsonify([c.to_dict() for c in db_manager.get_clients(g.owner_id)])

    @app.route('/api/clients/<int:client_id>', methods=['GET', 'PATCH', 'DELETE'])
    @owner_required
    def manage_client(client_id):
        if request.method == 'DELETE':
            client = db_manager.delete_client(g.owner_id, client_id)
            return jsonify({'message': 'Client deleted successfully', 'id': client.id})

        if request.method == 'PATCH':
            update = changes(parse(ClientUpdate, body()))
            return jsonify(db_manager.update_client(g.owner_id, client_id, update).to_dict())

        return jsonify(db_manager.get_client(g.owner_id, client_id).to_dict())

    # ----------------------
    # Projects
    # ----------------------

    @app.route('/api/projects', methods=['GET', 'POST'])
    @owner_required
    def projects():
        if request.method == 'POST':
            payload = parse(ProjectCreate, body())
            project = db_manager.add_project(g.owner_id, payload.model_dump(exclude_none=True))
            return jsonify(project.to_dict()), 201

        return jsonify([p.to_dict() for p in db_manager.get_projects(g.owner_id)])

    @app.route('/api/projects/<int:project_id>', methods=['GET', 'PATCH', 'DELETE'])
    @owner_required
    def manage_project(project_id):
        if request.method == 'DELETE':
            project = db_manager.delete_project(g.owner_id, project_id)
            return jsonify({'message': 'Project deleted successfully', 'id': project.id})

        if request.method == 'PATCH':
            update = changes(parse(ProjectUpdate, body()))
            return jsonify(db_manager.update_project(g.owner_id, project_id, update).to_dict())

        return jsonify(db_manager.get_project(g.owner_id, project_id).to_dict())

    # ----------------------
    # Invoices
    # ----------------------

    @app.route('/api/invoices', methods=['GET', 'POST'])
    @owner_required
    def invoices():
        cache = invoice_cache()
        if request.method == 'POST':
            payload = parse(InvoiceCreate, body())
            data = changes(payload)
            data.setdefault('status', payload.status)
            invoice = db_manager.create_invoice(g.owner_id, data)
            cache.invalidate(g.owner_id)
            return jsonify(invoice.to_dict()), 201

        invoices_data = cache.get(g.owner_id)
        if invoices_data is None:
            invoices_data = [inv.to_dict() for inv in db_manager.get_invoices(g.owner_id)]
            cache.set(g.owner_id, invoices_data)

        status_filter = request.args.get('status', 'All')
        if status_filter != 'All':
            invoices_data = [inv for inv in invoices_data if inv['status'] == status_filter]
        return jsonify(invoices_data)

    @app.route('/api/invoices/<int:invoice_id>', methods=['GET', 'PATCH', 'DELETE'])
    @owner_required
    def manage_invoice(invoice_id):
        if request.method == 'DELETE':
            invoice = db_manager.delete_invoice(g.owner_id, invoice_id)
            invoice_cache().invalidate(g.owner_id)
            return jsonify({'message': 'Invoice deleted successfully', 'invoice_number': invoice.invoice_number})

        if request.method == 'PATCH':
            update = changes(parse(InvoiceUpdate, body()))
            invoice = db_manager.update_invoice(g.owner_id, invoice_id, update)
            invoice_cache().invalidate(g.owner_id)
            return jsonify(invoice.to_dict())

        return jsonify(db_manager.get_invoice(g.owner_id, invoice_id).to_dict())

    @app.route('/api/invoices/<int:invoice_id>/pay', methods=['POST'])
    @owner_required
    def mark_paid(invoice_id):
        invoice = db_manager.update_invoice_status(g.owner_id, invoice_id, PAID)
        invoice_cache().invalidate(g.owner_id)
        return jsonify(invoice.to_dict())

    @app.route('/api/invoices/<int:invoice_id>/pdf')
    @owner_required
    def download_pdf(invoice_id):
        invoice_data, business_info = db_manager.get_invoice_details(g.owner_id, invoice_id)

        mem = io.BytesIO()
        InvoicePDF(invoice_data, business_info).generate(mem)
        mem.seek(0)

        return send_file(
            mem,
            as_attachment=True,
            download_name=f"{invoice_data['invoice_number']}.pdf",
            mimetype='application/pdf',
        )

    # ----------------------
    # Config & dashboard
    # ----------------------

    @app.route('/api/config', methods=['GET', 'PATCH'])
    @owner_required
    def config():
        if request.method == 'PATCH':
            update = changes(parse(ConfigUpdate, body()))
            return jsonify(db_manager.update_config(g.owner_id, update).to_dict())

        return jsonify(db_manager.get_or_create_config(g.owner_id).to_dict())

    @app.route('/api/stats/dashboard')
    @owner_required
    def dashboard():
        return jsonify(db_manager.get_dashboard(
            g.owner_id, unpaid_statuses=current_app.config['UNPAID_STATUSES'],
        ))


if __name__ == '__main__':
    create_app().run(debug=False, port=5000)
