import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from threading import Barrier

import pytest

from invoice_manager import db_manager
from invoice_manager.app import create_app
from invoice_manager.errors import ValidationError
from invoice_manager.models import db
from invoice_manager.numbering import (
    MemoryCounterStore, SqlCounterStore, bucket_key, format_invoice_number, generate_invoice_number,
)

from tests.conftest import OWNER, SAMPLE_ITEMS, TEST_CONFIG, counter_value


class TestFormat:
    def test_generated_number_shape(self):
        number = generate_invoice_number(date(2024, 3, 15), "development", MemoryCounterStore())
        assert re.match(r"^03-2024-DEVELOPMENT-\d{3}$", number)
        assert number == "03-2024-DEVELOPMENT-001"

    def test_bucket_key_pads_month_and_uppercases(self):
        assert bucket_key(date(2024, 11, 2), " dev ") == "11-2024-DEV"
        assert bucket_key(date(987, 1, 1), "x") == "01-0987-X"

    def test_sequence_is_zero_padded_to_three_digits(self):
        assert format_invoice_number("03-2024-DEV", 7) == "03-2024-DEV-007"
        assert format_invoice_number("03-2024-DEV", 1234) == "03-2024-DEV-1234"

    @pytest.mark.parametrize("category", [None, "", "   "])
    def test_missing_category_does_not_touch_the_counter(self, category):
        counters = MemoryCounterStore()
        with pytest.raises(ValidationError):
            generate_invoice_number(date(2024, 3, 15), category, counters)
        assert counters._counters == {}


class TestMemoryCounterStore:
    def test_buckets_count_independently(self):
        counters = MemoryCounterStore()
        day = date(2024, 3, 15)

        assert generate_invoice_number(day, "development", counters).endswith("-001")
        assert generate_invoice_number(day, "development", counters).endswith("-002")
        assert generate_invoice_number(day, "consulting", counters) == "03-2024-CONSULTING-001"
        assert generate_invoice_number(date(2024, 4, 1), "development", counters) == "04-2024-DEVELOPMENT-001"

    def test_concurrent_generation_yields_a_gapless_unique_run(self):
        counters = MemoryCounterStore()
        workers = 32
        barrier = Barrier(workers)

        def allocate(_):
            barrier.wait()
            return generate_invoice_number(date(2024, 3, 15), "development", counters)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            numbers = list(pool.map(allocate, range(workers)))

        suffixes = sorted(int(n.rsplit("-", 1)[1]) for n in numbers)
        assert len(set(numbers)) == workers
        assert suffixes == list(range(1, workers + 1))


class TestSqlCounterStore:
    def test_first_use_creates_the_counter(self, app):
        counters = SqlCounterStore(db.session)

        assert counter_value("03-2024-DEVELOPMENT") is None
        assert counters.increment_and_get("03-2024-DEVELOPMENT") == 1
        assert counters.increment_and_get("03-2024-DEVELOPMENT") == 2
        assert counters.increment_and_get("03-2024-TEACHING") == 1
        db.session.commit()

        assert counter_value("03-2024-DEVELOPMENT") == 2

    def test_rollback_returns_the_number(self, app):
        counters = SqlCounterStore(db.session)
        counters.increment_and_get("05-2024-DEV")
        db.session.commit()

        counters.increment_and_get("05-2024-DEV")
        db.session.rollback()

        assert counter_value("05-2024-DEV") == 1
        assert counters.increment_and_get("05-2024-DEV") == 2


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database, so threads get separate connections."""
    app = create_app(dict(TEST_CONFIG, SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'invoices.db'}"))
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def test_concurrent_invoice_creation_numbers_a_fresh_bucket_without_gaps(file_app):
    workers = 12
    with file_app.app_context():
        client = db_manager.add_client(OWNER, {"name": "Acme Corp", "email": "billing@acme.test"})
        project_id = db_manager.add_project(
            OWNER, {"title": "Website rebuild", "client_id": client.id, "category": "development"},
        ).id

    barrier = Barrier(workers)

    def create(_):
        with file_app.app_context():
            barrier.wait()
            invoice = db_manager.create_invoice(OWNER, {
                "project_id": project_id, "items": SAMPLE_ITEMS, "invoice_date": date(2024, 3, 15),
            })
            return invoice.invoice_number

    with ThreadPoolExecutor(max_workers=workers) as pool:
        numbers = list(pool.map(create, range(workers)))

    assert len(set(numbers)) == workers
    assert sorted(numbers) == [f"03-2024-DEVELOPMENT-{n:03d}" for n in range(1, workers + 1)]
    with file_app.app_context():
        assert counter_value("03-2024-DEVELOPMENT") == workers
