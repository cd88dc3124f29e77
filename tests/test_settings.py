from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from invoice_manager import db_manager
from invoice_manager.errors import StorageUnavailableError, ValidationError
from invoice_manager.models import Config
from invoice_manager.settings import DEFAULT_CATEGORIES, resolve

from tests.conftest import OTHER_OWNER, OWNER


class TestResolve:
    def test_defaults_without_a_stored_config(self):
        resolved = resolve(None)
        assert resolved.tax_rate == Decimal("0")
        assert resolved.currency == {"code": "USD", "symbol": "$"}
        assert [c["name"] for c in resolved.categories] == [c["name"] for c in DEFAULT_CATEGORIES]

    def test_stored_config_beats_defaults(self):
        stored = SimpleNamespace(
            default_tax_rate=Decimal("20"), currency_code="EUR", currency_symbol="€",
            categories=[{"name": "training", "code": "TRN"}],
        )
        resolved = resolve(stored)
        assert resolved.tax_rate == Decimal("20")
        assert resolved.currency == {"code": "EUR", "symbol": "€"}
        assert resolved.category_names() == {"training"}

    def test_override_beats_stored_config(self):
        stored = SimpleNamespace(
            default_tax_rate=Decimal("20"), currency_code="EUR", currency_symbol="€", categories=[],
        )
        resolved = resolve(stored, tax_rate="5.5", currency={"code": "MAD"})
        assert resolved.tax_rate == Decimal("5.5")
        assert resolved.currency == {"code": "MAD", "symbol": "€"}
        # empty stored list falls back to the defaults
        assert "development" in resolved.category_names()

    def test_override_is_validated(self):
        with pytest.raises(ValidationError):
            resolve(None, tax_rate=150)


class TestGetOrCreateConfig:
    def test_creates_exactly_one_record_per_owner(self, app, captured_logs):
        first = db_manager.resolve_config(OWNER)
        second = db_manager.resolve_config(OWNER)

        assert first == second
        assert first.tax_rate == Decimal("0")
        assert first.currency == {"code": "USD", "symbol": "$"}
        assert Config.query.filter_by(owner_id=OWNER).count() == 1
        assert [r.getMessage() for r in captured_logs].count("config_created") == 1

    def test_owners_get_separate_records(self, app):
        db_manager.get_or_create_config(OWNER)
        db_manager.get_or_create_config(OTHER_OWNER)
        assert Config.query.count() == 2

    def test_update_merges_nested_values(self, app):
        db_manager.update_config(OWNER, {
            "currency": {"symbol": "€"},
            "business_info": {"name": "Studio Nord", "ICE": "0012"},
            "default_tax_rate": Decimal("20"),
        })
        db_manager.update_config(OWNER, {
            "currency": {"code": "eur"},
            "business_info": {"email": "hi@studio.test"},
            "categories": [{"name": "Design", "code": "dsn"}],
        })

        config = db_manager.get_or_create_config(OWNER).to_dict()
        assert config["currency"] == {"code": "EUR", "symbol": "€"}
        assert config["business_info"]["name"] == "Studio Nord"
        assert config["business_info"]["email"] == "hi@studio.test"
        assert config["categories"] == [{"name": "design", "code": "DSN"}]
        assert config["default_tax_rate"] == 20.0

    def test_database_failure_is_not_treated_as_defaults(self, app, monkeypatch):
        class BrokenQuery:
            def filter_by(self, **kwargs):
                raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db_manager, "Config", SimpleNamespace(query=BrokenQuery()))

        with pytest.raises(StorageUnavailableError):
            db_manager.resolve_config(OWNER)
