"""
Unit Tests - Configuration
"""
import pytest
from pydantic import ValidationError
from sqlalchemy.pool import NullPool

from backoffice.config import Settings
from backoffice.database.connection import _pool_options


class TestSettings:
    """Tests for application settings"""

    def test_testing_environment(self, test_settings):
        assert test_settings.app_env == "testing"
        assert not test_settings.is_production

    def test_environment_is_normalized(self):
        """Test environment names are case-insensitive"""
        assert Settings(APP_ENV="Production").is_production

    def test_unknown_environment(self):
        with pytest.raises(ValidationError):
            Settings(APP_ENV="moon")

    def test_reporting_defaults(self, test_settings):
        """Test reporting constants used by the dashboard"""
        reporting = test_settings.reporting

        assert reporting.target_uplift == 1.15
        assert reporting.session_duration_cap_seconds == 1800
        assert reporting.default_currency == "INR"

    def test_database_url_override(self, monkeypatch):
        """Test DATABASE_URL wins over the discrete connection fields"""
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///local.db")

        assert Settings().database.async_url == "sqlite+aiosqlite:///local.db"

    def test_database_name_from_postgres_db(self, monkeypatch):
        """Test POSTGRES_DB names the database like the other POSTGRES_ fields"""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_DB", "atelier")

        database = Settings().database
        assert database.db == "atelier"
        assert database.async_url.endswith("/atelier")

    def test_server_databases_use_bounded_pool(self):
        """Test PostgreSQL engines get a sized pool and SQLite is not pooled"""
        options = _pool_options("postgresql+asyncpg://backoffice@localhost/jewellery_backoffice")

        assert options["pool_size"] == 20
        assert options["max_overflow"] == 10
        assert options["pool_timeout"] == 30
        assert "poolclass" not in options
        assert _pool_options("sqlite+aiosqlite:///local.db") == {"poolclass": NullPool}
