"""Tests for configuration helpers."""
import pytest

from app.config.billing import BillingSettings
from app.config.cache_ttl import DEFAULT_TTL, FALLBACK_TTL, get_claim_ttl, get_ttl
from app.config.database_url import get_database_url, is_sqlite_url, parse_database_url


@pytest.mark.unit
class TestBillingSettings:
    def test_defaults(self):
        settings = BillingSettings()
        assert settings.match_acceptance_threshold == 75.0
        assert settings.match_tie_margin == 5.0
        assert settings.posting_max_attempts == 3
        assert settings.max_appeals_per_claim == 3

    def test_extensions_are_normalized(self):
        settings = BillingSettings(allowed_extensions=" CSV, .835,,txt ")
        assert settings.extensions == [".csv", ".835", ".txt"]

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MATCH_ACCEPTANCE_THRESHOLD", "90")
        monkeypatch.setenv("REMITTANCE_AUTO_POST_ON_IMPORT", "true")
        settings = BillingSettings()
        assert settings.match_acceptance_threshold == 90.0
        assert settings.auto_post_on_import is True


@pytest.mark.unit
class TestCacheTTL:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CACHE_TTL_CLAIM", raising=False)
        assert get_claim_ttl() == DEFAULT_TTL["claim"]
        assert get_ttl("unknown") == FALLBACK_TTL

    def test_override(self, monkeypatch):
        monkeypatch.setenv("CACHE_TTL_CLAIM", "60")
        assert get_claim_ttl() == 60

    def test_bad_override_falls_back(self, monkeypatch):
        monkeypatch.setenv("CACHE_TTL_PATIENT_BALANCE", "soon")
        assert get_ttl("patient_balance") == DEFAULT_TTL["patient_balance"]


@pytest.mark.unit
class TestDatabaseUrl:
    def test_sqlite_passes_through(self):
        assert is_sqlite_url("sqlite:///./test.db")
        assert parse_database_url("sqlite:///./test.db") == "sqlite:///./test.db"

    def test_localhost_disables_ssl(self):
        url = parse_database_url("postgresql://u:p@localhost:5432/billing")
        assert url == "postgresql://u:p@localhost:5432/billing?sslmode=disable"

    def test_remote_host_unchanged(self):
        url = "postgresql://u:p@db.example.com:5432/billing?sslmode=require"
        assert parse_database_url(url) == url

    def test_missing_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError):
            get_database_url(load_env=False)
        assert get_database_url(default="sqlite:///x.db", load_env=False) == "sqlite:///x.db"
