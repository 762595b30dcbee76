"""
Tests for settings helpers and database URL handling
"""
import pytest

from config.settings import Settings
from database import check_production_url, normalize_database_url
from database_models import Plan


def test_app_url_normalised():
    assert Settings(APP_URL="https://app.example.com/").get_app_url() == "https://app.example.com"
    assert Settings(APP_URL="app.example.com").get_app_url() == "https://app.example.com"
    assert Settings(APP_URL="http://localhost:3000").get_app_url() == "http://localhost:3000"


def test_price_plan_map_skips_unset_prices():
    settings = Settings(STRIPE_BASIC_PLAN_PRICE_ID="price_b", STRIPE_PREMIUM_PLAN_PRICE_ID=None)

    assert settings.price_plan_map() == {"price_b": Plan.BASIC}


def test_database_url_gets_async_driver():
    assert normalize_database_url("postgres://u:p@db:5432/app") == "postgresql+asyncpg://u:p@db:5432/app"
    assert normalize_database_url("postgresql://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"
    assert normalize_database_url("postgresql+asyncpg://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"
    assert normalize_database_url("sqlite+aiosqlite:///./sql_app.db") == "sqlite+aiosqlite:///./sql_app.db"


def test_production_rejects_sqlite():
    with pytest.raises(RuntimeError):
        check_production_url("sqlite+aiosqlite:///./sql_app.db")
    with pytest.raises(RuntimeError):
        check_production_url("")

    check_production_url("postgresql://u:p@db/app")
