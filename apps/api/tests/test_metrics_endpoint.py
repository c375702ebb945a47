from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.pricing.service import bulk_pricing_engine
from pricepilot.core.auth import AuthUser, get_current_user as auth_get_current_user
from pricepilot.core.config import get_settings
from pricepilot.core.database import Base, get_db
from pricepilot.main import app
from pricepilot.middleware.rate_limit import reset_rate_limiter
from pricepilot.shops.models import Shop


class FakeShopify:
    async def fetch_collections(self) -> list:
        return []

    async def fetch_collection_product_ids(self, collection_id: str) -> set[str]:
        return set()

    async def update_variant_prices(self, **kwargs: Any) -> None:
        return None


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setattr(bulk_pricing_engine, "client_factory", lambda _shop: FakeShopify())
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def roles() -> list[str]:
    return ["system.metrics.read"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_pricing_metrics(client: TestClient, db_session: Session) -> None:
    shop = Shop(shop_domain="demo.myshopify.com", access_token="shpat_test")
    db_session.add(shop)
    db_session.commit()
    item = CatalogItem(shop_id=shop.id, title="Widget", price=Decimal("10"), external_product_id="1", external_variant_id="1")
    db_session.add(item)
    db_session.commit()

    health = client.get("/health")
    assert health.status_code == 200

    applied = client.post(
        "/api/pricing/campaigns/uniform",
        json={"name": "Metrics Campaign", "item_ids": [str(item.id)], "price": "7"},
        headers={"x-shop-domain": "demo.myshopify.com"},
    )
    assert applied.status_code == 201
    reverted = client.post(
        f"/api/pricing/campaigns/{applied.json()['bulk_action']['id']}/revert",
        headers={"x-shop-domain": "demo.myshopify.com"},
    )
    assert reverted.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    payload = metrics.text
    assert "http_requests_total" in payload
    assert 'path="/api/pricing/campaigns/{id}/revert"' in payload
    assert 'pricing_campaigns_applied_total{action_type="uniform"}' in payload
    assert "pricing_campaigns_reverted_total" in payload
    assert 'pricing_item_mutations_total{operation="apply",outcome="updated"}' in payload
    assert 'pricing_item_mutations_total{operation="revert",outcome="updated"}' in payload


@pytest.mark.parametrize("roles", [["user"]])
def test_metrics_endpoint_requires_permission(client: TestClient) -> None:
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404
