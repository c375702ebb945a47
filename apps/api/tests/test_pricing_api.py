from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricepilot import audit, events
from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.pricing.service import bulk_pricing_engine
from pricepilot.core.auth import AuthUser, get_current_user
from pricepilot.core.config import get_settings
from pricepilot.core.database import Base, get_db
from pricepilot.core.errors import RemoteMutationFailed, UpstreamUnavailable
from pricepilot.integrations.shopify.client import CollectionSummary
from pricepilot.main import app
from pricepilot.middleware.rate_limit import reset_rate_limiter
from pricepilot.shops.models import Shop

SHOP = "demo.myshopify.com"


class FakeShopify:
    def __init__(self) -> None:
        self.collections: dict[str, set[str]] = {}
        self.fail_variants: set[str] = set()
        self.unavailable = False
        self.calls: list[dict[str, Any]] = []

    async def fetch_collections(self) -> list[CollectionSummary]:
        if self.unavailable:
            raise UpstreamUnavailable("Shopify API error (503)")
        return [
            CollectionSummary(id=f"gid://shopify/Collection/{key}", title=f"Collection {key}", handle=key, products_count=len(ids))
            for key, ids in sorted(self.collections.items())
        ]

    async def fetch_collection_product_ids(self, collection_id: str) -> set[str]:
        if self.unavailable:
            raise UpstreamUnavailable("Shopify API error (503)")
        return set(self.collections.get(collection_id.rsplit("/", 1)[-1], set()))

    async def update_variant_prices(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)
        if kwargs["variant_id"] in self.fail_variants:
            raise RemoteMutationFailed(f"variant {kwargs['variant_id']} is locked")


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
def disable_rate_limit(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def fake_shopify(monkeypatch: pytest.MonkeyPatch) -> FakeShopify:
    fake = FakeShopify()
    monkeypatch.setattr(bulk_pricing_engine, "client_factory", lambda _shop: fake)
    return fake


@pytest.fixture()
def client(db_session: Session, fake_shopify: FakeShopify) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="merchant-1", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def shop_row(db_session: Session) -> Shop:
    shop = Shop(shop_domain=SHOP, access_token="shpat_test")
    db_session.add(shop)
    db_session.commit()
    return shop


def _headers(shop_domain: str = SHOP) -> dict[str, str]:
    return {"x-shop-domain": shop_domain}


def _item(db: Session, shop: Shop, title: str, price: str, compare_price: str | None = None, *, variant_id: str) -> CatalogItem:
    item = CatalogItem(
        shop_id=shop.id,
        title=title,
        price=Decimal(price),
        compare_at_price=Decimal(compare_price) if compare_price is not None else None,
        external_variant_id=variant_id,
        external_product_id=f"p{variant_id}",
    )
    db.add(item)
    db.commit()
    return item


def test_rule_campaign_lifecycle(client: TestClient, db_session: Session, shop_row: Shop) -> None:
    item = _item(db_session, shop_row, "Acme - Widget", "50", "60", variant_id="111")

    created = client.post(
        "/api/pricing/campaigns",
        json={
            "name": "Sale",
            "scope": {"mode": "vendor", "vendor": "Acme"},
            "rule": {"type": "fixed", "direction": "decrease", "magnitude": "10", "target": "price"},
        },
        headers=_headers(),
    )
    assert created.status_code == 201
    body = created.json()
    bulk_action_id = body["bulk_action"]["id"]
    assert body["bulk_action"]["item_count"] == 1
    assert body["bulk_action"]["created_by"] == "merchant-1"
    assert body["items"][0]["outcome"] == "updated"

    history = client.get("/api/pricing/campaigns", headers=_headers())
    assert history.status_code == 200
    assert [row["id"] for row in history.json()] == [bulk_action_id]

    detail = client.get(f"/api/pricing/campaigns/{bulk_action_id}", headers=_headers())
    assert detail.status_code == 200
    detail_item = detail.json()["items"][0]
    assert detail_item["inventory_item_id"] == str(item.id)
    assert detail_item["title"] == "Acme - Widget"
    assert Decimal(detail_item["original_price"]) == Decimal("50")
    assert Decimal(detail_item["new_price"]) == Decimal("40")

    reverted = client.post(f"/api/pricing/campaigns/{bulk_action_id}/revert", headers=_headers())
    assert reverted.status_code == 200
    assert reverted.json()["bulk_action"]["reverted_at"] is not None
    db_session.refresh(item)
    assert item.price == Decimal("50")

    again = client.post(f"/api/pricing/campaigns/{bulk_action_id}/revert", headers=_headers())
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_REVERTED"
    assert again.json()["error"] == "Bulk action already reverted"


def test_empty_scope_returns_invalid_campaign(client: TestClient, shop_row: Shop) -> None:
    response = client.post(
        "/api/pricing/campaigns",
        json={
            "name": "Nobody",
            "scope": {"mode": "vendor", "vendor": "Initech"},
            "rule": {"type": "percentage", "direction": "increase", "magnitude": "5"},
        },
        headers={**_headers(), "x-correlation-id": "corr-empty"},
    )

    assert response.status_code == 422
    assert response.json() == {
        "error": "No products matched the selected scope",
        "code": "INVALID_CAMPAIGN",
        "details": None,
        "correlation_id": "corr-empty",
    }


def test_zero_magnitude_is_rejected(client: TestClient, db_session: Session, shop_row: Shop) -> None:
    item = _item(db_session, shop_row, "Widget", "10", variant_id="111")

    response = client.post(
        "/api/pricing/campaigns",
        json={
            "name": "Zero",
            "scope": {"mode": "explicit", "ids": [str(item.id)]},
            "rule": {"type": "fixed", "direction": "increase", "magnitude": "0"},
        },
        headers=_headers(),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_CAMPAIGN"


def test_unknown_scope_mode_fails_validation(client: TestClient, shop_row: Shop) -> None:
    response = client.post(
        "/api/pricing/campaigns",
        json={
            "name": "Bad",
            "scope": {"mode": "tag", "tag": "summer"},
            "rule": {"type": "fixed", "direction": "increase", "magnitude": "1"},
        },
        headers=_headers(),
    )

    assert response.status_code == 422


def test_collection_upstream_failure_returns_502(
    client: TestClient,
    db_session: Session,
    shop_row: Shop,
    fake_shopify: FakeShopify,
) -> None:
    _item(db_session, shop_row, "Shirt", "10", variant_id="111")
    fake_shopify.unavailable = True

    response = client.post(
        "/api/pricing/campaigns",
        json={
            "name": "Shirts",
            "scope": {"mode": "collection", "collection_ids": ["7"]},
            "rule": {"type": "percentage", "direction": "decrease", "magnitude": "10"},
        },
        headers=_headers(),
    )

    assert response.status_code == 502
    assert response.json()["code"] == "UPSTREAM_UNAVAILABLE"
    assert client.get("/api/pricing/campaigns", headers=_headers()).json() == []


def test_uniform_and_calculated_campaigns(client: TestClient, db_session: Session, shop_row: Shop) -> None:
    first = _item(db_session, shop_row, "A", "10", variant_id="111")
    second = _item(db_session, shop_row, "B", "20", "25", variant_id="222")

    uniform = client.post(
        "/api/pricing/campaigns/uniform",
        json={"name": "Flat", "item_ids": [str(first.id), str(second.id)], "price": "15"},
        headers=_headers(),
    )
    assert uniform.status_code == 201
    assert uniform.json()["bulk_action"]["action_type"] == "uniform"
    assert Decimal(uniform.json()["bulk_action"]["new_price"]) == Decimal("15")

    calculated = client.post(
        "/api/pricing/campaigns/calculated",
        json={
            "name": "Computed",
            "updates": [{"item_id": str(second.id), "new_price": "12.345", "new_compare_price": "30"}],
        },
        headers=_headers(),
    )
    assert calculated.status_code == 201
    assert calculated.json()["bulk_action"]["action_type"] == "calculated"
    db_session.refresh(second)
    assert second.price == Decimal("12.35")
    assert second.compare_at_price == Decimal("30")


def test_partial_revert_returns_502_with_failed_items(
    client: TestClient,
    db_session: Session,
    shop_row: Shop,
    fake_shopify: FakeShopify,
) -> None:
    first = _item(db_session, shop_row, "A", "10", variant_id="111")
    second = _item(db_session, shop_row, "B", "20", variant_id="222")
    created = client.post(
        "/api/pricing/campaigns/uniform",
        json={"name": "Flat", "item_ids": [str(first.id), str(second.id)], "price": "5"},
        headers=_headers(),
    )
    bulk_action_id = created.json()["bulk_action"]["id"]

    fake_shopify.fail_variants = {"222"}
    partial = client.post(f"/api/pricing/campaigns/{bulk_action_id}/revert", headers=_headers())
    assert partial.status_code == 502
    assert partial.json()["code"] == "REMOTE_MUTATION_FAILED"
    assert partial.json()["details"] == {"bulk_action_id": bulk_action_id, "failed_item_ids": [str(second.id)]}

    fake_shopify.fail_variants = set()
    retried = client.post(f"/api/pricing/campaigns/{bulk_action_id}/revert", headers=_headers())
    assert retried.status_code == 200
    assert retried.json()["bulk_action"]["reverted_at"] is not None


def test_shop_resolution_errors(client: TestClient, db_session: Session, shop_row: Shop) -> None:
    db_session.add(Shop(shop_domain="tokenless.myshopify.com", access_token=None))
    db_session.commit()

    missing = client.get("/api/pricing/campaigns")
    assert missing.status_code == 400
    assert missing.json()["code"] == "INVALID_REQUEST"

    unknown = client.get("/api/pricing/campaigns", headers=_headers("nobody.myshopify.com"))
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "Shop not found. Please install the app first."

    tokenless = client.get("/api/pricing/campaigns", headers=_headers("tokenless.myshopify.com"))
    assert tokenless.status_code == 401
    assert tokenless.json()["code"] == "SHOP_NOT_AUTHORIZED"


def test_campaigns_are_isolated_per_shop(client: TestClient, db_session: Session, shop_row: Shop) -> None:
    item = _item(db_session, shop_row, "A", "10", variant_id="111")
    db_session.add(Shop(shop_domain="other.myshopify.com", access_token="shpat_other"))
    db_session.commit()
    created = client.post(
        "/api/pricing/campaigns/uniform",
        json={"name": "Flat", "item_ids": [str(item.id)], "price": "5"},
        headers=_headers(),
    )
    bulk_action_id = created.json()["bulk_action"]["id"]

    assert client.get("/api/pricing/campaigns", headers=_headers("other.myshopify.com")).json() == []
    foreign = client.get(f"/api/pricing/campaigns/{bulk_action_id}", headers=_headers("other.myshopify.com"))
    assert foreign.status_code == 404
    assert foreign.json()["code"] == "NOT_FOUND"


def test_collections_and_collection_items(
    client: TestClient,
    db_session: Session,
    shop_row: Shop,
    fake_shopify: FakeShopify,
) -> None:
    shirt = _item(db_session, shop_row, "Shirt", "10", variant_id="111")
    fake_shopify.collections = {"7": {"p111"}}

    collections = client.get("/api/pricing/collections", headers=_headers())
    assert collections.status_code == 200
    assert collections.json() == [
        {"id": "gid://shopify/Collection/7", "title": "Collection 7", "handle": "7", "products_count": 1}
    ]

    items = client.get("/api/pricing/collections/7/items", headers=_headers())
    assert items.status_code == 200
    assert items.json() == {"collection_id": "7", "item_ids": [str(shirt.id)]}
