from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricepilot.core.errors import InvalidRequest, NotFound, ShopNotAuthorized
from pricepilot.shops.models import Shop


@dataclass(frozen=True, slots=True)
class ShopSession:
    shop_id: uuid.UUID
    shop_domain: str
    access_token: str


def normalize_shop_domain(raw: str) -> str:
    return raw.strip().replace("https://", "").replace("http://", "").rstrip("/").lower()


class ShopService:
    def get_by_domain(self, session: Session, shop_domain: str) -> Shop | None:
        return session.scalar(select(Shop).where(Shop.shop_domain == normalize_shop_domain(shop_domain)))

    def resolve_shop(self, session: Session, shop_domain: str | None) -> ShopSession:
        if not shop_domain or not shop_domain.strip():
            raise InvalidRequest("Missing shopDomain")

        shop = self.get_by_domain(session, shop_domain)
        if shop is None:
            raise NotFound("Shop not found. Please install the app first.")
        if not shop.access_token:
            raise ShopNotAuthorized("Access token missing. Please reinstall the app.")
        return ShopSession(shop_id=shop.id, shop_domain=shop.shop_domain, access_token=shop.access_token)


shop_service = ShopService()
