from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from pricepilot.business.catalog.schemas import CatalogItemPriceUpdate, CatalogItemRead, CatalogItemThresholdUpdate
from pricepilot.business.catalog.service import catalog_service
from pricepilot.core.auth import AuthUser, get_current_user as get_auth_user
from pricepilot.core.database import get_db
from pricepilot.shops.service import ShopSession, shop_service


router = APIRouter(prefix="/catalog", tags=["catalog"])


def get_catalog_shop(
    shop_domain: str | None = Header(default=None, alias="x-shop-domain"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_auth_user),
) -> ShopSession:
    return shop_service.resolve_shop(db, shop_domain or user.shop_domain)


@router.patch("/items/{item_id}/prices", response_model=CatalogItemRead)
async def update_item_prices(
    item_id: uuid.UUID,
    payload: CatalogItemPriceUpdate,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_catalog_shop),
    user: AuthUser = Depends(get_auth_user),
) -> CatalogItemRead:
    return await catalog_service.update_item_prices(db, shop, item_id, payload, actor_user_id=user.sub)


@router.patch("/items/{item_id}/threshold", response_model=CatalogItemRead)
def update_item_threshold(
    item_id: uuid.UUID,
    payload: CatalogItemThresholdUpdate,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_catalog_shop),
    user: AuthUser = Depends(get_auth_user),
) -> CatalogItemRead:
    return catalog_service.update_threshold(db, shop, item_id, payload, actor_user_id=user.sub)
