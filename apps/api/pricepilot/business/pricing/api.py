from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from pricepilot.business.catalog.schemas import CatalogItemPriceUpdate, CatalogItemThresholdUpdate
from pricepilot.business.catalog.service import catalog_service
from pricepilot.business.pricing.schemas import (
    BulkActionRead,
    BulkUpdatePricesAction,
    BulkUpdatePricesCalculatedAction,
    CampaignCreate,
    CampaignDetail,
    CampaignReport,
    CollectionItemsRead,
    CollectionRead,
    ComputedCampaignCreate,
    ComputedPriceUpdate,
    FetchCollectionProductsAction,
    RevertBulkActionAction,
    ShopifyAction,
    UniformCampaignCreate,
    UpdatePricesAction,
    UpdateThresholdAction,
)
from pricepilot.business.pricing.service import bulk_pricing_engine
from pricepilot.context import reset_shop_domain, set_shop_domain
from pricepilot.core.auth import AuthUser, get_current_user as get_auth_user
from pricepilot.core.database import get_db
from pricepilot.core.errors import RemoteMutationFailed
from pricepilot.shops.service import ShopSession, shop_service


router = APIRouter(prefix="/pricing", tags=["pricing"])
shopify_router = APIRouter(tags=["shopify"])


def get_pricing_shop(
    shop_domain: str | None = Header(default=None, alias="x-shop-domain"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_auth_user),
) -> ShopSession:
    return shop_service.resolve_shop(db, shop_domain or user.shop_domain)


def _raise_for_incomplete_revert(report: CampaignReport) -> None:
    failed = report.failed_items
    if not failed:
        return
    raise RemoteMutationFailed(
        f"Failed to revert {len(failed)} of {len(report.items)} items; retry the revert",
        details={
            "bulk_action_id": str(report.bulk_action.id),
            "failed_item_ids": [str(item.inventory_item_id) for item in failed],
        },
    )


@router.post("/campaigns", response_model=CampaignReport, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
    user: AuthUser = Depends(get_auth_user),
) -> CampaignReport:
    return await bulk_pricing_engine.apply_campaign(db, shop, payload, actor_user_id=user.sub)


@router.post("/campaigns/uniform", response_model=CampaignReport, status_code=status.HTTP_201_CREATED)
async def create_uniform_campaign(
    payload: UniformCampaignCreate,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
    user: AuthUser = Depends(get_auth_user),
) -> CampaignReport:
    return await bulk_pricing_engine.apply_uniform_campaign(db, shop, payload, actor_user_id=user.sub)


@router.post("/campaigns/calculated", response_model=CampaignReport, status_code=status.HTTP_201_CREATED)
async def create_calculated_campaign(
    payload: ComputedCampaignCreate,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
    user: AuthUser = Depends(get_auth_user),
) -> CampaignReport:
    return await bulk_pricing_engine.apply_computed_campaign(db, shop, payload, actor_user_id=user.sub)


@router.get("/campaigns", response_model=list[BulkActionRead])
def list_campaigns(
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
) -> list[BulkActionRead]:
    return bulk_pricing_engine.list_campaigns(db, shop)


@router.get("/campaigns/{bulk_action_id}", response_model=CampaignDetail)
def get_campaign(
    bulk_action_id: uuid.UUID,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
) -> CampaignDetail:
    return bulk_pricing_engine.get_campaign_detail(db, shop, bulk_action_id)


@router.post("/campaigns/{bulk_action_id}/revert", response_model=CampaignReport)
async def revert_campaign(
    bulk_action_id: uuid.UUID,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
    user: AuthUser = Depends(get_auth_user),
) -> CampaignReport:
    report = await bulk_pricing_engine.revert_campaign(db, shop, bulk_action_id, actor_user_id=user.sub)
    _raise_for_incomplete_revert(report)
    return report


@router.get("/collections", response_model=list[CollectionRead])
async def list_collections(shop: ShopSession = Depends(get_pricing_shop)) -> list[CollectionRead]:
    return await bulk_pricing_engine.list_collections(shop)


@router.get("/collections/{collection_id:path}/items", response_model=CollectionItemsRead)
async def list_collection_items(
    collection_id: str,
    db: Session = Depends(get_db),
    shop: ShopSession = Depends(get_pricing_shop),
) -> CollectionItemsRead:
    return await bulk_pricing_engine.collection_item_ids(db, shop, collection_id)


ActionHandler = Callable[[dict[str, Any], Session, ShopSession, AuthUser], Awaitable[dict[str, Any]]]


def _report_body(report: CampaignReport) -> dict[str, Any]:
    return {
        "success": True,
        "bulkActionId": str(report.bulk_action.id),
        "failedItemIds": [str(item.inventory_item_id) for item in report.failed_items],
    }


async def _update_prices(body: dict[str, Any], db: Session, shop: ShopSession, user: AuthUser) -> dict[str, Any]:
    action = UpdatePricesAction.model_validate(body)
    await catalog_service.update_item_prices(
        db,
        shop,
        action.item_id,
        CatalogItemPriceUpdate(price=action.price, compare_at_price=action.compare_at_price),
        actor_user_id=user.sub,
    )
    return {"success": True}


async def _update_threshold(body: dict[str, Any], db: Session, shop: ShopSession, user: AuthUser) -> dict[str, Any]:
    action = UpdateThresholdAction.model_validate(body)
    await run_in_threadpool(
        catalog_service.update_threshold,
        db,
        shop,
        action.item_id,
        CatalogItemThresholdUpdate(threshold=action.threshold),
        actor_user_id=user.sub,
    )
    return {"message": "Threshold updated successfully"}


async def _bulk_update_prices(body: dict[str, Any], db: Session, shop: ShopSession, user: AuthUser) -> dict[str, Any]:
    action = BulkUpdatePricesAction.model_validate(body)
    report = await bulk_pricing_engine.apply_uniform_campaign(
        db,
        shop,
        UniformCampaignCreate(
            name=action.action_name,
            item_ids=action.product_ids,
            price=action.price,
            compare_price=action.compare_at_price,
        ),
        actor_user_id=user.sub,
    )
    return _report_body(report)


async def _bulk_update_prices_calculated(
    body: dict[str, Any],
    db: Session,
    shop: ShopSession,
    user: AuthUser,
) -> dict[str, Any]:
    action = BulkUpdatePricesCalculatedAction.model_validate(body)
    report = await bulk_pricing_engine.apply_computed_campaign(
        db,
        shop,
        ComputedCampaignCreate(
            name=action.action_name,
            updates=[
                ComputedPriceUpdate(
                    item_id=update.product_id,
                    new_price=update.new_price,
                    new_compare_price=update.new_compare_price,
                )
                for update in action.price_updates
            ],
        ),
        actor_user_id=user.sub,
    )
    return _report_body(report)


async def _revert_bulk_action(body: dict[str, Any], db: Session, shop: ShopSession, user: AuthUser) -> dict[str, Any]:
    action = RevertBulkActionAction.model_validate(body)
    report = await bulk_pricing_engine.revert_campaign(db, shop, action.bulk_action_id, actor_user_id=user.sub)
    _raise_for_incomplete_revert(report)
    return {"success": True}


async def _fetch_collections(body: dict[str, Any], db: Session, shop: ShopSession, user: AuthUser) -> dict[str, Any]:
    collections = await bulk_pricing_engine.list_collections(shop)
    return {"collections": [collection.model_dump() for collection in collections]}


async def _fetch_collection_products(
    body: dict[str, Any],
    db: Session,
    shop: ShopSession,
    user: AuthUser,
) -> dict[str, Any]:
    action = FetchCollectionProductsAction.model_validate(body)
    result = await bulk_pricing_engine.collection_item_ids(db, shop, action.collection_id)
    return {"products": [{"id": str(item_id)} for item_id in result.item_ids]}


_ACTIONS: dict[str, ActionHandler] = {
    "update-threshold": _update_threshold,
    "update-prices": _update_prices,
    "bulk-update-prices": _bulk_update_prices,
    "bulk-update-prices-calculated": _bulk_update_prices_calculated,
    "revert-bulk-action": _revert_bulk_action,
    "fetch-collections": _fetch_collections,
    "fetch-collection-products": _fetch_collection_products,
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@shopify_router.post("/shopify")
async def dispatch_shopify_action(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_auth_user),
) -> Any:
    """Action-style endpoint used by the embedded admin UI."""
    try:
        body = await request.json() if await request.body() else {}
    except ValueError:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON in request body")
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON in request body")

    handler = _ACTIONS.get(str(body.get("action") or ""))
    if handler is None:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid action")

    try:
        envelope = ShopifyAction.model_validate(body)
    except ValidationError:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid action")

    shop_domain = envelope.shop_domain or user.shop_domain
    token = set_shop_domain(shop_domain)
    try:
        shop = await run_in_threadpool(shop_service.resolve_shop, db, shop_domain)
        return await handler(body, db, shop, user)
    except ValidationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, _validation_message(exc))
    finally:
        reset_shop_domain(token)


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid request")
    return f"{location}: {message}" if location else str(message)
