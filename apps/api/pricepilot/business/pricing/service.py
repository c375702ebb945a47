from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool
from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pricepilot import audit, events
from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.catalog.service import CatalogService
from pricepilot.business.pricing.calculator import compute_new_prices, quantize_price
from pricepilot.business.pricing.models import BulkAction, BulkActionItem
from pricepilot.business.pricing.repository import BulkActionLedger
from pricepilot.business.pricing.schemas import (
    BulkActionItemRead,
    BulkActionRead,
    CampaignCreate,
    CampaignDetail,
    CampaignReport,
    CollectionItemsRead,
    CollectionRead,
    CollectionScope,
    ComputedCampaignCreate,
    ItemMutationResult,
    UniformCampaignCreate,
)
from pricepilot.business.pricing.scope import ScopeResolver
from pricepilot.core.config import get_settings
from pricepilot.core.errors import AlreadyReverted, InvalidCampaign, NotFound, PricingError, UpstreamUnavailable
from pricepilot.integrations.shopify.client import ShopifyAdminClient, ShopifyGateway
from pricepilot.metrics import (
    observe_campaign_applied,
    observe_campaign_failure,
    observe_campaign_reverted,
    observe_item_mutation,
)
from pricepilot.shops.service import ShopSession


logger = logging.getLogger("pricepilot.pricing")
tracer = trace.get_tracer("pricepilot.pricing")

_ZERO_PRICE = Decimal("0.00")


@dataclass(slots=True)
class _PriceChange:
    """One item's target prices, captured before any remote call is issued."""

    item: CatalogItem
    item_id: uuid.UUID
    product_id: str | None
    variant_id: str | None
    current_price: Decimal | None
    current_compare_price: Decimal | None
    new_price: Decimal | None
    new_compare_price: Decimal | None

    @classmethod
    def for_item(cls, item: CatalogItem, new_price: Decimal | None, new_compare_price: Decimal | None) -> _PriceChange:
        return cls(
            item=item,
            item_id=item.id,
            product_id=item.external_product_id,
            variant_id=item.external_variant_id,
            current_price=item.price,
            current_compare_price=item.compare_at_price,
            new_price=new_price,
            new_compare_price=new_compare_price,
        )

    @property
    def price_changed(self) -> bool:
        return self.new_price != self.current_price

    @property
    def compare_price_changed(self) -> bool:
        return self.new_compare_price != self.current_compare_price


def _require_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        observe_campaign_failure("invalid_name")
        raise InvalidCampaign("Campaign name is required")
    return cleaned


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class BulkPricingEngine:
    ledger: BulkActionLedger = BulkActionLedger()
    catalog: CatalogService = field(default_factory=CatalogService)
    scope_resolver: ScopeResolver = field(default_factory=ScopeResolver)
    client_factory: Callable[[ShopSession], ShopifyGateway] = ShopifyAdminClient.for_shop

    async def apply_campaign(
        self,
        session: Session,
        shop: ShopSession,
        payload: CampaignCreate,
        *,
        actor_user_id: str | None = None,
    ) -> CampaignReport:
        """Resolve a scope, price every item with the rule and push the results."""
        name = _require_name(payload.name)
        rule = payload.rule
        if rule.magnitude <= 0:
            observe_campaign_failure("invalid_magnitude")
            raise InvalidCampaign("Adjustment magnitude must be greater than zero")

        client = self.client_factory(shop)
        try:
            item_ids = await self.scope_resolver.resolve(session, shop.shop_id, payload.scope, client)
        except (UpstreamUnavailable, NotFound) as exc:
            observe_campaign_failure("scope_unresolved")
            logger.warning(
                "pricing.scope_resolution_failed",
                extra={"shop_domain": shop.shop_domain, "scope_mode": payload.scope.mode, "error": exc.message},
            )
            raise

        items = await run_in_threadpool(self.catalog.get_items, session, shop.shop_id, item_ids)
        changes = []
        for item in items:
            new_price, new_compare_price = compute_new_prices(item.price, item.compare_at_price, rule)
            changes.append(_PriceChange.for_item(item, new_price, new_compare_price))

        bulk_action = BulkAction(
            shop_id=shop.shop_id,
            name=name,
            action_type="rule",
            new_price=None,
            new_compare_at_price=None,
            rule_snapshot={
                "scope": payload.scope.model_dump(mode="json"),
                "rule": rule.model_dump(mode="json"),
            },
            created_by=actor_user_id,
        )
        return await self._apply(session, shop, client, bulk_action, changes, actor_user_id=actor_user_id)

    async def apply_uniform_campaign(
        self,
        session: Session,
        shop: ShopSession,
        payload: UniformCampaignCreate,
        *,
        actor_user_id: str | None = None,
    ) -> CampaignReport:
        """Set one price and/or compare-at price on every selected item."""
        name = _require_name(payload.name)
        if payload.price is None and payload.compare_price is None:
            observe_campaign_failure("missing_price")
            raise InvalidCampaign("Please enter at least one price")

        price = quantize_price(payload.price)
        compare_price = quantize_price(payload.compare_price)
        items = await run_in_threadpool(self.catalog.get_items, session, shop.shop_id, payload.item_ids)
        changes = [
            _PriceChange.for_item(
                item,
                price if price is not None else item.price,
                compare_price if compare_price is not None else item.compare_at_price,
            )
            for item in items
        ]

        bulk_action = BulkAction(
            shop_id=shop.shop_id,
            name=name,
            action_type="uniform",
            new_price=price,
            new_compare_at_price=compare_price,
            created_by=actor_user_id,
        )
        return await self._apply(
            session,
            shop,
            self.client_factory(shop),
            bulk_action,
            changes,
            actor_user_id=actor_user_id,
        )

    async def apply_computed_campaign(
        self,
        session: Session,
        shop: ShopSession,
        payload: ComputedCampaignCreate,
        *,
        actor_user_id: str | None = None,
    ) -> CampaignReport:
        """Apply caller-computed per-item prices; a missing value keeps the current one."""
        name = _require_name(payload.name)

        requested = {update.item_id: update for update in payload.updates}
        items = await run_in_threadpool(self.catalog.get_items, session, shop.shop_id, list(requested))
        changes = []
        for item in items:
            update = requested[item.id]
            new_price = quantize_price(update.new_price) if update.new_price is not None else item.price
            new_compare_price = (
                quantize_price(update.new_compare_price)
                if update.new_compare_price is not None
                else item.compare_at_price
            )
            changes.append(_PriceChange.for_item(item, new_price, new_compare_price))

        bulk_action = BulkAction(
            shop_id=shop.shop_id,
            name=name,
            action_type="calculated",
            new_price=None,
            new_compare_at_price=None,
            created_by=actor_user_id,
        )
        return await self._apply(
            session,
            shop,
            self.client_factory(shop),
            bulk_action,
            changes,
            actor_user_id=actor_user_id,
        )

    async def revert_campaign(
        self,
        session: Session,
        shop: ShopSession,
        bulk_action_id: uuid.UUID,
        *,
        actor_user_id: str | None = None,
    ) -> CampaignReport:
        """Restore every item of a campaign to the prices recorded when it was applied.

        The campaign is marked reverted only when every item was restored. Items
        whose remote restore failed keep their current local prices so that the
        revert can simply be retried.
        """
        bulk_action, changes = await run_in_threadpool(self._load_revert, session, shop, bulk_action_id)

        client = self.client_factory(shop)
        with tracer.start_as_current_span("pricing.revert_campaign") as span:
            span.set_attribute("bulk_action_id", str(bulk_action.id))
            span.set_attribute("item_count", len(changes))
            results = await self._fan_out(client, changes, operation="revert")

            failed = [result for result in results if result.outcome == "failed"]
            await run_in_threadpool(
                self._settle,
                session,
                bulk_action,
                changes,
                results,
                reverted_at=None if failed else _utcnow(),
            )
            span.set_attribute("failed_count", len(failed))

        self._observe_outcomes("revert", results)
        log_fields = {
            "shop_domain": shop.shop_domain,
            "bulk_action_id": str(bulk_action.id),
            "item_count": len(results),
            "failed_count": len(failed),
        }
        if failed:
            observe_campaign_failure("revert_incomplete")
            logger.warning("pricing.bulk_action_revert_incomplete", extra=log_fields)
            return CampaignReport(bulk_action=BulkActionRead.model_validate(bulk_action), items=results)

        observe_campaign_reverted()
        logger.info("pricing.bulk_action_reverted", extra=log_fields)
        audit.record(
            actor_user_id=actor_user_id or "anonymous",
            entity_type="pricing.bulk_action",
            entity_id=str(bulk_action.id),
            action="pricing.bulk_action.reverted",
            before={"reverted_at": None},
            after={"reverted_at": bulk_action.reverted_at.isoformat() if bulk_action.reverted_at else None},
            shop_domain=shop.shop_domain,
        )
        events.publish(
            {
                "event_type": "pricing.bulk_action.reverted",
                "bulk_action_id": str(bulk_action.id),
                "shop_id": str(shop.shop_id),
                "item_count": len(results),
            }
        )
        return CampaignReport(bulk_action=BulkActionRead.model_validate(bulk_action), items=results)

    def _load_revert(
        self,
        session: Session,
        shop: ShopSession,
        bulk_action_id: uuid.UUID,
    ) -> tuple[BulkAction, list[_PriceChange]]:
        bulk_action = self.ledger.get_campaign(session, shop.shop_id, bulk_action_id)
        if bulk_action is None:
            raise NotFound("Bulk action not found")
        if bulk_action.is_reverted:
            observe_campaign_failure("already_reverted")
            raise AlreadyReverted("Bulk action already reverted")

        snapshots = self.ledger.get_items(session, bulk_action.id)
        items_by_id = {
            item.id: item
            for item in self.catalog.get_items(session, shop.shop_id, [row.inventory_item_id for row in snapshots])
        }
        changes = [
            _PriceChange.for_item(
                items_by_id[row.inventory_item_id],
                row.original_price,
                row.original_compare_at_price,
            )
            for row in snapshots
            if row.inventory_item_id in items_by_id
        ]
        return bulk_action, changes

    def _record(self, session: Session, bulk_action: BulkAction, snapshots: Sequence[BulkActionItem]) -> None:
        try:
            self.ledger.create_campaign(session, bulk_action, snapshots)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="bulk action conflict")

    def _settle(
        self,
        session: Session,
        bulk_action: BulkAction,
        changes: Sequence[_PriceChange],
        results: Sequence[ItemMutationResult],
        *,
        reverted_at: datetime | None = None,
    ) -> None:
        """Write local prices for items Shopify accepted (or that only live locally)."""
        outcomes = {result.inventory_item_id: result.outcome for result in results}
        for change in changes:
            if outcomes.get(change.item_id) in {"updated", "local_only"}:
                self.catalog.apply_prices(session, change.item, change.new_price, change.new_compare_price)
        if reverted_at is not None:
            self.ledger.mark_reverted(session, bulk_action, reverted_at)
        session.commit()
        session.refresh(bulk_action)

    def list_campaigns(self, session: Session, shop: ShopSession) -> list[BulkActionRead]:
        return [BulkActionRead.model_validate(row) for row in self.ledger.list_campaigns(session, shop.shop_id)]

    def get_campaign_detail(self, session: Session, shop: ShopSession, bulk_action_id: uuid.UUID) -> CampaignDetail:
        bulk_action = self.ledger.get_campaign(session, shop.shop_id, bulk_action_id)
        if bulk_action is None:
            raise NotFound("Bulk action not found")

        items: list[BulkActionItemRead] = []
        for snapshot, catalog_item in self.ledger.get_items_with_catalog(session, bulk_action.id):
            row = BulkActionItemRead.model_validate(snapshot)
            if catalog_item is not None:
                row.title = catalog_item.title
                row.sku = catalog_item.sku
            items.append(row)
        return CampaignDetail(bulk_action=BulkActionRead.model_validate(bulk_action), items=items)

    async def list_collections(self, shop: ShopSession) -> list[CollectionRead]:
        collections = await self.client_factory(shop).fetch_collections()
        return [CollectionRead.model_validate(collection) for collection in collections]

    async def collection_item_ids(self, session: Session, shop: ShopSession, collection_id: str) -> CollectionItemsRead:
        item_ids = await self.scope_resolver.resolve(
            session,
            shop.shop_id,
            CollectionScope(collection_ids=[collection_id]),
            self.client_factory(shop),
        )
        return CollectionItemsRead(collection_id=collection_id, item_ids=sorted(item_ids, key=str))

    async def _apply(
        self,
        session: Session,
        shop: ShopSession,
        client: ShopifyGateway,
        bulk_action: BulkAction,
        changes: Sequence[_PriceChange],
        *,
        actor_user_id: str | None,
    ) -> CampaignReport:
        if not changes:
            observe_campaign_failure("empty_scope")
            raise InvalidCampaign("No products matched the selected scope")

        bulk_action.item_count = len(changes)
        snapshots = [
            BulkActionItem(
                inventory_item_id=change.item_id,
                original_price=change.current_price,
                original_compare_at_price=change.current_compare_price,
                new_price=change.new_price,
                new_compare_at_price=change.new_compare_price,
            )
            for change in changes
        ]

        with tracer.start_as_current_span("pricing.apply_campaign") as span:
            span.set_attribute("action_type", bulk_action.action_type)
            span.set_attribute("item_count", len(changes))

            # Snapshots are durable before the first remote mutation is issued.
            await run_in_threadpool(self._record, session, bulk_action, snapshots)
            span.set_attribute("bulk_action_id", str(bulk_action.id))

            results = await self._fan_out(client, changes, operation="apply")
            await run_in_threadpool(self._settle, session, bulk_action, changes, results)

        failed_count = sum(1 for result in results if result.outcome == "failed")
        self._observe_outcomes("apply", results)
        observe_campaign_applied(bulk_action.action_type)
        logger.info(
            "pricing.bulk_action_applied",
            extra={
                "shop_domain": shop.shop_domain,
                "bulk_action_id": str(bulk_action.id),
                "action_type": bulk_action.action_type,
                "item_count": bulk_action.item_count,
                "failed_count": failed_count,
            },
        )
        audit.record(
            actor_user_id=actor_user_id or "anonymous",
            entity_type="pricing.bulk_action",
            entity_id=str(bulk_action.id),
            action="pricing.bulk_action.applied",
            before=None,
            after={
                "name": bulk_action.name,
                "action_type": bulk_action.action_type,
                "item_count": bulk_action.item_count,
                "new_price": bulk_action.new_price,
                "new_compare_at_price": bulk_action.new_compare_at_price,
            },
            shop_domain=shop.shop_domain,
        )
        events.publish(
            {
                "event_type": "pricing.bulk_action.applied",
                "bulk_action_id": str(bulk_action.id),
                "shop_id": str(shop.shop_id),
                "action_type": bulk_action.action_type,
                "item_count": bulk_action.item_count,
                "failed_count": failed_count,
            }
        )
        return CampaignReport(bulk_action=BulkActionRead.model_validate(bulk_action), items=results)

    async def _fan_out(
        self,
        client: ShopifyGateway,
        changes: Sequence[_PriceChange],
        *,
        operation: str,
    ) -> list[ItemMutationResult]:
        settings = get_settings()
        semaphore = asyncio.Semaphore(max(1, settings.shopify_max_concurrency))
        timeout = settings.shopify_request_timeout_seconds

        def failed(change: _PriceChange, error: str, *, unexpected: bool = False) -> ItemMutationResult:
            logger.warning(
                "pricing.item_mutation_failed",
                exc_info=unexpected,
                extra={
                    "operation": operation,
                    "item_id": str(change.item_id),
                    "variant_id": change.variant_id,
                    "error": error,
                },
            )
            return ItemMutationResult(
                inventory_item_id=change.item_id,
                variant_id=change.variant_id,
                outcome="failed",
                error=error,
            )

        async def push(change: _PriceChange) -> ItemMutationResult:
            if operation == "apply" and not (change.price_changed or change.compare_price_changed):
                return ItemMutationResult(inventory_item_id=change.item_id, variant_id=change.variant_id, outcome="unchanged")
            if not change.variant_id:
                return ItemMutationResult(inventory_item_id=change.item_id, variant_id=None, outcome="local_only")

            async with semaphore:
                try:
                    await asyncio.wait_for(self._mutate(client, change, operation=operation), timeout=timeout)
                except PricingError as exc:
                    return failed(change, exc.message)
                except asyncio.TimeoutError:
                    return failed(change, "Shopify mutation timed out")
                except Exception as exc:
                    # One item's fault never aborts a batch whose ledger is already committed.
                    return failed(change, f"Unexpected error: {exc}", unexpected=True)
            return ItemMutationResult(inventory_item_id=change.item_id, variant_id=change.variant_id, outcome="updated")

        return list(await asyncio.gather(*(push(change) for change in changes)))

    async def _mutate(self, client: ShopifyGateway, change: _PriceChange, *, operation: str) -> None:
        variant_id = str(change.variant_id)
        if operation == "revert":
            # A missing original price is restored as zero; a missing compare-at price is cleared.
            await client.update_variant_prices(
                product_id=change.product_id,
                variant_id=variant_id,
                price=change.new_price if change.new_price is not None else _ZERO_PRICE,
                compare_price=change.new_compare_price,
                clear_compare_price=change.new_compare_price is None,
            )
            return

        await client.update_variant_prices(
            product_id=change.product_id,
            variant_id=variant_id,
            price=change.new_price if change.price_changed else None,
            compare_price=change.new_compare_price if change.compare_price_changed else None,
        )

    @staticmethod
    def _observe_outcomes(operation: str, results: Sequence[ItemMutationResult]) -> None:
        for outcome, count in Counter(result.outcome for result in results).items():
            observe_item_mutation(operation, outcome, count)


bulk_pricing_engine = BulkPricingEngine()
