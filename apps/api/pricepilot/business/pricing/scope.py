from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from fastapi.concurrency import run_in_threadpool
from opentelemetry import trace
from sqlalchemy.orm import Session

from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.catalog.service import CatalogService
from pricepilot.business.pricing.schemas import AllScope, CollectionScope, ExplicitScope, ScopeSpec, VendorScope
from pricepilot.integrations.shopify.client import CollectionSource


logger = logging.getLogger("pricepilot.pricing.scope")
tracer = trace.get_tracer("pricepilot.pricing")

_VENDOR_SEPARATOR = " - "


def vendor_label(item: CatalogItem) -> str | None:
    """Vendor of an item: the synced vendor field, else the ``"Vendor - Title"`` prefix."""
    if item.vendor:
        return item.vendor
    title = item.title or ""
    if _VENDOR_SEPARATOR not in title:
        return None
    return title.split(_VENDOR_SEPARATOR, 1)[0]


@dataclass(slots=True)
class ScopeResolver:
    catalog: CatalogService = field(default_factory=CatalogService)

    async def resolve(
        self,
        session: Session,
        shop_id: uuid.UUID,
        scope: ScopeSpec,
        collections: CollectionSource,
    ) -> set[uuid.UUID]:
        """Turn a scope selection into the set of catalog item ids it covers.

        Collection lookups propagate ``UpstreamUnavailable`` and ``NotFound``
        unchanged; a campaign never proceeds on a partially resolved scope.
        """
        with tracer.start_as_current_span("pricing.resolve_scope") as span:
            span.set_attribute("scope_mode", scope.mode)
            if isinstance(scope, CollectionScope):
                resolved = await self._resolve_collections(session, shop_id, scope.collection_ids, collections)
            else:
                resolved = await run_in_threadpool(self._resolve_local, session, shop_id, scope)
            span.set_attribute("item_count", len(resolved))

        logger.info("pricing.scope_resolved", extra={"scope_mode": scope.mode, "item_count": len(resolved)})
        return resolved

    def _resolve_local(self, session: Session, shop_id: uuid.UUID, scope: ScopeSpec) -> set[uuid.UUID]:
        if isinstance(scope, AllScope):
            return {item.id for item in self.catalog.list_all_items(session, shop_id)}
        if isinstance(scope, ExplicitScope):
            return {item.id for item in self.catalog.get_items(session, shop_id, scope.ids)}
        if isinstance(scope, VendorScope):
            return {item.id for item in self.catalog.list_all_items(session, shop_id) if vendor_label(item) == scope.vendor}
        raise TypeError(f"unsupported scope: {scope!r}")

    async def _resolve_collections(
        self,
        session: Session,
        shop_id: uuid.UUID,
        collection_ids: list[str],
        collections: CollectionSource,
    ) -> set[uuid.UUID]:
        resolved: set[uuid.UUID] = set()
        for collection_id in dict.fromkeys(collection_ids):
            product_ids = await collections.fetch_collection_product_ids(collection_id)
            resolved |= await run_in_threadpool(
                self.catalog.list_ids_by_external_products,
                session,
                shop_id,
                product_ids,
            )
        return resolved
