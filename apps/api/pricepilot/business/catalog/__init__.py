from pricepilot.business.catalog.api import router
from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.catalog.schemas import (
    CatalogItemPriceUpdate,
    CatalogItemRead,
    CatalogItemThresholdUpdate,
    CatalogItemUpsert,
)
from pricepilot.business.catalog.service import CatalogService, catalog_service

__all__ = [
    "router",
    "CatalogItem",
    "CatalogItemUpsert",
    "CatalogItemRead",
    "CatalogItemPriceUpdate",
    "CatalogItemThresholdUpdate",
    "CatalogService",
    "catalog_service",
]
