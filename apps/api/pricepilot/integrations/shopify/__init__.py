from pricepilot.integrations.shopify.client import (
    CollectionSource,
    CollectionSummary,
    PriceMutator,
    ShopifyAdminClient,
    ShopifyGateway,
    from_gid,
    to_gid,
)

__all__ = [
    "CollectionSource",
    "CollectionSummary",
    "PriceMutator",
    "ShopifyAdminClient",
    "ShopifyGateway",
    "from_gid",
    "to_gid",
]
