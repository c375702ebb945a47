from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import httpx
from opentelemetry import trace

from pricepilot.context import get_correlation_id
from pricepilot.core.config import get_settings
from pricepilot.core.errors import NotFound, PricingError, RemoteMutationFailed, UpstreamUnavailable
from pricepilot.metrics import observe_shopify_request
from pricepilot.shops.service import ShopSession


tracer = trace.get_tracer("pricepilot.integrations.shopify")

_PAGE_SIZE = 250

COLLECTIONS_QUERY = """
query FetchCollections($first: Int!, $after: String) {
    collections(first: $first, after: $after) {
        edges {
            node {
                id
                title
                handle
                productsCount {
                    count
                }
            }
        }
        pageInfo {
            hasNextPage
            endCursor
        }
    }
}
"""

COLLECTION_PRODUCTS_QUERY = """
query CollectionProducts($id: ID!, $first: Int!, $after: String) {
    collection(id: $id) {
        id
        products(first: $first, after: $after) {
            edges {
                node {
                    id
                }
            }
            pageInfo {
                hasNextPage
                endCursor
            }
        }
    }
}
"""

VARIANT_PRODUCT_QUERY = """
query VariantProduct($id: ID!) {
    productVariant(id: $id) {
        id
        product {
            id
        }
    }
}
"""

VARIANT_PRICE_UPDATE_MUTATION = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
    productVariantsBulkUpdate(productId: $productId, variants: $variants) {
        productVariants {
            id
            price
            compareAtPrice
        }
        userErrors {
            field
            message
        }
    }
}
"""


def to_gid(resource: str, value: str | int) -> str:
    raw = str(value).strip()
    if raw.startswith("gid://"):
        return raw
    return f"gid://shopify/{resource}/{raw}"


def from_gid(value: str) -> str:
    return str(value).rsplit("/", 1)[-1]


def format_money(value: Decimal) -> str:
    return f"{value:.2f}"


def error_messages(errors: Any) -> str:
    """Join Shopify ``errors``/``userErrors`` entries, which are usually but not always objects."""
    if not isinstance(errors, list):
        return str(errors)
    return "; ".join(str(error.get("message")) if isinstance(error, dict) else str(error) for error in errors)


@dataclass(slots=True)
class CollectionSummary:
    id: str
    title: str
    handle: str
    products_count: int


class CollectionSource(Protocol):
    async def fetch_collections(self) -> list[CollectionSummary]: ...

    async def fetch_collection_product_ids(self, collection_id: str) -> set[str]: ...


class PriceMutator(Protocol):
    async def update_variant_prices(
        self,
        *,
        product_id: str | None,
        variant_id: str,
        price: Decimal | None,
        compare_price: Decimal | None,
        clear_compare_price: bool = False,
    ) -> None: ...


class ShopifyGateway(CollectionSource, PriceMutator, Protocol):
    pass


class ShopifyAdminClient:
    """Shopify Admin GraphQL client scoped to a single installed shop."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.shop_domain = shop_domain
        self._access_token = access_token
        self._api_version = api_version or settings.shopify_api_version
        self._timeout = timeout if timeout is not None else settings.shopify_request_timeout_seconds
        self._transport = transport

    @classmethod
    def for_shop(cls, shop: ShopSession) -> ShopifyAdminClient:
        return cls(shop.shop_domain, shop.access_token)

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self._api_version}/graphql.json"

    async def fetch_collections(self) -> list[CollectionSummary]:
        collections: list[CollectionSummary] = []
        after: str | None = None
        with tracer.start_as_current_span("shopify.fetch_collections") as span:
            span.set_attribute("shop_domain", self.shop_domain)
            while True:
                data = await self._graphql(
                    "fetch_collections",
                    COLLECTIONS_QUERY,
                    {"first": _PAGE_SIZE, "after": after},
                    error_cls=UpstreamUnavailable,
                )
                connection = data.get("collections") or {}
                for edge in connection.get("edges") or []:
                    node = edge.get("node") or {}
                    collections.append(
                        CollectionSummary(
                            id=str(node.get("id")),
                            title=str(node.get("title") or ""),
                            handle=str(node.get("handle") or ""),
                            products_count=_parse_count(node.get("productsCount")),
                        )
                    )
                after = _next_cursor(connection)
                if after is None:
                    break
            span.set_attribute("collection_count", len(collections))
        return collections

    async def fetch_collection_product_ids(self, collection_id: str) -> set[str]:
        collection_gid = to_gid("Collection", collection_id)
        product_ids: set[str] = set()
        after: str | None = None
        with tracer.start_as_current_span("shopify.fetch_collection_products") as span:
            span.set_attribute("shop_domain", self.shop_domain)
            span.set_attribute("collection_id", collection_gid)
            while True:
                data = await self._graphql(
                    "fetch_collection_products",
                    COLLECTION_PRODUCTS_QUERY,
                    {"id": collection_gid, "first": _PAGE_SIZE, "after": after},
                    error_cls=UpstreamUnavailable,
                )
                collection = data.get("collection")
                if collection is None:
                    raise NotFound(f"collection not found: {collection_id}")
                connection = collection.get("products") or {}
                for edge in connection.get("edges") or []:
                    node = edge.get("node") or {}
                    if node.get("id"):
                        product_ids.add(from_gid(node["id"]))
                after = _next_cursor(connection)
                if after is None:
                    break
            span.set_attribute("product_count", len(product_ids))
        return product_ids

    async def update_variant_prices(
        self,
        *,
        product_id: str | None,
        variant_id: str,
        price: Decimal | None,
        compare_price: Decimal | None,
        clear_compare_price: bool = False,
    ) -> None:
        if not product_id:
            product_id = await self.fetch_variant_product_id(variant_id)

        variant_input: dict[str, Any] = {"id": to_gid("ProductVariant", variant_id)}
        if price is not None:
            variant_input["price"] = format_money(price)
        if compare_price is not None:
            variant_input["compareAtPrice"] = format_money(compare_price)
        elif clear_compare_price:
            variant_input["compareAtPrice"] = None

        with tracer.start_as_current_span("shopify.update_variant_prices") as span:
            span.set_attribute("shop_domain", self.shop_domain)
            span.set_attribute("variant_id", variant_id)
            data = await self._graphql(
                "update_variant_prices",
                VARIANT_PRICE_UPDATE_MUTATION,
                {"productId": to_gid("Product", product_id), "variants": [variant_input]},
                error_cls=RemoteMutationFailed,
            )
            result = data.get("productVariantsBulkUpdate") or {}
            user_errors = result.get("userErrors") or []
            if user_errors:
                raise RemoteMutationFailed(
                    f"productVariantsBulkUpdate failed: {error_messages(user_errors)}",
                    details=user_errors,
                )

    async def fetch_variant_product_id(self, variant_id: str) -> str:
        """Look up the parent product of a variant synced without one."""
        data = await self._graphql(
            "fetch_variant_product",
            VARIANT_PRODUCT_QUERY,
            {"id": to_gid("ProductVariant", variant_id)},
            error_cls=RemoteMutationFailed,
        )
        variant = data.get("productVariant")
        product = variant.get("product") if isinstance(variant, dict) else None
        if not isinstance(product, dict) or not product.get("id"):
            raise RemoteMutationFailed(f"variant {variant_id} not found on Shopify")
        return from_gid(product["id"])

    async def _graphql(
        self,
        operation: str,
        query: str,
        variables: dict[str, Any],
        *,
        error_cls: type[PricingError],
    ) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._access_token,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-Id"] = correlation_id

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.graphql_url, json={"query": query, "variables": variables}, headers=headers)
        except httpx.TimeoutException as exc:
            raise error_cls(f"Shopify {operation} timed out") from exc
        except httpx.RequestError as exc:
            raise error_cls(f"Network error while calling Shopify: {exc}") from exc
        finally:
            observe_shopify_request(operation, time.perf_counter() - started)

        if response.status_code >= 400:
            raise error_cls(f"Shopify API error ({response.status_code})", details=response.text[:500])

        try:
            body = response.json()
        except ValueError as exc:
            raise error_cls("Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise error_cls("Shopify API response must be a JSON object")
        errors = body.get("errors")
        if errors:
            raise error_cls(f"GraphQL errors: {error_messages(errors)}", details=errors)

        data = body.get("data")
        if not isinstance(data, dict):
            raise error_cls("Shopify GraphQL response is missing data")
        return data


def _next_cursor(connection: dict[str, Any]) -> str | None:
    page_info = connection.get("pageInfo") or {}
    if page_info.get("hasNextPage") and page_info.get("endCursor"):
        return str(page_info["endCursor"])
    return None


def _parse_count(raw: Any) -> int:
    if isinstance(raw, dict):
        raw = raw.get("count")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0
