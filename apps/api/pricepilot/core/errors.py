from __future__ import annotations

from typing import Any


class PricingError(Exception):
    """Base error for shop, catalog and bulk pricing failures surfaced to callers."""

    code = "PRICING_ERROR"
    status_code = 400

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class InvalidCampaign(PricingError):
    """Raised for user input errors: empty name, empty scope, zero magnitude."""

    code = "INVALID_CAMPAIGN"
    status_code = 422


class NotFound(PricingError):
    code = "NOT_FOUND"
    status_code = 404


class AlreadyReverted(PricingError):
    code = "ALREADY_REVERTED"
    status_code = 409


class ShopNotAuthorized(PricingError):
    code = "SHOP_NOT_AUTHORIZED"
    status_code = 401


class UpstreamUnavailable(PricingError):
    """Raised when Shopify cannot answer a read the operation depends on."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class RemoteMutationFailed(PricingError):
    """Raised for a single variant whose price mutation was rejected or timed out."""

    code = "REMOTE_MUTATION_FAILED"
    status_code = 502


class InvalidRequest(PricingError):
    code = "INVALID_REQUEST"
    status_code = 400
