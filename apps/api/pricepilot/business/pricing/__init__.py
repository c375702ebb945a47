from pricepilot.business.pricing.calculator import AdjustmentRule, compute_new_price, compute_new_prices, quantize_price
from pricepilot.business.pricing.models import BulkAction, BulkActionItem

__all__ = [
    "AdjustmentRule",
    "BulkAction",
    "BulkActionItem",
    "compute_new_price",
    "compute_new_prices",
    "quantize_price",
]
