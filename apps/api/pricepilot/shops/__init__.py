from pricepilot.shops.models import Shop
from pricepilot.shops.service import ShopService, ShopSession, normalize_shop_domain, shop_service

__all__ = ["Shop", "ShopService", "ShopSession", "normalize_shop_domain", "shop_service"]
