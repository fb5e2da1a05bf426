# storefront/services/caches.py
from storefront.services.cache import TTLCache
from storefront.utils.settings import CART_CACHE_TTL_SECONDS, CATALOG_CACHE_TTL_SECONDS, ORDER_CACHE_TTL_SECONDS

#jedna instancja na proces, wspolna dla wszystkich serwisow
catalog_cache: TTLCache = TTLCache(CATALOG_CACHE_TTL_SECONDS, name="catalog")
cart_cache: TTLCache = TTLCache(CART_CACHE_TTL_SECONDS, name="cart")
order_cache: TTLCache = TTLCache(ORDER_CACHE_TTL_SECONDS, name="orders")


def customer_fragment(customer_id: str) -> str:
    #fragment klucza make_key, "c1" nie zlapie "c10"
    return f'"customer_id": "{customer_id}"'


def invalidate_carts(customer_ids) -> None:
    """Drops cached carts of the given customers."""
    for customer_id in customer_ids:
        cart_cache.invalidate_matching(customer_fragment(customer_id))
