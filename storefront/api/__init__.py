# storefront/api/__init__.py
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront.api.routers import carts, categories, checkout, health, orders, products
from storefront.services.cache_bus import CacheInvalidationBus
from storefront.services.caches import cart_cache, catalog_cache, order_cache
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def cache_bus_lifespan(bus: CacheInvalidationBus | None):
    """Listener for peer cache invalidations lives as long as the app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bus is None:
            yield
            return
        for cache in (catalog_cache, cart_cache, order_cache):
            bus.attach(cache)
        bus.start()
        try:
            yield
        finally:
            bus.stop()
            logger.info("Cache invalidation listener stopped")

    return lifespan


def create_app(bus: CacheInvalidationBus | None = None) -> FastAPI:
    app = FastAPI(title="Storefront", version="1.0.0", lifespan=cache_bus_lifespan(bus))
    app.include_router(health.router)
    app.include_router(products.router)
    app.include_router(categories.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(orders.router)
    return app
