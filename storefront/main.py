# storefront/main.py
import uvicorn

from storefront.api import create_app
from storefront.data.database import init_db
from storefront.services.cache_bus import CacheInvalidationBus
from storefront.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

init_db()
logger.info("Database tables ready")

app = create_app(bus=CacheInvalidationBus.from_settings())


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
