# storefront/utils/settings.py
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", 5000))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", 10))

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
LOCK_BACKEND = os.getenv("LOCK_BACKEND", "local")  # local | redis
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", 5))
LOCK_TTL_SECONDS = int(os.getenv("LOCK_TTL_SECONDS", 30))

CATALOG_CACHE_TTL_SECONDS = int(os.getenv("CATALOG_CACHE_TTL_SECONDS", 5 * 60))
CART_CACHE_TTL_SECONDS = int(os.getenv("CART_CACHE_TTL_SECONDS", 2 * 60))
ORDER_CACHE_TTL_SECONDS = int(os.getenv("ORDER_CACHE_TTL_SECONDS", 5 * 60))
CACHE_INVALIDATION_CHANNEL = os.getenv("CACHE_INVALIDATION_CHANNEL", "")

CART_TTL_DAYS = int(os.getenv("CART_TTL_DAYS", 7))
MAX_CART_QUANTITY = int(os.getenv("MAX_CART_QUANTITY", 100))
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 5))
PRICE_DECREASE_BLOCKS_CHECKOUT = _flag("PRICE_DECREASE_BLOCKS_CHECKOUT", "true")

FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "100"))
FLAT_SHIPPING_FEE = Decimal(os.getenv("FLAT_SHIPPING_FEE", "10"))
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # json | text
