# storefront/utils/logging.py
import logging
import sys

from pythonjsonlogger import jsonlogger

from storefront.utils.settings import LOG_LEVEL, LOG_FORMAT

SERVICE_NAME = "storefront"


class StorefrontJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter: level/logger/service on every record, metadata from extra."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["service"] = SERVICE_NAME
        log_record["level"] = record.levelname
        log_record["logger"] = record.name


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel((level or LOG_LEVEL).upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if (fmt or LOG_FORMAT) == "json":
        handler.setFormatter(StorefrontJsonFormatter("%(message)s"))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    root_logger.addHandler(handler)

    # ograniczamy szum z bibliotek
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
