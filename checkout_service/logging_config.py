import logging

from . import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] [checkout-service] [cid=%(correlation_id)s] %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Give records logged without ``extra={"correlation_id": ...}`` a placeholder."""

    def filter(self, record):
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def setup_logging(level: str = config.LOG_LEVEL):
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())
