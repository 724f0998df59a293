"""Structured JSON logging with request and payment context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from payrail.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
provider_ctx: ContextVar[str] = ContextVar("provider", default="")
external_id_ctx: ContextVar[str] = ContextVar("external_id", default="")

# Client libraries that log full request lines at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "stripe")


class ContextFilter(logging.Filter):
    """Stamp every record with the service, correlation id and payment being handled."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.provider = provider_ctx.get()
        record.external_id = external_id_ctx.get()
        return True


def bind_payment(provider: str, external_id: str | None = None) -> None:
    """Attach the payment being worked on to log lines for the rest of this task."""

    provider_ctx.set(provider)
    if external_id:
        external_id_ctx.set(external_id)


def configure_logging(level: str | None = None) -> None:
    """Configure root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s "
            "%(provider)s %(external_id)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("payrail")
