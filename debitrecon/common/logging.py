"""JSON logs on stdout, tagged with the request trace id and the batch being worked on."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from pythonjsonlogger.json import JsonFormatter

from debitrecon.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
batch_id_ctx: ContextVar[str] = ContextVar("batch_id", default="")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(batch_id)s %(message)s"


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.batch_id = batch_id_ctx.get()
        return True


@contextmanager
def bound_batch(batch_id: int) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``batch_id``."""

    token = batch_id_ctx.set(str(batch_id))
    try:
        yield
    finally:
        batch_id_ctx.reset(token)


def configure_logging(level: str | None = None) -> None:
    """Route all loggers to a single JSON stdout handler. Safe to call twice."""

    context_filter = ContextFilter()
    stdout = logging.StreamHandler(sys.stdout)
    stdout.addFilter(context_filter)
    stdout.setFormatter(JsonFormatter(LOG_FORMAT, rename_fields={"asctime": "timestamp", "levelname": "level"}))

    root = logging.getLogger()
    root.handlers = [stdout]
    root.setLevel(level or settings.log_level)
    # Kafka client chatter drowns batch logs at INFO.
    logging.getLogger("aiokafka").setLevel(logging.WARNING)


logger = logging.getLogger("debitrecon")
