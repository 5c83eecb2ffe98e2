import logging
import uuid
from contextvars import ContextVar

#: correlation id of the update currently being handled
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = request_id_var.get()
        return True


def setup_logging(level="INFO"):
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    request_filter = RequestIdFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(request_filter)
    # telethon is chatty at INFO about reconnects
    logging.getLogger("telethon").setLevel(logging.WARNING)
