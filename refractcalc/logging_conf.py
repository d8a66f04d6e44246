import contextvars
import logging, sys

from .config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] [%(session_id)s] %(message)s"

# set by the request middleware for the duration of one HTTP request
REQUEST_ID = contextvars.ContextVar("request_id", default="-")

class ContextFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID.get()
        if not hasattr(record, "session_id"):
            record.session_id = "-"
        return True

def configure_logging():
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ContextFilter())
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.addHandler(handler)
