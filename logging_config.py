import logging
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s user=%(user_id)s] %(message)s"


@dataclass
class RequestContext:
    request_id: str
    user_id: Optional[str] = None
    path: str = ""


_ctx: ContextVar[Optional[RequestContext]] = ContextVar("request_context", default=None)


def set_context(*, request_id: str, path: str = "", user_id: Optional[str] = None):
    return _ctx.set(RequestContext(request_id=request_id, user_id=user_id, path=path))


def bind_user(user_id: str) -> None:
    ctx = _ctx.get()
    if ctx is not None:
        ctx.user_id = user_id


def reset_context(token) -> None:
    _ctx.reset(token)


def get_context() -> Optional[RequestContext]:
    return _ctx.get()


def new_request_id() -> str:
    return uuid.uuid4().hex


class RequestContextFilter(logging.Filter):
    """Inject request context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        record.request_id = ctx.request_id if ctx else "-"
        record.user_id = (ctx.user_id or "-") if ctx else "-"
        record.path = ctx.path if ctx else ""
        return True


_handler: Optional[logging.Handler] = None


def configure_logging(level: Optional[str] = None) -> None:
    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler()
    _handler.addFilter(RequestContextFilter())
    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(_handler)
    root.setLevel(level or config.settings.log_level)
