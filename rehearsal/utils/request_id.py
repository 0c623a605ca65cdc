from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id(prefix: str | None = None) -> str:
    """Generate a random request id, optionally tagged with the trigger that owns it."""
    value = uuid.uuid4().hex
    return f"{prefix}-{value}" if prefix else value


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    """Return current request id if set."""
    return _request_id_ctx.get()


@contextmanager
def bound_request_id(request_id: str) -> Iterator[str]:
    """Bind `request_id` for the duration of a block, restoring the previous value after."""
    token = _request_id_ctx.set(request_id)
    try:
        yield request_id
    finally:
        _request_id_ctx.reset(token)
