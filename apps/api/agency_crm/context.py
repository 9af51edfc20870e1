from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("agency_crm_correlation_id", default=None)
_actor_user_id: ContextVar[str | None] = ContextVar("agency_crm_actor_user_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def get_actor_user_id() -> str | None:
    return _actor_user_id.get()


def set_actor_user_id(value: str | None) -> None:
    """Attach the authenticated user to the current request scope."""
    _actor_user_id.set(value)


@contextmanager
def request_scope(correlation_id: str, actor_user_id: str | None = None) -> Iterator[None]:
    """Bind request identifiers for logs, audit entries and event envelopes.

    Both values are restored on exit, so nested scopes (background work
    started from a request) do not leak into the caller.
    """
    correlation_token = _correlation_id.set(correlation_id)
    actor_token = _actor_user_id.set(actor_user_id)
    try:
        yield
    finally:
        _actor_user_id.reset(actor_token)
        _correlation_id.reset(correlation_token)
