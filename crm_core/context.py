from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
actor_user_id_var: ContextVar[str | None] = ContextVar("actor_user_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_actor_user_id(value: str | None) -> Token[str | None]:
    return actor_user_id_var.set(value)


def reset_actor_user_id(token: Token[str | None]) -> None:
    actor_user_id_var.reset(token)


def get_actor_user_id() -> str | None:
    return actor_user_id_var.get()


def get_log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "actor_user_id": get_actor_user_id()}


@contextmanager
def actor_context(user_id: str | None) -> Iterator[None]:
    """Bind ``user_id`` as the acting user for log records emitted inside the block.

    A caller that already set an actor (an API layer, say) is shadowed only for
    the duration of the block.
    """
    token = set_actor_user_id(user_id)
    try:
        yield
    finally:
        reset_actor_user_id(token)
