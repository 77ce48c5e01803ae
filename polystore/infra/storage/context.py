"""Ambient caller identity for storage events.

Storage events carry the acting user and tenant. Rather than threading
those through every facade call, callers bind them once per task:

    with storage_context(user_id="u-1", tenant_id="acme"):
        await manager.upload("docs/a.txt", b"...")

The binding is also mirrored into the log context so every log record
emitted inside the block carries the same identifiers.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING

from polystore.infra.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass(frozen=True)
class StorageCaller:
    """Identity attached to emitted storage events."""

    user_id: str | None = None
    tenant_id: str | None = None


_current_caller: ContextVar[StorageCaller] = ContextVar(
    "storage_caller",
    default=StorageCaller(),
)


def get_storage_caller() -> StorageCaller:
    """Return the identity bound to the current task."""
    return _current_caller.get()


@contextmanager
def storage_context(
    user_id: str | None = None,
    tenant_id: str | None = None,
) -> Iterator[StorageCaller]:
    """Bind user and tenant identifiers for the duration of the block.

    Works as a plain ``with`` block in both sync and async code since
    ContextVar state follows the running task.
    """
    caller = StorageCaller(user_id=user_id, tenant_id=tenant_id)
    token = _current_caller.set(caller)
    previous_log_context = get_log_context()
    set_log_context(
        **{k: v for k, v in (("user_id", user_id), ("tenant_id", tenant_id)) if v is not None}
    )
    try:
        yield caller
    finally:
        _current_caller.reset(token)
        clear_log_context()
        set_log_context(**previous_log_context)
