"""Per-task tenant context.

Each asyncio task runs in its own copy of the current ``contextvars``
context, so a tenant set while one job executes is never visible to a job
running concurrently in another task, even for the same tenant.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Iterator, Optional, TypeVar

from adsync_jobs.errors import TenantContextError

T = TypeVar("T")


@dataclass(frozen=True)
class TenantContext:
    """Tenant identity carried through one logical unit of work."""

    tenant_id: str
    user_id: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)


_CURRENT: ContextVar[Optional[TenantContext]] = ContextVar(
    "adsync_tenant_context", default=None
)


async def run(
    context: TenantContext,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Await ``fn`` with ``context`` as the current tenant context.

    The previous context is restored once ``fn`` finishes, whether it
    returns or raises.
    """
    token = _CURRENT.set(context)
    try:
        return await fn(*args, **kwargs)
    finally:
        _CURRENT.reset(token)


@contextmanager
def use(context: TenantContext) -> Iterator[TenantContext]:
    """Synchronous form of :func:`run` for ``with`` blocks."""
    token = _CURRENT.set(context)
    try:
        yield context
    finally:
        _CURRENT.reset(token)


def set_context(context: Optional[TenantContext]) -> None:
    _CURRENT.set(context)


def get_context() -> Optional[TenantContext]:
    return _CURRENT.get()


def get_tenant_id() -> Optional[str]:
    context = _CURRENT.get()
    return context.tenant_id if context else None


def get_user_id() -> Optional[str]:
    context = _CURRENT.get()
    return context.user_id if context else None


def get_permissions() -> FrozenSet[str]:
    context = _CURRENT.get()
    return context.permissions if context else frozenset()


def require_tenant_id() -> str:
    """Get the current tenant id or raise TenantContextError."""
    tenant_id = get_tenant_id()
    if not tenant_id:
        raise TenantContextError("No tenant context is set for this task")
    return tenant_id


def clear() -> None:
    """Drop tenant scoping for the rest of the current task."""
    _CURRENT.set(None)


class TenantLogFilter(logging.Filter):
    """Stamp log records with the tenant and user of the current task."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _CURRENT.get()
        record.tenant_id = context.tenant_id if context else "-"
        record.user_id = (context.user_id if context else None) or "-"
        return True
