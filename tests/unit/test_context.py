"""Unit tests for tenant context propagation."""

import asyncio
import logging

import pytest

from adsync_jobs import context
from adsync_jobs.context import TenantContext, TenantLogFilter
from adsync_jobs.errors import TenantContextError


@pytest.mark.asyncio
async def test_run_sets_and_restores_context():
    async def read():
        return context.get_tenant_id(), context.get_user_id()

    result = await context.run(TenantContext("t1", user_id="u1"), read)

    assert result == ("t1", "u1")
    assert context.get_context() is None


@pytest.mark.asyncio
async def test_run_restores_context_on_error():
    async def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await context.run(TenantContext("t1"), fail)

    assert context.get_tenant_id() is None


@pytest.mark.asyncio
async def test_nested_run_restores_outer_context():
    async def inner():
        return context.get_tenant_id()

    async def outer():
        inner_tenant = await context.run(TenantContext("inner"), inner)
        return inner_tenant, context.get_tenant_id()

    assert await context.run(TenantContext("outer"), outer) == ("inner", "outer")


@pytest.mark.asyncio
async def test_concurrent_tasks_do_not_see_each_other():
    """Test that interleaved tasks each keep their own tenant."""
    seen = {}

    async def work(tenant_id):
        await asyncio.sleep(0.01)
        first = context.get_tenant_id()
        await asyncio.sleep(0.01)
        seen[tenant_id] = (first, context.get_tenant_id())
        context.clear()

    await asyncio.gather(
        *(context.run(TenantContext(f"t{i}"), work, f"t{i}") for i in range(10))
    )

    assert seen == {f"t{i}": (f"t{i}", f"t{i}") for i in range(10)}


@pytest.mark.asyncio
async def test_clear_inside_task_does_not_leak():
    context.set_context(TenantContext("outer"))
    try:
        async def clear_in_task():
            context.clear()
            return context.get_tenant_id()

        assert await asyncio.create_task(clear_in_task()) is None
        assert context.get_tenant_id() == "outer"
    finally:
        context.clear()


def test_use_and_permissions():
    ctx = TenantContext("t1", permissions=frozenset({"jobs:read"}))

    with context.use(ctx):
        assert context.require_tenant_id() == "t1"
        assert context.get_permissions() == frozenset({"jobs:read"})

    assert context.get_permissions() == frozenset()


def test_require_tenant_id_without_context():
    with pytest.raises(TenantContextError):
        context.require_tenant_id()


def test_log_filter_stamps_tenant():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    log_filter = TenantLogFilter()

    assert log_filter.filter(record)
    assert record.tenant_id == "-"

    with context.use(TenantContext("t9", user_id="u9")):
        log_filter.filter(record)

    assert (record.tenant_id, record.user_id) == ("t9", "u9")
