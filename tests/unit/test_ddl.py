"""Unit tests for DDL module."""

from adsync_jobs.ddl import (
    ALL_DDL,
    ANALYTICS_AGGREGATIONS_TABLE_DDL,
    JOBS_TABLE_DDL,
    QUEUE_STATE_TABLE_DDL,
    RECURRING_JOBS_TABLE_DDL,
)
from adsync_jobs.models import STORED_STATUSES, QueueName


def test_jobs_table_ddl_contains_create_table():
    """Test that DDL contains CREATE TABLE statement."""
    assert "CREATE TABLE jobs" in JOBS_TABLE_DDL


def test_jobs_table_ddl_contains_required_columns():
    """Test that DDL contains the columns the Postgres store reads."""
    required_columns = [
        "id",
        "seq",
        "queue",
        "tenant_id",
        "status",
        "payload",
        "progress",
        "attempts",
        "max_attempts",
        "backoff",
        "priority",
        "run_at",
        "result",
        "failed_reason",
        "repeat_key",
        "created_at",
        "processed_at",
        "finished_at",
    ]

    for column in required_columns:
        assert column in JOBS_TABLE_DDL, f"Column {column} not found in DDL"


def test_jobs_table_checks_match_enums():
    for queue in QueueName:
        assert f"'{queue.value}'" in JOBS_TABLE_DDL
    for status in STORED_STATUSES:
        assert f"'{status.value}'" in JOBS_TABLE_DDL
    assert "'paused'" not in JOBS_TABLE_DDL


def test_all_ddl_includes_every_table():
    assert ALL_DDL == (
        JOBS_TABLE_DDL,
        QUEUE_STATE_TABLE_DDL,
        RECURRING_JOBS_TABLE_DDL,
        ANALYTICS_AGGREGATIONS_TABLE_DDL,
    )
    assert "PRIMARY KEY (tenant_id, aggregation_type, date_range_start, date_range_end)" in (
        ANALYTICS_AGGREGATIONS_TABLE_DDL
    )
