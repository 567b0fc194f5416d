"""Database schema DDL for the job store and analytics persistence."""

JOBS_TABLE_DDL = """
CREATE TABLE jobs (
  id             TEXT PRIMARY KEY,
  seq            BIGSERIAL,
  queue          TEXT NOT NULL CHECK (queue IN ('platform-sync', 'bulk-import', 'api-retry', 'analytics-aggregation')),
  tenant_id      TEXT NOT NULL,

  status         TEXT NOT NULL CHECK (status IN ('waiting', 'active', 'completed', 'failed', 'delayed')),
  payload        JSONB NOT NULL,
  progress       JSONB NOT NULL,

  attempts       INT NOT NULL DEFAULT 0,
  max_attempts   INT NOT NULL,
  backoff        JSONB,
  delay_ms       INT NOT NULL DEFAULT 0,
  priority       INT NOT NULL DEFAULT 0,
  run_at         TIMESTAMPTZ,

  result         JSONB,
  failed_reason  TEXT,
  repeat_key     TEXT,

  created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
  processed_at   TIMESTAMPTZ,
  finished_at    TIMESTAMPTZ
);

CREATE INDEX idx_jobs_queue_status
ON jobs (queue, status);

-- Lease order within a queue
CREATE INDEX idx_jobs_waiting_order
ON jobs (queue, priority, seq)
WHERE status = 'waiting';

CREATE INDEX idx_jobs_delayed_run_at
ON jobs (queue, run_at)
WHERE status = 'delayed';

CREATE INDEX idx_jobs_tenant_created
ON jobs (tenant_id, created_at DESC);
"""

QUEUE_STATE_TABLE_DDL = """
CREATE TABLE job_queue_state (
  queue       TEXT PRIMARY KEY,
  paused      BOOLEAN NOT NULL DEFAULT FALSE,
  updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

RECURRING_JOBS_TABLE_DDL = """
CREATE TABLE recurring_jobs (
  name                TEXT PRIMARY KEY,
  queue               TEXT NOT NULL,
  payload_template    JSONB NOT NULL,
  cron                TEXT NOT NULL,
  next_run_at         TIMESTAMPTZ NOT NULL
);

CREATE INDEX idx_recurring_jobs_next_run
ON recurring_jobs (next_run_at);
"""

ANALYTICS_AGGREGATIONS_TABLE_DDL = """
CREATE TABLE analytics_aggregations (
  tenant_id               TEXT NOT NULL,
  aggregation_type        TEXT NOT NULL CHECK (aggregation_type IN ('DAILY', 'WEEKLY', 'MONTHLY')),
  date_range_start        DATE NOT NULL,
  date_range_end          DATE NOT NULL,

  metrics                 JSONB NOT NULL,
  dimensions              JSONB NOT NULL,
  total_records           INT NOT NULL DEFAULT 0,
  processed_customers     INT NOT NULL DEFAULT 0,
  processed_ads_accounts  INT NOT NULL DEFAULT 0,
  data                    JSONB NOT NULL,

  generated_at            TIMESTAMPTZ NOT NULL DEFAULT now(),

  PRIMARY KEY (tenant_id, aggregation_type, date_range_start, date_range_end)
);
"""

ALL_DDL = (
    JOBS_TABLE_DDL,
    QUEUE_STATE_TABLE_DDL,
    RECURRING_JOBS_TABLE_DDL,
    ANALYTICS_AGGREGATIONS_TABLE_DDL,
)
