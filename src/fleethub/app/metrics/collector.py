"""Prometheus metrics definitions.

Labels stay low-cardinality: container/host ids go to logs, not labels.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets (optimized by latency category)
# =============================================================================

# FAST: DB queries, Redis operations, request handling (0.5ms ~ 5s)
_BUCKETS_FAST = (
    0.0005, 0.001, 0.002, 0.005, 0.01,
    0.02, 0.05, 0.1, 0.2, 0.5,
    1, 2, 5,
)

# MEDIUM: host agent calls, coordinator ticks (5ms ~ 60s)
_BUCKETS_MEDIUM = (
    0.005, 0.01, 0.02, 0.04, 0.09,
    0.18, 0.36, 0.73, 1.5, 3,
    6.2, 12.7, 26, 53,
)

# SLOW: whole migrations/renames (1s ~ 2h)
_BUCKETS_SLOW = (
    1, 5, 15, 30, 60,
    120, 300, 600, 1200, 2400,
    3600, 7200,
)

# =============================================================================
# HTTP
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "fleethub_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "fleethub_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"],
    buckets=_BUCKETS_FAST,
)

# =============================================================================
# Agent sessions
# =============================================================================

AGENT_SESSIONS_ACTIVE = Gauge(
    "fleethub_agent_sessions_active",
    "Number of live agent sessions",
)

AGENT_AUTH_FAILURES_TOTAL = Counter(
    "fleethub_agent_auth_failures_total",
    "Rejected agent authentications",
)

SERVICE_COMMANDS_TOTAL = Counter(
    "fleethub_service_commands_total",
    "Service commands dispatched to agents",
    ["component", "action", "result"],
)

# =============================================================================
# Fan-out channel
# =============================================================================

EVENTS_PUBLISHED_TOTAL = Counter(
    "fleethub_events_published_total",
    "Events published to observers",
    ["event_type"],
)

EVENTS_DROPPED_TOTAL = Counter(
    "fleethub_events_dropped_total",
    "Events dropped (queue overflow or publish failure)",
)

EVENT_QUEUE_DEPTH = Gauge(
    "fleethub_event_queue_depth",
    "Events waiting to be published",
)

OBSERVERS_ACTIVE = Gauge(
    "fleethub_observers_active",
    "Connected SSE/WebSocket observers",
    ["transport"],
)

OBSERVER_MESSAGES_TOTAL = Counter(
    "fleethub_observer_messages_total",
    "Messages delivered to observers",
    ["transport", "event_type"],
)

OBSERVER_ERRORS_TOTAL = Counter(
    "fleethub_observer_errors_total",
    "Observer stream errors",
    ["transport", "error_type"],
)

# =============================================================================
# Jobs
# =============================================================================

MIGRATIONS_TOTAL = Counter(
    "fleethub_migrations_total",
    "Finished migrations",
    ["result"],
)

MIGRATION_DURATION = Histogram(
    "fleethub_migration_duration_seconds",
    "Migration duration from request to terminal phase",
    ["result"],
    buckets=_BUCKETS_SLOW,
)

MIGRATION_BYTES_TOTAL = Counter(
    "fleethub_migration_bytes_total",
    "Bytes relayed between hosts during migrations",
    ["artifact"],
)

RENAMES_TOTAL = Counter(
    "fleethub_renames_total",
    "Finished renames",
    ["result"],
)

JOBS_ACTIVE = Gauge(
    "fleethub_jobs_active",
    "In-flight migration/rename jobs",
    ["kind"],
)

# =============================================================================
# Hosts and coordinators
# =============================================================================

HOST_PROBE_DURATION = Histogram(
    "fleethub_host_probe_duration_seconds",
    "Host agent health probe duration",
    ["result"],
    buckets=_BUCKETS_MEDIUM,
)

HOSTS_BY_STATUS = Gauge(
    "fleethub_hosts",
    "Hosts by reachability status",
    ["status"],
)

COORDINATOR_TICK_TOTAL = Counter(
    "fleethub_coordinator_tick_total",
    "Coordinator ticks executed",
    ["coordinator", "result"],
)

COORDINATOR_TICK_DURATION = Histogram(
    "fleethub_coordinator_tick_duration_seconds",
    "Coordinator tick duration",
    ["coordinator"],
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# Pools
# =============================================================================

POSTGRESQL_POOL_ACTIVE = Gauge(
    "fleethub_postgresql_pool_active",
    "PostgreSQL connections in use",
)

POSTGRESQL_POOL_IDLE = Gauge(
    "fleethub_postgresql_pool_idle",
    "PostgreSQL connections idle in pool",
)

# =============================================================================
# Terminal
# =============================================================================

TERMINAL_SESSIONS_ACTIVE = Gauge(
    "fleethub_terminal_sessions_active",
    "Open terminal relays",
)
