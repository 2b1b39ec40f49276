"""Prometheus Metrics - orchestration observability.

Exports:
- State transitions by outcome
- Advisory lock acquisitions by outcome
- Video rooms by provider, idempotent hits
- Capacity rejections and active-session gauge
- Webhook deliveries, token issuance, outbox deliveries
"""

from prometheus_client import Counter, Gauge, Histogram

# -----------------------------------------------------------------------------
# Latency Histograms
# -----------------------------------------------------------------------------

PROVIDER_LATENCY = Histogram(
    "coachflow_video_provider_latency_seconds",
    "Video provider API call latency",
    ["provider", "operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# -----------------------------------------------------------------------------
# Counters
# -----------------------------------------------------------------------------

STATE_TRANSITIONS = Counter(
    "coachflow_state_transitions_total",
    "Session state transition attempts",
    ["new_state", "outcome"],  # applied, rejected, busy
)

LOCK_ACQUISITIONS = Counter(
    "coachflow_lock_acquisitions_total",
    "Advisory lock acquisition attempts",
    ["namespace", "outcome"],  # acquired, busy
)

LOCKS_RECLAIMED = Counter(
    "coachflow_locks_reclaimed_total",
    "Expired session locks reclaimed by cleanup",
)

ROOMS_CREATED = Counter(
    "coachflow_rooms_created_total",
    "Video rooms created",
    ["provider"],  # daily, videosdk
)

ROOMS_IDEMPOTENT = Counter(
    "coachflow_rooms_idempotent_total",
    "Room requests answered from an existing room",
)

CAPACITY_REJECTIONS = Counter(
    "coachflow_capacity_rejections_total",
    "Requests refused by the capacity gate",
    ["source"],  # room, booking
)

WEBHOOK_DELIVERIES = Counter(
    "coachflow_webhook_deliveries_total",
    "Webhook deliveries by outcome",
    ["endpoint", "outcome"],  # processed, duplicate, ignored, rejected
)

TOKENS_ISSUED = Counter(
    "coachflow_tokens_issued_total",
    "Meeting tokens issued",
    ["role"],
)

JOIN_TOKEN_RESOLUTIONS = Counter(
    "coachflow_join_token_resolutions_total",
    "One-time join token resolutions",
    ["outcome"],
)

OUTBOX_DELIVERIES = Counter(
    "coachflow_outbox_deliveries_total",
    "Outbox item deliveries",
    ["kind", "outcome"],  # sent, failed
)

ERRORS = Counter(
    "coachflow_errors_total",
    "Total errors by component",
    ["component", "type"],
)

# -----------------------------------------------------------------------------
# Gauges
# -----------------------------------------------------------------------------

ACTIVE_SESSIONS = Gauge(
    "coachflow_active_sessions",
    "Active sessions as of the last capacity recomputation",
)

DB_CONNECTIONS_USED = Gauge(
    "coachflow_db_connections_used",
    "Database connections attributed to active sessions",
)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def record_transition(new_state: str, outcome: str) -> None:
    """Record a state transition attempt."""
    STATE_TRANSITIONS.labels(new_state=new_state, outcome=outcome).inc()


def record_lock(namespace: str, acquired: bool) -> None:
    """Record an advisory lock attempt."""
    LOCK_ACQUISITIONS.labels(
        namespace=namespace, outcome="acquired" if acquired else "busy"
    ).inc()


def record_locks_reclaimed(count: int) -> None:
    """Record reclaimed session locks."""
    if count:
        LOCKS_RECLAIMED.inc(count)


def record_room_created(provider: str) -> None:
    """Record a newly created room."""
    ROOMS_CREATED.labels(provider=provider).inc()


def record_room_idempotent() -> None:
    """Record an idempotent room hit."""
    ROOMS_IDEMPOTENT.inc()


def record_capacity_rejection(source: str) -> None:
    """Record a capacity rejection."""
    CAPACITY_REJECTIONS.labels(source=source).inc()


def record_webhook(endpoint: str, outcome: str) -> None:
    """Record a webhook delivery outcome."""
    WEBHOOK_DELIVERIES.labels(endpoint=endpoint, outcome=outcome).inc()


def record_token_issued(role: str) -> None:
    """Record meeting token issuance."""
    TOKENS_ISSUED.labels(role=role).inc()


def record_join_token(outcome: str) -> None:
    """Record a join-token resolution outcome."""
    JOIN_TOKEN_RESOLUTIONS.labels(outcome=outcome).inc()


def record_outbox(kind: str, outcome: str) -> None:
    """Record an outbox delivery outcome."""
    OUTBOX_DELIVERIES.labels(kind=kind, outcome=outcome).inc()


def record_error(component: str, error_type: str) -> None:
    """Record error by component."""
    ERRORS.labels(component=component, type=error_type).inc()


def update_capacity(active_sessions: int, db_connections_used: int) -> None:
    """Update capacity gauges after recomputation."""
    ACTIVE_SESSIONS.set(active_sessions)
    DB_CONNECTIONS_USED.set(db_connections_used)


def observe_provider_latency(provider: str, operation: str, seconds: float) -> None:
    """Record provider call latency in seconds."""
    PROVIDER_LATENCY.labels(provider=provider, operation=operation).observe(seconds)
