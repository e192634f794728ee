"""Prometheus metrics for chat turns, change application and real-time fan-out."""

from prometheus_client import Counter, Histogram

# Chat turn metrics
chat_turns_total = Counter(
    "chat_turns_total",
    "Total chat turns by classified task and outcome",
    ["task", "outcome"],
)

chat_turn_latency_ms = Histogram(
    "chat_turn_latency_ms",
    "Chat turn latency in milliseconds",
    ["task"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 4000, 8000, 16000],
)

# Change application metrics
change_applies_total = Counter(
    "change_applies_total",
    "Total ChangeSet apply attempts by result",
    ["result"],
)

change_apply_latency_ms = Histogram(
    "change_apply_latency_ms",
    "ChangeSet apply latency in milliseconds (lock wait included)",
    ["result"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000],
)

# Real-time metrics
realtime_events_published_total = Counter(
    "realtime_events_published_total",
    "Total events published to the sync hub",
    ["type"],
)

realtime_events_dropped_total = Counter(
    "realtime_events_dropped_total",
    "Total events dropped from a full subscriber queue (oldest first)",
    ["type"],
)

# External lookups
place_lookups_total = Counter(
    "place_lookups_total",
    "Total place lookups by outcome",
    ["outcome"],
)


class PrometheusChatMetrics:
    """Prometheus-based metrics for the chat editing pipeline."""

    def record_turn(self, task: str, outcome: str, latency_ms: float) -> None:
        """Record one chat turn."""
        chat_turns_total.labels(task=task, outcome=outcome).inc()
        chat_turn_latency_ms.labels(task=task).observe(latency_ms)

    def record_apply(self, result: str, latency_ms: float) -> None:
        """Record one apply attempt."""
        change_applies_total.labels(result=result).inc()
        change_apply_latency_ms.labels(result=result).observe(latency_ms)

    def inc_published(self, event_type: str) -> None:
        """Increment published event counter."""
        realtime_events_published_total.labels(type=event_type).inc()

    def inc_dropped(self, event_type: str) -> None:
        """Increment dropped event counter."""
        realtime_events_dropped_total.labels(type=event_type).inc()

    def inc_place_lookup(self, outcome: str) -> None:
        """Increment place lookup counter."""
        place_lookups_total.labels(outcome=outcome).inc()
