"""Prometheus metrics for LLM invocations."""

from prometheus_client import Counter, Info, generate_latest

# --- Metrics ---

APP_INFO = Info("codebase_insights", "Codebase Insights application info")
APP_INFO.info({"version": "0.3.0", "name": "codebase_insights"})

LLM_INVOCATION_EVENTS = Counter(
    "llm_invocation_events_total",
    "LLM invocation events (success, failure, retry, step_up, crop)",
    ["event"],
)

LLM_BATCH_TASKS = Counter(
    "llm_batch_tasks_total",
    "Tasks started by the throttled batch executor",
)


def metrics_text() -> str:
    """Render all metrics in the Prometheus text exposition format."""
    return generate_latest().decode("utf-8")
