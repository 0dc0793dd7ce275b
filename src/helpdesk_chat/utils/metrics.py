"""
Prometheus metrics for the helpdesk chat pipeline.

Defines job lifecycle and tool call metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "helpdesk"


# ============================================================================
# Job Metrics
# ============================================================================

jobs_total = Counter(
    f"{NAMESPACE}_jobs_total",
    "Total number of chat jobs reaching a terminal status",
    ["status"],  # "completed", "failed"
)

job_duration_seconds = Histogram(
    f"{NAMESPACE}_job_duration_seconds",
    "Chat job processing duration in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

jobs_reaped_total = Counter(
    f"{NAMESPACE}_jobs_reaped_total",
    "Total number of stale processing jobs forced to failed",
)

worker_batches_total = Counter(
    f"{NAMESPACE}_worker_batches_total",
    "Total number of scheduler batches run",
    ["trigger"],  # "loop", "http"
)


# ============================================================================
# Tool Metrics
# ============================================================================

tool_calls_total = Counter(
    f"{NAMESPACE}_tool_calls_total",
    "Total number of named tool calls dispatched",
    ["tool_name", "status"],  # status: "completed", "failed"
)

tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_tool_call_duration_seconds",
    "Named tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


# ============================================================================
# Streaming Metrics
# ============================================================================

turn_streams_active = Gauge(
    f"{NAMESPACE}_turn_streams_active",
    "Number of currently open turn streams",
)
