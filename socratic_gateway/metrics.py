"""Prometheus metrics for the Socratic gateway.

Counters and histograms live in-process behind a lock and are rendered in the
Prometheus text exposition format at /metrics. No prometheus_client needed.
"""

import threading
from collections import defaultdict

from fastapi import APIRouter, Request, Response

from socratic_gateway.core.errors import error_response

_lock = threading.Lock()

# Label key type: tuple of (key, value) pairs
LabelKey = tuple[tuple[str, str], ...]

_counters: dict[str, dict[LabelKey, float]] = defaultdict(lambda: defaultdict(float))

_histogram_sums: dict[str, dict[LabelKey, float]] = defaultdict(lambda: defaultdict(float))
_histogram_counts: dict[str, dict[LabelKey, int]] = defaultdict(lambda: defaultdict(int))

# Streams run for seconds, not milliseconds.
DURATION_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
_histogram_buckets: dict[str, dict[LabelKey, list[int]]] = defaultdict(
    lambda: defaultdict(lambda: [0] * len(DURATION_BUCKETS)),
)


def inc_counter(name: str, labels: dict[str, str], value: float = 1.0) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _counters[name][key] += value


def observe_histogram(name: str, labels: dict[str, str], value: float) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _histogram_sums[name][key] += value
        _histogram_counts[name][key] += 1
        buckets = _histogram_buckets[name][key]
        for i, bound in enumerate(DURATION_BUCKETS):
            if value <= bound:
                buckets[i] += 1


def counter_value(name: str, labels: dict[str, str]) -> float:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        return _counters.get(name, {}).get(key, 0.0)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histogram_sums.clear()
        _histogram_counts.clear()
        _histogram_buckets.clear()


def _format_labels(label_pairs: LabelKey) -> str:
    if not label_pairs:
        return ""
    parts = [f'{k}="{v}"' for k, v in label_pairs]
    return "{" + ",".join(parts) + "}"


def _with_le(label_pairs: LabelKey, bound: str) -> str:
    labels = dict(label_pairs)
    labels["le"] = bound
    return _format_labels(tuple(sorted(labels.items())))


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        for name, label_map in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for label_pairs, value in sorted(label_map.items()):
                lines.append(f"{name}{_format_labels(label_pairs)} {value}")

        for name in sorted(_histogram_sums.keys()):
            lines.append(f"# TYPE {name} histogram")
            for label_pairs in sorted(_histogram_sums[name].keys()):
                base_lbl = _format_labels(label_pairs)
                count = _histogram_counts[name][label_pairs]

                cumulative = 0
                for i, bound in enumerate(DURATION_BUCKETS):
                    cumulative += _histogram_buckets[name][label_pairs][i]
                    lines.append(f"{name}_bucket{_with_le(label_pairs, str(bound))} {cumulative}")
                lines.append(f"{name}_bucket{_with_le(label_pairs, '+Inf')} {count}")
                lines.append(f"{name}_sum{base_lbl} {_histogram_sums[name][label_pairs]}")
                lines.append(f"{name}_count{base_lbl} {count}")

    lines.append("")
    return "\n".join(lines)


# -- Convenience helpers for gateway metrics --


def record_chat_outcome(outcome: str) -> None:
    """Count one chat request by terminal outcome (e.g. ``streamed``, ``rate_limited``)."""
    inc_counter("socratic_chat_requests_total", {"outcome": outcome})


def record_tool_call(tool: str, status: str) -> None:
    inc_counter("socratic_tool_calls_total", {"tool": tool, "status": status})


def record_stream(
    provider: str,
    model: str,
    status: str,
    duration_s: float,
    tokens_in: int = 0,
    tokens_out: int = 0,
) -> None:
    base_labels = {"provider": provider, "model": model}
    observe_histogram(
        "socratic_chat_stream_duration_seconds",
        {**base_labels, "status": status},
        duration_s,
    )
    if tokens_in > 0:
        inc_counter(
            "socratic_tokens_total", {**base_labels, "direction": "input"}, float(tokens_in)
        )
    if tokens_out > 0:
        inc_counter(
            "socratic_tokens_total", {**base_labels, "direction": "output"}, float(tokens_out)
        )


# -- FastAPI router --


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics(request: Request) -> Response:
    if not request.app.state.settings.metrics_enabled:
        return error_response(404, "Not found")
    return Response(
        content=render_metrics(),
        media_type="text/plain; charset=utf-8",
    )
