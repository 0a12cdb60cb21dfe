"""Prometheus metrics for triage observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- triage_requests_total: Counter of HTTP triage requests by endpoint and result
- triage_issues_processed_total: Counter of issues that left the pipeline
- triage_llm_batches_total: Counter of LLM batches by outcome
- triage_llm_batch_duration_seconds: Histogram of LLM batch latency
- triage_cache_lookups_total: Counter of cache lookups by outcome
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


logger = logging.getLogger(__name__)


# Covers fast cached replies up to the default 15 second batch timeout
DEFAULT_BATCH_BUCKETS = (0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0)

LLM_BATCH_RESULTS = ("success", "empty", "timeout", "error")


class TriageMetrics:
    """Container for all triage Prometheus metrics.

    Supports custom registries for testing.

    Attributes:
        registry: The Prometheus registry for these metrics.
        requests_total: Counter for HTTP requests.
        issues_processed_total: Counter for processed issues.
        llm_batches_total: Counter for LLM batch outcomes.
        llm_batch_duration_seconds: Histogram for LLM batch latency.
        cache_lookups_total: Counter for cache hits and misses.

    Example:
        >>> metrics = TriageMetrics(registry=CollectorRegistry())
        >>> metrics.record_llm_batch("timeout", 15.0)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize triage metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.requests_total = Counter(
            "triage_requests_total",
            "Total number of triage HTTP requests",
            labelnames=["endpoint", "result"],
            registry=self.registry,
        )

        self.issues_processed_total = Counter(
            "triage_issues_processed_total",
            "Total number of issues classified by the pipeline",
            registry=self.registry,
        )

        self.llm_batches_total = Counter(
            "triage_llm_batches_total",
            "Total number of LLM batches by outcome",
            labelnames=["result"],
            registry=self.registry,
        )

        self.llm_batch_duration_seconds = Histogram(
            "triage_llm_batch_duration_seconds",
            "Time spent on a single LLM batch in seconds",
            buckets=DEFAULT_BATCH_BUCKETS,
            registry=self.registry,
        )

        self.cache_lookups_total = Counter(
            "triage_cache_lookups_total",
            "Total number of analysis cache lookups",
            labelnames=["result"],
            registry=self.registry,
        )

    def record_request(self, endpoint: str, result: str) -> None:
        """Record an HTTP request outcome (e.g. "success", "client_error")."""
        self.requests_total.labels(endpoint=endpoint, result=result).inc()

    def record_issues_processed(self, count: int) -> None:
        if count > 0:
            self.issues_processed_total.inc(count)

    def record_llm_batch(self, result: str, duration_seconds: float) -> None:
        """Record the outcome and latency of one LLM batch.

        Args:
            result: One of LLM_BATCH_RESULTS.
            duration_seconds: Time the batch held a concurrency slot.
        """
        if result not in LLM_BATCH_RESULTS:
            logger.warning(
                "Unknown LLM batch result label",
                extra={"result": result},
            )
            return
        self.llm_batches_total.labels(result=result).inc()
        self.llm_batch_duration_seconds.observe(duration_seconds)

    def record_cache_lookup(self, hit: bool) -> None:
        self.cache_lookups_total.labels(result="hit" if hit else "miss").inc()


_default_metrics: Optional[TriageMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> TriageMetrics:
    """Get or create the triage metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        TriageMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return TriageMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = TriageMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)
