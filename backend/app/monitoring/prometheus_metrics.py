"""
Prometheus metrics for the settlement engine.

Service timings come from the ``@measure_operation`` decorator; settlement
counters are bumped by the workflow, payout and unsettled-finance services.
"""

from threading import Lock
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry so test processes can import this module repeatedly
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorbridge_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorbridge_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorbridge_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Settlement counters
workflow_transitions_total = Counter(
    "tutorbridge_workflow_transitions_total",
    "Workflow stage transitions applied by the scheduler",
    ["from_stage", "to_stage"],
    registry=REGISTRY,
)

workflow_sweep_outcomes_total = Counter(
    "tutorbridge_workflow_sweep_outcomes_total",
    "Per-workflow sweep outcomes",
    ["outcome"],  # advanced | skipped | errored
    registry=REGISTRY,
)

teacher_payouts_total = Counter(
    "tutorbridge_teacher_payouts_total",
    "Teacher payout batch outcomes",
    ["outcome"],  # processed | skipped | failed
    registry=REGISTRY,
)

unsettled_records_total = Counter(
    "tutorbridge_unsettled_records_total",
    "Unsettled finance records opened",
    ["conflict_type"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'TeacherPayoutService')
            operation: Operation name (e.g., 'process_eligible_payouts')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_workflow_transition(from_stage: str, to_stage: str) -> None:
        workflow_transitions_total.labels(from_stage=from_stage, to_stage=to_stage).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_sweep_outcome(outcome: str) -> None:
        workflow_sweep_outcomes_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_payout_outcome(outcome: str, count: int = 1) -> None:
        if count <= 0:
            return
        teacher_payouts_total.labels(outcome=outcome).inc(count)
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_unsettled(conflict_type: str) -> None:
        unsettled_records_total.labels(conflict_type=conflict_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        with PrometheusMetrics._cache_lock:
            if PrometheusMetrics._cache_payload is None:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
