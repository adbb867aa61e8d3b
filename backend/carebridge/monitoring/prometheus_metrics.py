"""
Prometheus metrics module for CareBridge.

Exports the timings gathered by @measure_operation together with counters
for the two signals operators watch on the transaction core: conditional
updates that lost a race, and reconciliation alerts.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "carebridge_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "carebridge_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "carebridge_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

conditional_update_conflicts_total = Counter(
    "carebridge_conditional_update_conflicts_total",
    "Conditional updates that matched zero rows",
    ["resource", "operation"],
    registry=REGISTRY,
)

compensations_total = Counter(
    "carebridge_compensations_total",
    "Compensating reverts applied after a downstream failure",
    ["resource", "operation"],
    registry=REGISTRY,
)

reconciliation_alerts_total = Counter(
    "carebridge_reconciliation_alerts_total",
    "External side effects whose local record could not be persisted",
    ["alert_type"],
    registry=REGISTRY,
)

gateway_requests_total = Counter(
    "carebridge_gateway_requests_total",
    "Payment gateway calls by outcome",
    ["operation", "status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Static helpers wrapping the module-level collectors."""

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
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'transition')
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

    @staticmethod
    def record_conflict(resource: str, operation: str) -> None:
        conditional_update_conflicts_total.labels(resource=resource, operation=operation).inc()

    @staticmethod
    def record_compensation(resource: str, operation: str) -> None:
        compensations_total.labels(resource=resource, operation=operation).inc()

    @staticmethod
    def record_reconciliation_alert(alert_type: str) -> None:
        reconciliation_alerts_total.labels(alert_type=alert_type).inc()

    @staticmethod
    def record_gateway_request(operation: str, status: str) -> None:
        gateway_requests_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
