"""
Prometheus metrics for the autoscuola engine.

Service timings come from ``BaseService.measure_operation``; the domain
counters below are incremented by the reposition, payment and invoice
services so operators can watch queue health without reading the database.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry to avoid conflicts with default process metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "autoscuola_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "autoscuola_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "autoscuola_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

reposition_outcomes_total = Counter(
    "autoscuola_reposition_outcomes_total",
    "Reposition task attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

payment_attempts_total = Counter(
    "autoscuola_payment_attempts_total",
    "Gateway charge attempts by phase and resulting record status",
    ["phase", "status"],
    registry=REGISTRY,
)

invoice_outcomes_total = Counter(
    "autoscuola_invoice_outcomes_total",
    "Invoice finalization outcomes",
    ["status"],
    registry=REGISTRY,
)

sweep_items_processed = Gauge(
    "autoscuola_sweep_items_processed",
    "Items processed by the last run of each sweep",
    ["sweep"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin static facade over the metric objects."""

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
            service: Service name (e.g., 'AppointmentService')
            operation: Operation/method name (e.g., 'create_appointment')
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
    def record_reposition_outcome(outcome: str) -> None:
        reposition_outcomes_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_payment_attempt(phase: str, status: str) -> None:
        payment_attempts_total.labels(phase=phase, status=status).inc()

    @staticmethod
    def record_invoice_outcome(status: str) -> None:
        invoice_outcomes_total.labels(status=status).inc()

    @staticmethod
    def record_sweep(sweep: str, processed: int) -> None:
        sweep_items_processed.labels(sweep=sweep).set(processed)

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
