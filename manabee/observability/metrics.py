"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from manabee.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class ManabeeMetrics:
    """
    Centralized metrics for the Manabee backend.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Quota decisions (allowed / rejected / fail-closed)
    - AI generations (rate, duration, outcome)
    - Question job transitions
    - Notifications (deliveries, pruned endpoints)
    - Scheduled jobs (runs, deletions)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "manabee_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "manabee_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "manabee_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "manabee_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Quota Metrics
        # ====================================================================
        self.quota_decisions_total = Counter(
            "manabee_quota_decisions_total",
            "Quota check-and-consume decisions",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # AI Generation Metrics
        # ====================================================================
        self.ai_generations_total = Counter(
            "manabee_ai_generations_total",
            "AI generation calls by operation and outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.ai_generation_duration_seconds = Histogram(
            "manabee_ai_generation_duration_seconds",
            "AI generation duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0),
        )

        # ====================================================================
        # Question Job Metrics
        # ====================================================================
        self.job_transitions_total = Counter(
            "manabee_question_job_transitions_total",
            "Question job status transitions",
            ["to_status"],
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "manabee_notifications_total",
            "Per-endpoint notification deliveries",
            [MetricLabels.OUTCOME],
        )

        self.endpoints_pruned_total = Counter(
            "manabee_endpoints_pruned_total",
            "Device endpoints removed after permanent delivery failure",
        )

        # ====================================================================
        # Scheduled Job Metrics
        # ====================================================================
        self.scheduled_runs_total = Counter(
            "manabee_scheduled_runs_total",
            "Scheduled job runs",
            ["job", "success"],
        )

        self.quota_records_deleted_total = Counter(
            "manabee_quota_records_deleted_total",
            "Quota records removed by the retention sweeper",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "manabee_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_quota_decision(self, outcome: str) -> None:
        """Record a quota decision: allowed, rejected or fail_closed."""
        self.quota_decisions_total.labels(outcome=outcome).inc()

    def record_generation(self, operation: str, outcome: str, duration: float) -> None:
        """Record an AI generation call."""
        self.ai_generations_total.labels(operation=operation, outcome=outcome).inc()
        self.ai_generation_duration_seconds.labels(operation=operation).observe(duration)

    def record_job_transition(self, to_status: str) -> None:
        self.job_transitions_total.labels(to_status=to_status).inc()

    def record_delivery(self, sent: int, failed: int, pruned: int) -> None:
        """Record the outcome of one multicast send."""
        if sent:
            self.notifications_total.labels(outcome="sent").inc(sent)
        if failed:
            self.notifications_total.labels(outcome="failed").inc(failed)
        if pruned:
            self.endpoints_pruned_total.inc(pruned)

    def record_scheduled_run(self, job: str, success: bool) -> None:
        self.scheduled_runs_total.labels(job=job, success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ManabeeMetrics()
