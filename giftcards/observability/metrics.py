"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from prometheus_client import Counter, Histogram, Info

from giftcards.config import settings


class GiftCardMetrics:
    """
    Centralized metrics for the gift card API.

    Covers:
    - HTTP requests (rate, duration)
    - Card generation (rate, amount, failures)
    - Redemptions by outcome
    - Rate-limit denials and escalation attempts
    - Storage failures
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "giftcards_service",
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
            "giftcards_http_requests_total",
            "Total HTTP requests",
            ["endpoint", "method", "status_code"],
        )

        self.http_request_duration_seconds = Histogram(
            "giftcards_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["endpoint", "method"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

        # ====================================================================
        # Card Metrics
        # ====================================================================
        self.cards_generated_total = Counter(
            "giftcards_generated_total",
            "Total gift card generation attempts",
            ["success", "error_type"],
        )

        self.card_amount_minor = Histogram(
            "giftcards_amount_minor",
            "Generated card face values in minor units (cents)",
            buckets=(500, 1000, 2500, 5000, 10000, 25000, 50000, 100000),
        )

        self.redemptions_total = Counter(
            "giftcards_redemptions_total",
            "Total redemption attempts by outcome",
            ["outcome"],
        )

        self.redeemed_amount_minor = Counter(
            "giftcards_redeemed_amount_minor_total",
            "Total value redeemed in minor units (cents)",
        )

        # ====================================================================
        # Access Metrics
        # ====================================================================
        self.rate_limited_total = Counter(
            "giftcards_rate_limited_total",
            "Requests denied by the rate limiter",
            ["operation"],
        )

        self.escalation_attempts_total = Counter(
            "giftcards_escalation_attempts_total",
            "Reserved unlock code submissions",
            ["unlocked"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "giftcards_errors_total",
            "Total errors by type",
            ["error_type", "operation"],
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

    def record_generation(
        self, success: bool, amount_minor: int, error_type: str | None = None
    ) -> None:
        """Record card generation metrics."""
        self.cards_generated_total.labels(
            success=str(success), error_type=error_type or "none"
        ).inc()
        if success:
            self.card_amount_minor.observe(amount_minor)

    def record_redemption(self, outcome: str, amount_minor: int = 0) -> None:
        """Record one redemption outcome."""
        self.redemptions_total.labels(outcome=outcome).inc()
        if amount_minor:
            self.redeemed_amount_minor.inc(amount_minor)

    def record_rate_limited(self, operation: str) -> None:
        self.rate_limited_total.labels(operation=operation).inc()

    def record_escalation(self, unlocked: bool) -> None:
        self.escalation_attempts_total.labels(unlocked=str(unlocked)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GiftCardMetrics()
