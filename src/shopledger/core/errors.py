"""Error taxonomy shared by the reconciliation core and its adapters."""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class ShopLedgerError(Exception):
    """Base error for all shopledger failures."""


class ConfigurationError(ShopLedgerError):
    """Unknown tenant, invalid window, or invalid settings."""


class InvariantViolationError(ShopLedgerError):
    """A programmer-detectable invariant was broken inside the pure builders.

    These stop the run: continuing would persist corrupt financial facts.
    """


# ---------------------------------------------------------------------------
# Upstream
# ---------------------------------------------------------------------------


class UpstreamError(ShopLedgerError):
    """Base error for upstream platform failures."""


class TransientUpstreamError(UpstreamError):
    """Retryable upstream failure (5xx, network blip, throttling)."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamThrottledError(TransientUpstreamError):
    """Upstream rejected the request because of rate limiting."""


class UpstreamRequestError(UpstreamError):
    """Non-retryable upstream failure (4xx, GraphQL errors, bad payload)."""


class JobTimeoutError(UpstreamError):
    """Bulk export job did not reach a terminal state within its poll budget."""


class BulkJobFailedError(UpstreamError):
    """Bulk export job reached FAILED, CANCELED or EXPIRED."""

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class UpstreamDataQualityError(ShopLedgerError):
    """Upstream data is internally inconsistent.

    Never raised out of the builders; carried as a ``DataQualityIssue`` and
    logged, so the affected record is skipped at the smallest granularity.
    """

    def __init__(
        self, message: str, *, order_id: str, line_ref: str | None = None
    ) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.line_ref = line_ref


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class SinkWriteError(ShopLedgerError):
    """Writing facts to the sink failed."""


class JobNotFoundError(ShopLedgerError):
    """No sync job exists with the requested id."""


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    """How the retry machinery should treat an error."""

    retryable: bool
    throttled: bool = False


def classify_error(err: BaseException) -> ErrorClassification:
    """Default classification shared by data sources."""
    if isinstance(err, UpstreamThrottledError):
        return ErrorClassification(retryable=True, throttled=True)
    if isinstance(err, TransientUpstreamError):
        return ErrorClassification(retryable=True)
    if isinstance(err, BulkJobFailedError) and err.error_code in {
        "THROTTLED",
        "INTERNAL_SERVER_ERROR",
    }:
        return ErrorClassification(
            retryable=True, throttled=err.error_code == "THROTTLED"
        )
    return ErrorClassification(retryable=False)
