"""Error taxonomy for Microsoft Graph calls."""


class GraphError(Exception):
    """Base class for all Graph proxy errors."""


class InputValidationError(GraphError, ValueError):
    """Caller supplied invalid input (missing id, bad limit, bad policy)."""


class BudgetExhausted(GraphError):
    """The per-run outbound request budget has been spent."""

    def __init__(self, limit: int):
        super().__init__(f"Request budget of {limit} calls exhausted")
        self.limit = limit


class TransientUpstreamError(GraphError):
    """A single attempt failed in a way that may succeed on retry.

    Raised for retryable statuses (429/502/503/504), timeouts and
    transport-level failures. ``status`` is None when no response arrived.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        retry_after_ms: int | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.retry_after_ms = retry_after_ms


class PermanentFetchError(GraphError):
    """A fetch that will not succeed by retrying."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class NonRetryableStatusError(PermanentFetchError):
    """Upstream answered with an error status outside the retryable set."""


class CredentialError(NonRetryableStatusError):
    """Bearer credential missing or rejected by upstream."""


class RetriesExhaustedError(PermanentFetchError):
    """Every attempt produced a retryable failure."""

    def __init__(self, attempts: int, last_error: TransientUpstreamError):
        super().__init__(
            f"Retries exhausted after {attempts} attempts: {last_error}",
            status=last_error.status,
        )
        self.attempts = attempts
        self.last_error = last_error


class ResponseDecodeError(PermanentFetchError):
    """Response body did not match the expected record shape."""
