"""Per-run cap on outbound Graph calls."""

from teams_proxy.graph.errors import BudgetExhausted, InputValidationError


class RequestBudget:
    """Counts outbound calls against a fixed limit.

    One budget belongs to one aggregation run. Every HTTP attempt consumes a
    unit, retries included, since each one is a real subrequest upstream.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise InputValidationError(f"Request budget must be >= 1, got {limit}")
        self.limit = limit
        self.used = 0

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def consume(self) -> None:
        """Take one unit or raise BudgetExhausted."""
        if self.exhausted:
            raise BudgetExhausted(self.limit)
        self.used += 1
