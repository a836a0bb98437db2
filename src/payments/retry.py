import time
from typing import Callable, Self, TypeVar


T = TypeVar("T")


class RetryManager:
    """Retry decisions and backoff scheduling for outbound HTTP calls.

    Used by the gateway client for status queries and by the sandbox
    notifier for webhook re-delivery.
    """

    DEFAULT_SCHEDULE = [30, 300, 1800, 7200]  # 30s, 5m, 30m, 2h

    # 406 is the gateway's duplicate-order answer; repeating it cannot help.
    NO_RETRY_CODES = {400, 401, 404, 406, 422}

    def __init__(self, schedule: list[float] | None = None, max_retries: int | None = None):
        self.schedule = schedule or self.DEFAULT_SCHEDULE
        self.max_retries = max_retries if max_retries is not None else len(self.schedule)

    @classmethod
    def exponential(cls, base: float = 0.5, max_retries: int = 3, factor: float = 2.0) -> Self:
        """Schedule of base, base*factor, base*factor**2, ... seconds."""
        schedule = [base * factor ** n for n in range(max(max_retries, 1))]
        return cls(schedule=schedule, max_retries=max_retries)

    def should_retry(self, status_code: int | None) -> bool:
        """No response (None) and 5xx are retried; 2xx and 4xx are final."""
        if status_code is None:
            return True
        if 200 <= status_code < 300 or status_code in self.NO_RETRY_CODES:
            return False
        return status_code >= 500

    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-indexed), clamped to the last entry."""
        return float(self.schedule[min(attempt, len(self.schedule) - 1)])

    def has_attempts_remaining(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def run(
        self,
        operation: Callable[[], T],
        retry_on: tuple[type[Exception], ...],
        status_of: Callable[[Exception], int | None],
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[Exception, float], None] | None = None,
    ) -> T:
        """Call ``operation`` until it returns or fails in a way not worth retrying.

        ``status_of`` gives the HTTP status behind a caught error, or None when
        no response arrived. The last error is re-raised once the budget is spent.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except retry_on as exc:
                if not (self.should_retry(status_of(exc)) and self.has_attempts_remaining(attempt)):
                    raise
                delay = self.next_delay(attempt)
                if on_retry is not None:
                    on_retry(exc, delay)
                if delay > 0:
                    sleep(delay)
                attempt += 1
