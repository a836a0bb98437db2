import json
import time
import uuid
from datetime import datetime, timezone

import requests

from src.gateway_sandbox.logger import DeliveryLogger
from src.models.delivery import DeliveryAttempt
from src.payments.retry import RetryManager


NOTIFICATION_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "User-Agent": "gateway-sandbox-notifier",
}


class WebhookNotifier:
    """Posts payment notifications to a merchant endpoint, as the gateway does.

    The gateway treats any 2xx as an acknowledgement and re-sends otherwise,
    following the retry manager's schedule. Payloads go out unchanged, so
    sign them first (``SandboxGatewayServer.settle`` or ``NotificationFactory``).
    """

    def __init__(
        self,
        retry_manager: RetryManager,
        logger: DeliveryLogger,
        timeout_seconds: float = 30,
        session: requests.Session | None = None,
    ):
        self.retry_manager = retry_manager
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update(NOTIFICATION_HEADERS)

    def deliver(self, notification: dict, url: str) -> DeliveryAttempt:
        """POST once and record the attempt."""
        started = time.monotonic()
        status_code, error = self._post(notification, url)

        attempt = DeliveryAttempt(
            attempt_id=f"att_{uuid.uuid4().hex[:16]}",
            order_id=str(notification.get("order_id", "")),
            transaction_status=str(notification.get("transaction_status", "")),
            url=url,
            status_code=status_code,
            timestamp=datetime.now(timezone.utc),
            response_time_ms=(time.monotonic() - started) * 1000,
            error=error,
        )
        self.logger.log(attempt)
        return attempt

    def deliver_with_retry(
        self,
        notification: dict,
        url: str,
        delay_factor: float = 1.0,
    ) -> list[DeliveryAttempt]:
        """Deliver until acknowledged, a non-retryable answer, or the budget runs out.

        ``delay_factor`` scales the schedule; tests pass 0 to skip waiting.
        """
        attempts = [self.deliver(notification, url)]
        retries = 0

        while self._needs_retry(attempts[-1], retries):
            pause = self.retry_manager.next_delay(retries) * delay_factor
            if pause > 0:
                time.sleep(pause)
            retries += 1
            attempts.append(self.deliver(notification, url))

        return attempts

    def close(self) -> None:
        self.session.close()

    def _post(self, notification: dict, url: str) -> tuple[int | None, str | None]:
        try:
            resp = self.session.post(
                url,
                data=json.dumps(notification, default=str),
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.Timeout:
            return None, "timeout"
        except requests.exceptions.ConnectionError:
            return None, "connection_error"
        except requests.exceptions.RequestException as exc:
            return None, str(exc)
        return resp.status_code, None

    def _needs_retry(self, attempt: DeliveryAttempt, retries: int) -> bool:
        if attempt.acknowledged:
            return False
        return (
            self.retry_manager.should_retry(attempt.status_code)
            and self.retry_manager.has_attempts_remaining(retries)
        )
