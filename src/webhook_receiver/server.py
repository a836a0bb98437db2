import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from src.payments.errors import ErrorKind


logger = logging.getLogger(__name__)

# Anything non-2xx makes the gateway re-deliver.
STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    # A stale or reordered delivery cannot succeed on retry; acknowledge it.
    ErrorKind.ILLEGAL_TRANSITION: 200,
}


class _WebhookHandler(BaseHTTPRequestHandler):
    """Receives gateway notifications and hands them to the orchestrator."""

    def do_POST(self):
        if self.path.rstrip("/") != self.server.webhook_path:  # type: ignore[attr-defined]
            self._respond(404, {"success": False, "error": "not found"})
            return

        content_length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(content_length)

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, ValueError):
            self._respond(400, {"success": False, "error": "invalid JSON"})
            return

        result = self.server.orchestrator.handle_webhook(payload)  # type: ignore[attr-defined]
        self.server.record(result)  # type: ignore[attr-defined]

        if result.ok:
            outcome = result.value
            self._respond(200, {
                "success": True,
                "message": "Webhook processed successfully",
                "transactionId": outcome.transaction_id,
                "duplicate": outcome.duplicate,
            })
            return

        code = STATUS_BY_KIND.get(result.kind, 500)
        if result.kind == ErrorKind.ILLEGAL_TRANSITION:
            self._respond(code, {"success": True, "status": "ignored", "message": result.error.message})
            return
        self._respond(code, {"success": False, **result.error.to_dict()})

    def _respond(self, code: int, body: dict) -> None:
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(body).encode())

    def log_message(self, format, *args):
        logger.debug("webhook receiver: " + format, *args)


class WebhookReceiverServer:
    """Threaded HTTP endpoint for gateway webhooks."""

    def __init__(self, orchestrator, host: str = "127.0.0.1", port: int = 0, path: str = "/webhook"):
        self._host = host
        self._port = port
        self._path = path.rstrip("/")
        self._orchestrator = orchestrator
        self._results = []
        self._lock = threading.Lock()
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._server = ThreadingHTTPServer((self._host, self._port), _WebhookHandler)
        self._server.orchestrator = self._orchestrator  # type: ignore[attr-defined]
        self._server.webhook_path = self._path  # type: ignore[attr-defined]
        self._server.record = self._record  # type: ignore[attr-defined]
        # Get the actual port (useful when port=0)
        self._port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info("Webhook receiver listening on %s", self.url)

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}{self._path}"

    @property
    def port(self) -> int:
        return self._port

    def _record(self, result) -> None:
        with self._lock:
            self._results.append(result)

    def get_results(self) -> list:
        with self._lock:
            return list(self._results)
