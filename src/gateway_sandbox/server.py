import base64
import json
import threading
import time
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Self
from urllib.parse import unquote, urlsplit

from src.utils.factories import NotificationFactory, status_code_for


class _GatewayHandler(BaseHTTPRequestHandler):
    """Fake of the gateway REST API: charge, status, cancel, refund."""

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def _dispatch(self, method: str) -> None:
        config = self.server.config  # type: ignore[attr-defined]
        path = urlsplit(self.path).path
        content_length = int(self.headers.get("Content-Length", 0) or 0)
        body = self.rfile.read(content_length) if content_length else b""

        with config["lock"]:
            config["requests"].append({
                "method": method,
                "path": path,
                "headers": dict(self.headers),
                "body": json.loads(body) if body else None,
            })

        if config["response_delay"] > 0:
            time.sleep(config["response_delay"])

        if self.headers.get("Authorization") != config["expected_auth"]:
            self._respond(401, {"status_code": "401", "status_message": "Access denied due to unauthorized transaction"})
            return

        if config["response_code"] is not None:
            self._respond(config["response_code"], {"status_code": str(config["response_code"]), "status_message": "Forced response"})
            return

        payload = json.loads(body) if body else {}
        parts = [unquote(p) for p in path.strip("/").split("/") if p]
        if parts[:1] == ["v2"]:
            parts = parts[1:]

        with config["lock"]:
            if method == "POST" and parts == ["charge"]:
                code, reply = self._charge(config, payload)
            elif method == "GET" and len(parts) == 2 and parts[1] == "status":
                if config["status_failures"] > 0:
                    config["status_failures"] -= 1
                    code, reply = 503, {"status_code": "503", "status_message": "Service unavailable"}
                else:
                    code, reply = self._status(config, parts[0])
            elif method == "POST" and len(parts) == 2 and parts[1] == "cancel":
                code, reply = self._cancel(config, parts[0])
            elif method == "POST" and len(parts) == 2 and parts[1] == "refund":
                code, reply = self._refund(config, parts[0], payload)
            else:
                code, reply = 404, {"status_code": "404", "status_message": "Unknown endpoint"}

            if code < 300 and config["omit_fields"]:
                reply = {k: v for k, v in reply.items() if k not in config["omit_fields"]}

        self._respond(code, reply)

    @staticmethod
    def _charge(config: dict, payload: dict) -> tuple[int, dict]:
        details = payload.get("transaction_details") or {}
        order_id = details.get("order_id")
        if not order_id or details.get("gross_amount") is None:
            return 400, {"status_code": "400", "status_message": "transaction_details is required"}
        if order_id in config["orders"]:
            return 406, {"status_code": "406", "status_message": "The request could not be completed due to a conflict"}

        enabled = payload.get("enabled_payments") or ["credit_card"]
        order = {
            "order_id": order_id,
            "transaction_id": str(uuid.uuid4()),
            "gross_amount": int(details["gross_amount"]),
            "transaction_status": config["charge_status"],
            "payment_type": enabled[0],
            "fraud_status": "accept",
            "refunded": 0,
        }
        config["orders"][order_id] = order
        token = uuid.uuid4().hex
        return 201, {
            **_order_body(order, "Success, transaction is created"),
            "token": token,
            "redirect_url": f"https://app.sandbox.example/snap/v2/vtweb/{token}",
        }

    @staticmethod
    def _status(config: dict, order_id: str) -> tuple[int, dict]:
        order = config["orders"].get(order_id)
        if order is None:
            return 404, {"status_code": "404", "status_message": "Transaction doesn't exist."}
        return 200, _order_body(order, "Success, transaction is found")

    @staticmethod
    def _cancel(config: dict, order_id: str) -> tuple[int, dict]:
        order = config["orders"].get(order_id)
        if order is None:
            return 404, {"status_code": "404", "status_message": "Transaction doesn't exist."}
        if order["transaction_status"] not in ("pending", "capture"):
            return 412, {"status_code": "412", "status_message": "Merchant cannot modify the status of the transaction"}
        order["transaction_status"] = "cancel"
        return 200, _order_body(order, "Success, transaction is canceled")

    @staticmethod
    def _refund(config: dict, order_id: str, payload: dict) -> tuple[int, dict]:
        order = config["orders"].get(order_id)
        if order is None:
            return 404, {"status_code": "404", "status_message": "Transaction doesn't exist."}
        if order["transaction_status"] not in ("settlement", "capture", "partial_refund"):
            return 412, {"status_code": "412", "status_message": "Merchant cannot modify the status of the transaction"}

        remaining = order["gross_amount"] - order["refunded"]
        amount = int(payload.get("amount", remaining))
        if amount <= 0 or amount > remaining:
            return 412, {"status_code": "412", "status_message": "Refund amount exceeds refundable amount"}

        order["refunded"] += amount
        order["transaction_status"] = "refund" if order["refunded"] == order["gross_amount"] else "partial_refund"
        return 200, {**_order_body(order, "Success, refund request is approved"), "refund_amount": f"{amount}.00"}

    def _respond(self, code: int, body: dict) -> None:
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(body).encode())

    def log_message(self, format, *args):
        """Suppress default request logging."""
        pass


def _order_body(order: dict, message: str) -> dict:
    return {
        "status_code": status_code_for(order["transaction_status"]),
        "status_message": message,
        "transaction_id": order["transaction_id"],
        "order_id": order["order_id"],
        "gross_amount": f"{order['gross_amount']}.00",
        "payment_type": order["payment_type"],
        "transaction_status": order["transaction_status"],
        "fraud_status": order["fraud_status"],
    }


class SandboxGatewayServer:
    """Local stand-in for the payment gateway, for integration and e2e tests."""

    def __init__(self, server_key: str, host: str = "127.0.0.1", port: int = 0):
        self._host = host
        self._port = port
        self.server_key = server_key
        token = base64.b64encode(f"{server_key}:".encode()).decode()
        self._config = {
            "expected_auth": f"Basic {token}",
            "response_code": None,
            "response_delay": 0,
            "charge_status": "pending",
            "status_failures": 0,
            "omit_fields": set(),
            "orders": {},
            "requests": [],
            "lock": threading.Lock(),
        }
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def set_response_code(self, code: int | None) -> Self:
        self._config["response_code"] = code
        return self

    def set_response_delay(self, seconds: float) -> Self:
        self._config["response_delay"] = seconds
        return self

    def set_charge_status(self, transaction_status: str) -> Self:
        self._config["charge_status"] = transaction_status
        return self

    def omit_reply_fields(self, *names: str) -> Self:
        """Drop these keys from successful replies, as a terse gateway would."""
        self._config["omit_fields"] = set(names)
        return self

    def fail_next_status_queries(self, count: int) -> Self:
        """The next ``count`` status queries answer 503."""
        self._config["status_failures"] = count
        return self

    def start(self) -> None:
        self._server = ThreadingHTTPServer((self._host, self._port), _GatewayHandler)
        self._server.config = self._config  # type: ignore[attr-defined]
        self._port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

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
        return f"http://{self._host}:{self._port}/v2"

    def settle(self, order_id: str, transaction_status: str = "settlement", fraud_status: str = "accept") -> dict:
        """Move an order to a new gateway status and return the signed notification for it."""
        with self._config["lock"]:
            order = self._config["orders"][order_id]
            order["transaction_status"] = transaction_status
            order["fraud_status"] = fraud_status
            snapshot = dict(order)

        return NotificationFactory.create(
            order_id=order_id,
            transaction_status=transaction_status,
            gross_amount=f"{snapshot['gross_amount']}.00",
            server_key=self.server_key,
            transaction_id=snapshot["transaction_id"],
            payment_type=snapshot["payment_type"],
            fraud_status=fraud_status,
        )

    def get_order(self, order_id: str) -> dict | None:
        with self._config["lock"]:
            order = self._config["orders"].get(order_id)
            return dict(order) if order else None

    def get_requests(self, path: str | None = None) -> list[dict]:
        with self._config["lock"]:
            if path is None:
                return list(self._config["requests"])
            return [r for r in self._config["requests"] if r["path"] == path]
