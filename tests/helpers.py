import hashlib
import hmac
import json
import time

WEBHOOK_SECRET = "whsec_test_secret"


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    ts = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_test_1", livemode: bool = False) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "livemode": livemode,
        "data": {"object": obj},
    })


class FakeResponse:
    """Just enough of ``requests.Response`` for the Zoho client."""

    def __init__(self, body=None, status_code=200, text=None):
        self._body = body or {}
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.text = text if text is not None else str(self._body)

    def json(self):
        return self._body
