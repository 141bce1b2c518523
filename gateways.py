"""
Payment provider clients.

Both clients run in sandbox mode outside production or when their
credentials are missing. Sandbox mode never touches the network.
"""
import base64
import hashlib
import hmac
import logging
import secrets
import threading
import time
import uuid
from urllib.parse import quote

import requests

from config import settings
from errors import GatewayError

logger = logging.getLogger(__name__)


def _base36(number: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


class PaystackGateway:
    def __init__(self, secret_key: str, public_key: str = "", base_url: str = "https://api.paystack.co", sandbox: bool = False, timeout: float = 15):
        self.secret_key = secret_key
        self.public_key = public_key
        self.base_url = base_url.rstrip("/")
        self.sandbox = sandbox or not secret_key
        self.timeout = timeout

    def generate_reference(self, prefix: str = "GHM") -> str:
        stamp = _base36(int(time.time() * 1000))
        return f"{prefix}-{stamp}-{secrets.token_hex(3).upper()}"

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    def _headers(self):
        return {"Authorization": f"Bearer {self.secret_key}", "Content-Type": "application/json"}

    def _call(self, method: str, path: str, **kwargs):
        try:
            response = requests.request(method, f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs)
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GatewayError(f"Paystack request failed: {exc}") from exc
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Paystack rejected the request")
        return body["data"]

    def initialize_transaction(self, email: str, amount: int, reference: str, currency: str, callback_url: str | None = None, metadata: dict | None = None):
        if self.sandbox:
            logger.info("[Paystack sandbox] initialize %s amount=%s email=%s", reference, amount, email)
            return {
                "authorization_url": f"{settings.FRONTEND_URL}/payment/verify?reference={reference}&demo=true",
                "access_code": f"ACCESS_{reference}",
                "reference": reference,
            }
        return self._call(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount,
                "reference": reference,
                "currency": currency,
                "callback_url": callback_url,
                "metadata": metadata or {},
                "channels": ["card", "mobile_money"],
            },
        )

    def verify_transaction(self, reference: str):
        """Returns the provider's transaction record; ``status`` is one of
        success, failed, abandoned or pending."""
        if self.sandbox:
            logger.info("[Paystack sandbox] verify %s", reference)
            return {"reference": reference, "status": "success", "gateway_response": "Successful", "channel": "card"}
        return self._call("GET", f"/transaction/verify/{quote(reference)}")

    def cancel(self, reference: str):
        # Paystack transactions expire on their own; nothing to call.
        return True


class MomoGateway:
    """MTN Mobile Money collections client."""

    def __init__(self, api_url: str, subscription_key: str = "", api_user: str = "", api_key: str = "", target_environment: str = "sandbox", sandbox: bool = False, sandbox_delay: float = 5.0, timeout: float = 15, clock=time.monotonic):
        self.api_url = api_url.rstrip("/")
        self.subscription_key = subscription_key
        self.api_user = api_user
        self.api_key = api_key
        self.target_environment = target_environment
        self.sandbox = sandbox or not subscription_key
        self.sandbox_delay = sandbox_delay
        self.timeout = timeout
        self._clock = clock
        self._pending = {}
        self._lock = threading.Lock()

    @staticmethod
    def format_phone_number(phone: str) -> str:
        cleaned = phone.replace(" ", "").replace("-", "")
        if cleaned.startswith("0"):
            cleaned = "233" + cleaned[1:]
        return cleaned.lstrip("+")

    def _headers(self):
        credentials = base64.b64encode(f"{self.api_user}:{self.api_key}".encode()).decode()
        return {
            "Authorization": f"Basic {credentials}",
            "X-Target-Environment": self.target_environment,
            "Ocp-Apim-Subscription-Key": self.subscription_key,
        }

    def request_to_pay(self, amount: int, currency: str, external_id: str, phone: str, message: str) -> str:
        reference = str(uuid.uuid4())
        if self.sandbox:
            logger.info("[MoMo sandbox] request %s amount=%s phone=%s", reference, amount, phone)
            with self._lock:
                self._pending[reference] = self._clock()
            return reference
        headers = dict(self._headers(), **{"X-Reference-Id": reference})
        try:
            response = requests.post(
                f"{self.api_url}/collection/v1_0/requesttopay",
                headers=headers,
                timeout=self.timeout,
                json={
                    "amount": f"{amount / 100:.2f}",
                    "currency": currency,
                    "externalId": external_id,
                    "payer": {"partyIdType": "MSISDN", "partyId": phone},
                    "payerMessage": message,
                    "payeeNote": message,
                },
            )
        except requests.RequestException as exc:
            raise GatewayError(f"MoMo request failed: {exc}") from exc
        if response.status_code != 202:
            raise GatewayError(f"MoMo API error: {response.text}")
        return reference

    def get_status(self, reference: str):
        """Returns ``{"status": PENDING|SUCCESSFUL|FAILED, "reason": ...}``."""
        if self.sandbox:
            with self._lock:
                started = self._pending.get(reference)
                if started is None:
                    raise GatewayError("Payment not found")
                if self._clock() - started < self.sandbox_delay:
                    return {"status": "PENDING", "reason": None}
                del self._pending[reference]
            return {"status": "SUCCESSFUL", "reason": None}
        try:
            response = requests.get(
                f"{self.api_url}/collection/v1_0/requesttopay/{reference}",
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GatewayError(f"MoMo status check failed: {exc}") from exc
        reason = body.get("reason")
        if isinstance(reason, dict):
            reason = reason.get("message")
        return {"status": body.get("status", "PENDING"), "reason": reason}

    def cancel(self, reference: str) -> bool:
        with self._lock:
            return self._pending.pop(reference, None) is not None


paystack = PaystackGateway(
    settings.PAYSTACK_SECRET_KEY,
    settings.PAYSTACK_PUBLIC_KEY,
    settings.PAYSTACK_BASE_URL,
    sandbox=not settings.is_production,
    timeout=settings.GATEWAY_TIMEOUT_SECONDS,
)

momo = MomoGateway(
    settings.MOMO_API_URL,
    settings.MOMO_SUBSCRIPTION_KEY,
    settings.MOMO_API_USER,
    settings.MOMO_API_KEY,
    settings.MOMO_TARGET_ENVIRONMENT,
    sandbox=not settings.is_production,
    sandbox_delay=settings.MOMO_SANDBOX_DELAY_SECONDS,
    timeout=settings.GATEWAY_TIMEOUT_SECONDS,
)


def get_paystack():
    return paystack


def get_momo():
    return momo