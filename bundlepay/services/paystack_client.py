"""
Paystack API client: hosted transaction initialisation and
verify-by-reference.

Amounts cross this boundary in minor units (pesewas/kobo, x100); callers
only ever see 2-decimal Decimal major units.
"""

import json
import logging
from decimal import Decimal

import httpx

from bundlepay.services.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"
INITIALIZE_PATH = "/transaction/initialize"
VERIFY_PATH = "/transaction/verify"
BALANCE_PATH = "/balance"

SUCCESS_STATUS = "success"
# Final non-success statuses; anything else (abandoned, ongoing, pending,
# processing, queued) is a checkout still in progress.
FAILED_STATUSES = ("failed", "reversed")


class PaystackClientError(Exception):
    """Gateway call failed: transport error, HTTP error, or status=false body."""

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


class PaystackClient:
    """Thin Paystack REST client over httpx with a bounded timeout."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = 10.0,
    ):
        """
        Args:
            secret_key: Paystack secret key (sk_live_... / sk_test_...).
            base_url: API root, overridable for sandboxes.
            timeout: seconds allowed per request.
        """
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        """
        Perform one API call and return the decoded body.

        Raises:
            PaystackClientError: transport failure, non-2xx status, or a
                body whose "status" flag is false.
        """
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                if method == "GET":
                    response = client.get(url, headers=self._headers())
                else:
                    response = client.post(url, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            raise PaystackClientError(f"Request to Paystack timed out: {e}")
        except httpx.HTTPError as e:
            raise PaystackClientError(f"Network error: Could not reach Paystack servers ({e})")

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = {}

        if response.status_code >= 400:
            message = data.get("message") or "Unknown error"
            if response.status_code == 401:
                message = "Invalid API key or unauthorized access"
            raise PaystackClientError(message, http_status=response.status_code)

        if not data.get("status"):
            raise PaystackClientError(
                data.get("message") or "Paystack returned an unsuccessful response",
                http_status=response.status_code,
            )
        return data

    def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        callback_url: str,
        metadata: dict,
        reference: str | None = None,
    ) -> dict:
        """
        Create a hosted checkout transaction.

        Args:
            email: customer email.
            amount: price in major units.
            callback_url: where Paystack sends the customer afterwards.
            metadata: echoed back verbatim on verification.
            reference: our own unique reference; Paystack generates one if omitted.

        Returns:
            {"authorization_url", "access_code", "reference"}

        Raises:
            PaystackClientError
        """
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "callback_url": callback_url,
            "metadata": metadata,
        }
        if reference:
            payload["reference"] = reference

        try:
            data = self._request("POST", INITIALIZE_PATH, payload)
        except PaystackClientError as e:
            if e.http_status == 422:
                raise PaystackClientError(
                    f"Invalid transaction data provided: {e}", http_status=422
                )
            raise

        result = data.get("data") or {}
        if not result.get("authorization_url"):
            raise PaystackClientError("Paystack response is missing authorization_url")
        return {
            "authorization_url": result["authorization_url"],
            "access_code": result.get("access_code"),
            "reference": result.get("reference") or reference,
        }

    def verify_transaction(self, reference: str) -> dict:
        """
        Authoritative status and amount of a transaction.

        Returns:
            {"reference", "status", "amount" (Decimal), "metadata" (dict), "paid_at"}

        Raises:
            PaystackClientError
        """
        try:
            data = self._request("GET", f"{VERIFY_PATH}/{reference}")
        except PaystackClientError as e:
            if e.http_status == 404:
                raise PaystackClientError("Transaction reference not found", http_status=404)
            raise

        result = data.get("data") or {}
        try:
            amount = from_minor_units(result.get("amount", 0))
        except (ValueError, TypeError) as e:
            raise PaystackClientError(f"Unparseable amount in verify response: {e}")

        return {
            "reference": result.get("reference") or reference,
            "status": result.get("status"),
            "amount": amount,
            "metadata": _decode_metadata(result.get("metadata")),
            "paid_at": result.get("paid_at") or result.get("paidAt"),
        }

    def verify_connectivity(self) -> bool:
        """Check the secret key by hitting the balance endpoint."""
        try:
            self._request("GET", BALANCE_PATH)
            return True
        except PaystackClientError as e:
            logger.warning("Paystack connectivity check failed: %s", e)
            return False


def _decode_metadata(raw) -> dict:
    """Paystack echoes metadata as an object, or as a JSON string for some integrations."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw:
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}
