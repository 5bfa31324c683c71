"""
Paynow Gateway Client — Web redirect, EcoCash push, status polling and
result-URL hash verification. Holds no business state.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional
from urllib.parse import parse_qsl

import requests

from cemetery.config import Settings, get_settings
from cemetery.exceptions import GatewayConfigurationError, GatewayError
from cemetery.utils.hashing import hashes_match, paynow_hash
from cemetery.utils.validators import format_money, normalize_ecocash_phone

logger = logging.getLogger(__name__)

WEB_HASH_FIELDS = (
    "id", "reference", "amount", "additionalinfo", "returnurl", "resulturl", "status",
)
MOBILE_HASH_FIELDS = (
    "id", "reference", "merchantreference", "amount", "additionalinfo",
    "returnurl", "resulturl", "status", "phone", "method",
)
WEBHOOK_HASH_FIELDS = ("reference", "paynowreference", "amount", "status", "pollurl")

PAID_STATUSES = {"paid", "awaiting delivery", "delivered"}
FAILED_STATUSES = {"failed", "cancelled", "expired"}


@dataclass
class RedirectInitiation:
    redirect_url: str
    poll_url: str


@dataclass
class PushInitiation:
    poll_url: str


@dataclass
class PollResult:
    status: str                      # PAID | FAILED | PENDING
    gateway_status: str              # Raw Paynow status, e.g. "Awaiting Delivery"
    reference: Optional[str] = None
    amount: Optional[Decimal] = None


class PaynowClient:
    """Thin wrapper over the Paynow HTTP interface (form-encoded in and out)."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.http = session or requests.Session()
        self.http.headers.update({"Content-Type": "application/x-www-form-urlencoded"})

    # ─── Config ──────────────────────────────────────────────────────
    def _credentials(self) -> Dict[str, str]:
        s = self.settings
        missing = [
            name for name in (
                "PAYNOW_INTEGRATION_ID", "PAYNOW_INTEGRATION_KEY",
                "PAYNOW_RETURN_URL", "PAYNOW_RESULT_URL",
            )
            if not getattr(s, name)
        ]
        if missing:
            raise GatewayConfigurationError(f"Paynow settings are missing: {', '.join(missing)}")
        return {
            "id": s.PAYNOW_INTEGRATION_ID,
            "key": s.PAYNOW_INTEGRATION_KEY,
            "returnurl": s.PAYNOW_RETURN_URL,
            "resulturl": s.PAYNOW_RESULT_URL,
        }

    def _post(self, url: str, data: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        try:
            response = self.http.post(url, data=data, timeout=self.settings.PAYNOW_TIMEOUT_SECONDS)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise GatewayError(f"Paynow request failed: {exc}") from exc
        return dict(parse_qsl(response.text, keep_blank_values=True))

    # ─── Initiation ──────────────────────────────────────────────────
    def initiate_redirect(self, reference: str, amount: Decimal) -> RedirectInitiation:
        """Start a web checkout; the payer is sent to ``redirect_url``."""
        creds = self._credentials()
        payload = {
            "id": creds["id"],
            "reference": reference,
            "amount": format_money(amount),
            "additionalinfo": self.settings.PAYMENT_DESCRIPTION,
            "returnurl": creds["returnurl"],
            "resulturl": creds["resulturl"],
            "status": "Message",
        }
        payload["hash"] = paynow_hash(payload, WEB_HASH_FIELDS, creds["key"])

        parsed = self._post(self.settings.PAYNOW_WEB_ENDPOINT, payload)
        if parsed.get("status", "").lower() != "ok" or not parsed.get("pollurl"):
            logger.warning("Paynow rejected redirect for %s: %s", reference, parsed.get("error"))
            raise GatewayError(f"Invalid Paynow response: {parsed.get('error') or 'unknown error'}")

        return RedirectInitiation(redirect_url=parsed.get("browserurl", ""), poll_url=parsed["pollurl"])

    def initiate_push(self, reference: str, amount: Decimal, phone: str) -> PushInitiation:
        """Send an EcoCash prompt to the payer's handset."""
        creds = self._credentials()
        payload = {
            "id": creds["id"],
            "reference": reference,
            "merchantreference": reference,
            "amount": format_money(amount),
            "additionalinfo": self.settings.PAYMENT_DESCRIPTION,
            "returnurl": creds["returnurl"],
            "resulturl": creds["resulturl"],
            "status": "Message",
            "phone": normalize_ecocash_phone(phone),
            "method": "ecocash",
        }
        payload["hash"] = paynow_hash(payload, MOBILE_HASH_FIELDS, creds["key"])

        parsed = self._post(self.settings.PAYNOW_MOBILE_ENDPOINT, payload)
        if parsed.get("status", "").lower() != "ok" or not parsed.get("pollurl"):
            logger.warning("Paynow rejected EcoCash push for %s: %s", reference, parsed.get("error"))
            raise GatewayError(f"EcoCash failed: {parsed.get('error') or 'Unknown error'}")

        return PushInitiation(poll_url=parsed["pollurl"])

    # ─── Polling ─────────────────────────────────────────────────────
    def poll(self, poll_url: str) -> PollResult:
        """Ask Paynow for the current status of a transaction.

        Raises:
            GatewayError: the poll request failed or timed out.
        """
        parsed = self._post(poll_url)
        raw = parsed.get("status", "")
        status = raw.lower()
        amount = None
        if parsed.get("amount"):
            try:
                amount = Decimal(parsed["amount"])
            except InvalidOperation:
                logger.warning("Paynow poll returned a malformed amount: %r", parsed["amount"])

        if status in PAID_STATUSES:
            mapped = "PAID"
        elif status in FAILED_STATUSES:
            mapped = "FAILED"
        else:
            mapped = "PENDING"
        return PollResult(status=mapped, gateway_status=raw, reference=parsed.get("reference"), amount=amount)

    # ─── Webhook ─────────────────────────────────────────────────────
    def verify_webhook_signature(self, payload: Dict[str, str]) -> bool:
        """Check the hash Paynow attaches to result-URL posts."""
        if not payload or not payload.get("hash"):
            return False
        key = self.settings.PAYNOW_INTEGRATION_KEY
        if not key:
            logger.error("Cannot verify Paynow webhook: PAYNOW_INTEGRATION_KEY is not set")
            return False
        expected = paynow_hash(payload, WEBHOOK_HASH_FIELDS, key)
        return hashes_match(expected, payload["hash"])


@lru_cache()
def get_paynow_client() -> PaynowClient:
    """FastAPI dependency; overridden in tests with a fake gateway."""
    return PaynowClient()
