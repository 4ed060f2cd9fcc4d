# assinaturas/payments/doppus.py
import hashlib
import hmac
from typing import Any, Dict

from .. import config
from ..config import logger
from ..errors import PayloadError
from .base import (
    ACTIVATE, CANCEL, IGNORE, WebhookEvent,
    dig, first_str, find_email, header, normalize_email, parse_timestamp, safe_compare,
)

# Formato antigo: {"event": ..., "data": {...}}
LEGACY_ACTIONS = {
    "PAYMENT_APPROVED": ACTIVATE,
    "SUBSCRIPTION_CANCELLED": CANCEL,
    "SUBSCRIPTION_EXPIRED": CANCEL,
    "PAYMENT_REFUNDED": CANCEL,
}

# Formato novo (maio/2025): {"customer", "status": {"code"}, "items", ...}
STATUS_ACTIONS = {
    "approved": ACTIVATE,
    "canceled": CANCEL,
    "cancelled": CANCEL,
    "refunded": CANCEL,
    "chargeback": CANCEL,
    "expired": CANCEL,
}


class DoppusProvider:
    name = "doppus"

    def verify(self, headers, raw_body: bytes, payload: Any) -> bool:
        """hex(HMAC_SHA256(DOPPUS_SECRET_KEY, corpo bruto)) no cabeçalho X-Doppus-Signature."""
        secret = config.DOPPUS_SECRET_KEY
        if not secret:
            logger.warning("[doppus] DOPPUS_SECRET_KEY não definido; aceitando webhook sem validação")
            return True
        signature = header(headers, "X-Doppus-Signature", "x-doppus-signature")
        if not signature:
            logger.warning("[doppus] assinatura ausente")
            return False
        expected = hmac.new(secret.encode(), raw_body or b"", hashlib.sha256).hexdigest()
        return safe_compare(expected, signature.lower())

    def parse(self, payload: Dict[str, Any]) -> WebhookEvent:
        if not isinstance(payload, dict):
            raise PayloadError("payload Doppus deve ser um objeto JSON")
        legacy_event = first_str(payload.get("event"), payload.get("evento"))
        if legacy_event:
            return self._parse_legacy(payload, legacy_event.upper())
        status_code = first_str(dig(payload, "status", "code"))
        if status_code:
            return self._parse_status(payload, status_code.lower())
        raise PayloadError("webhook Doppus sem 'event' nem 'status.code'")

    def _parse_legacy(self, payload, event_type):
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}
        email = dig(data, "customer", "email") or find_email(data)
        return WebhookEvent(
            provider=self.name,
            event_type=event_type,
            action=LEGACY_ACTIONS.get(event_type, IGNORE),
            email=normalize_email(email if isinstance(email, str) else None),
            name=first_str(dig(data, "customer", "name")),
            product_id=first_str(dig(data, "product", "code")),
            offer_id=first_str(dig(data, "product", "offer")),
            transaction_id=first_str(dig(data, "transaction", "code"), dig(data, "code"), payload.get("id")),
            subscription_id=first_str(dig(data, "recurrence", "code"), dig(data, "subscription", "code")),
            occurred_at=parse_timestamp(dig(data, "status", "date")),
            raw=payload,
        )

    def _parse_status(self, payload, status_code):
        items = payload.get("items")
        item = items[0] if isinstance(items, list) and items and isinstance(items[0], dict) else {}
        email = dig(payload, "customer", "email") or find_email(payload.get("customer"))
        return WebhookEvent(
            provider=self.name,
            event_type=status_code.upper(),
            action=STATUS_ACTIONS.get(status_code, IGNORE),
            email=normalize_email(email if isinstance(email, str) else None),
            name=first_str(dig(payload, "customer", "name")),
            product_id=first_str(item.get("code")),
            offer_id=first_str(item.get("offer")),
            transaction_id=first_str(dig(payload, "transaction", "code"), payload.get("id")),
            subscription_id=first_str(dig(payload, "recurrence", "code")),
            occurred_at=parse_timestamp(dig(payload, "status", "date")),
            raw=payload,
        )
