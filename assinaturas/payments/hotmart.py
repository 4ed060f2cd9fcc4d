# assinaturas/payments/hotmart.py
from typing import Any, Dict

from .. import config
from ..config import logger
from ..errors import PayloadError
from .base import (
    ACTIVATE, CANCEL, IGNORE, WebhookEvent,
    dig, first_str, find_email, header, normalize_email, parse_timestamp, safe_compare,
)

ACTIVATE_EVENTS = {
    "PURCHASE_APPROVED",
    "PURCHASE_COMPLETE",
    "SUBSCRIPTION_REACTIVATION",
}
CANCEL_EVENTS = {
    "PURCHASE_CANCELED",
    "PURCHASE_REFUNDED",
    "PURCHASE_CHARGEBACK",
    "CHARGEBACK",
    "PURCHASE_EXPIRED",
    "SUBSCRIPTION_CANCELLATION",
}


class HotmartProvider:
    """
    Webhooks Hotmart (versão 2.0.0).
    - Autenticidade pelo "hottok" (cabeçalho X-Hotmart-Hottok ou campo do corpo).
    - PURCHASE_DELAYED / PURCHASE_PROTEST são apenas registrados.
    """
    name = "hotmart"

    def verify(self, headers, raw_body: bytes, payload: Any) -> bool:
        secret = config.HOTMART_HOTTOK
        if not secret:
            logger.warning("[hotmart] HOTMART_HOTTOK não definido; aceitando webhook sem validação")
            return True
        token = header(headers, "X-Hotmart-Hottok", "x-hotmart-hottok", "X-Hotmart-Webhook-Token")
        if not token and isinstance(payload, dict):
            token = first_str(payload.get("hottok")) or ""
        if not token:
            logger.warning("[hotmart] hottok ausente")
            return False
        return safe_compare(token, secret)

    def parse(self, payload: Dict[str, Any]) -> WebhookEvent:
        if not isinstance(payload, dict):
            raise PayloadError("payload Hotmart deve ser um objeto JSON")
        event_type = first_str(payload.get("event"))
        if not event_type:
            raise PayloadError("campo 'event' ausente no webhook Hotmart")
        event_type = event_type.upper()

        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}

        email = (
            dig(data, "buyer", "email")
            or dig(data, "subscriber", "email")
            or dig(data, "subscription", "subscriber", "email")
            or find_email(data)
        )
        name = first_str(dig(data, "buyer", "name"), dig(data, "subscriber", "name"))

        if event_type in ACTIVATE_EVENTS:
            action = ACTIVATE
        elif event_type in CANCEL_EVENTS:
            action = CANCEL
        else:
            action = IGNORE

        return WebhookEvent(
            provider=self.name,
            event_type=event_type,
            action=action,
            email=normalize_email(email if isinstance(email, str) else None),
            name=name,
            product_id=first_str(dig(data, "product", "id"), dig(data, "product", "ucode")),
            offer_id=first_str(dig(data, "purchase", "offer", "code")),
            transaction_id=first_str(
                dig(data, "purchase", "transaction"),
                dig(data, "subscription", "subscriber", "code"),
                dig(data, "subscriber", "code"),
            ),
            subscription_id=first_str(
                dig(data, "subscription", "subscriber", "code"),
                dig(data, "subscriber", "code"),
            ),
            occurred_at=parse_timestamp(payload.get("creation_date")),
            raw=payload,
        )
