# assinaturas/payments/base.py
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from dateutil import parser as date_parser

EPOCH = datetime(1970, 1, 1)

ACTIVATE = "activate"
CANCEL = "cancel"
IGNORE = "ignore"


@dataclass(frozen=True)
class WebhookEvent:
    provider: str
    event_type: str
    action: str
    email: Optional[str] = None
    name: Optional[str] = None
    product_id: Optional[str] = None
    offer_id: Optional[str] = None
    transaction_id: Optional[str] = None
    subscription_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)


def dig(node: Any, *path: str) -> Any:
    """payload["a"]["b"]... tolerante a chaves ausentes."""
    for key in path:
        if isinstance(node, dict) and key in node:
            node = node[key]
        else:
            return None
    return node


def first_str(*values: Any) -> Optional[str]:
    for v in values:
        if v is None or isinstance(v, (dict, list, bool)):
            continue
        s = str(v).strip()
        if s:
            return s
    return None


def find_email(node: Any) -> Optional[str]:
    # Busca profunda: primeiro chaves "email", depois qualquer string com @
    if isinstance(node, dict):
        v = node.get("email")
        if isinstance(v, str) and "@" in v:
            return v
        for value in node.values():
            found = find_email(value)
            if found:
                return found
    elif isinstance(node, list):
        for item in node:
            found = find_email(item)
            if found:
                return found
    elif isinstance(node, str) and "@" in node and "." in node and " " not in node.strip():
        return node
    return None


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Converte epoch em ms (Hotmart) ou ISO-8601 (Doppus) para datetime UTC sem tz.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            # Hotmart envia epoch em milissegundos
            if value > 10**11:
                return EPOCH + timedelta(milliseconds=value)
            return EPOCH + timedelta(seconds=value)
        parsed = date_parser.isoparse(str(value))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def header(headers, *names: str) -> str:
    # Proxies podem normalizar o nome; tentamos várias chaves
    for n in names:
        v = headers.get(n)
        if v:
            return v.strip()
    return ""


def safe_compare(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())
