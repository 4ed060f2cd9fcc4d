# assinaturas/utils.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Agora em UTC, sem tzinfo (mesmo formato das colunas DateTime)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
