# assinaturas/processing.py
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, subscriptions
from .config import logger
from .errors import ForeignSubscription, PayloadError, StaleEvent, UserNotFound
from .payments import ACTIVATE, CANCEL, WebhookEvent, get_provider
from .plans import Catalog, load_catalog, resolve_plan
from .utils import utcnow

# Status finais gravados em webhook_logs
RECEIVED = "received"
PROCESSED = "processed"
IGNORED = "ignored"
UNMAPPED = "unmapped"
REJECTED = "rejected"
USER_NOT_FOUND = "user_not_found"
STALE = "stale"
ERROR = "error"


def process_event(db: Session, event: WebhookEvent, catalog: Catalog,
                  received_at: Optional[datetime] = None) -> Tuple[str, Optional[str]]:
    """
    Aplica o evento ao usuário. Retorna (status, mensagem).
    Erros de banco sobem para quem chamou.
    """
    if event.action not in (ACTIVATE, CANCEL):
        logger.info(f"[{event.provider}] evento {event.event_type} sem processamento; ignorado")
        return IGNORED, None
    if not event.email:
        raise PayloadError(f"email do comprador ausente no evento {event.event_type}")

    # Data do provedor quando houver; assim reenvios do mesmo evento dão o mesmo estado
    now = event.occurred_at or received_at or utcnow()

    plan = resolve_plan(catalog, event.provider, event.product_id, event.offer_id)
    if plan is None:
        msg = f"produto/oferta sem mapeamento: {event.product_id}/{event.offer_id or '-'}"
        logger.warning(f"[{event.provider}] {event.event_type} {msg} ({event.email})")
        return UNMAPPED, msg

    try:
        if event.action == ACTIVATE:
            subscriptions.activate(
                db, event.email, plan, event.provider, now, name=event.name,
                transaction_id=event.transaction_id, subscription_id=event.subscription_id,
            )
        else:
            subscriptions.cancel(
                db, event.email, now, provider=event.provider,
                references=(event.transaction_id, event.subscription_id),
            )
    except UserNotFound as e:
        logger.warning(f"[{event.provider}] {e}")
        return USER_NOT_FOUND, str(e)
    except StaleEvent as e:
        logger.warning(f"[{event.provider}] {event.event_type} de {event.email} ignorado: {e}")
        return STALE, str(e)
    except ForeignSubscription as e:
        logger.warning(f"[{event.provider}] {event.event_type} de {event.email} ignorado: {e}")
        return IGNORED, str(e)
    return PROCESSED, None


def _first_received(db: Session, log: models.WebhookLog, event: WebhookEvent) -> datetime:
    # Sem data do provedor: usa o primeiro recebimento do mesmo evento/transação
    if event.occurred_at is not None or not event.transaction_id:
        return log.created_at
    first = (
        db.query(func.min(models.WebhookLog.created_at))
        .filter(
            models.WebhookLog.source == log.source,
            models.WebhookLog.transaction_id == event.transaction_id,
            models.WebhookLog.event_type == event.event_type,
        )
        .scalar()
    )
    return first or log.created_at


def process_log(db: Session, log_id: int) -> Optional[str]:
    """
    Processa um registro de webhook_logs e grava o resultado nele.
    Nunca levanta exceção: falhas ficam no log para correção manual.
    """
    log = db.get(models.WebhookLog, log_id)
    if log is None:
        logger.warning(f"webhook_log {log_id} não encontrado")
        return None

    try:
        event = get_provider(log.source).parse(log.payload)
        received_at = _first_received(db, log, event)
        status, message = process_event(db, event, load_catalog(db), received_at=received_at)
    except PayloadError as e:
        logger.warning(f"webhook_log {log_id}: payload inválido: {e}")
        status, message = ERROR, str(e)
    except KeyError as e:
        logger.warning(f"webhook_log {log_id}: {e}")
        status, message = ERROR, str(e)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"❌ Erro de banco ao processar webhook_log {log_id}")
        status, message = ERROR, f"erro de banco: {e.__class__.__name__}"

    try:
        log = db.get(models.WebhookLog, log_id)
        log.status = status
        log.error_message = message
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"❌ Falha ao atualizar status do webhook_log {log_id}")
    return status
