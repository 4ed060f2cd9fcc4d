# assinaturas/webhooks.py
import json

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import database, models
from .config import logger
from .database import get_db
from .errors import PayloadError
from .payments import get_provider
from .plans import load_catalog
from .processing import ERROR, RECEIVED, REJECTED, process_event, process_log
from .utils import utcnow

router = APIRouter(tags=["webhooks"])


# =====================
# PROCESSAMENTO EM SEGUNDO PLANO
# =====================

def _process_log_task(log_id: int):
    db = database.SessionLocal()
    try:
        status = process_log(db, log_id)
        logger.info(f"🏁 webhook_log {log_id} -> {status}")
    finally:
        db.close()


def _process_event_task(event):
    # Usado quando nem o log pôde ser gravado
    db = database.SessionLocal()
    try:
        status, message = process_event(db, event, load_catalog(db))
        logger.info(f"🏁 {event.provider} {event.event_type} (sem log) -> {status} {message or ''}")
    except (PayloadError, SQLAlchemyError):
        db.rollback()
        logger.exception(f"❌ Falha ao processar {event.provider} {event.event_type} sem log")
    finally:
        db.close()


# =====================
# RECEPÇÃO
# =====================

def _source_ip(request: Request):
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _decode(raw: bytes):
    """Retorna (payload, erro). Corpo que não é objeto JSON fica em {"_raw": ...}."""
    try:
        payload = json.loads(raw) if raw else None
    except ValueError as e:
        return {"_raw": raw.decode("utf-8", "replace")}, f"JSON inválido: {e}"
    if not isinstance(payload, dict):
        return {"_raw": payload}, "corpo JSON não é um objeto"
    return payload, None


def _receive(provider_name: str, raw: bytes, headers, source_ip, background_tasks: BackgroundTasks, db: Session):
    # Síncrono: roda no threadpool para não travar o event loop com o banco
    provider = get_provider(provider_name)
    payload, error = _decode(raw)

    event = None
    if error is None:
        try:
            event = provider.parse(payload)
        except PayloadError as e:
            error = str(e)

    if error is None and not provider.verify(headers, raw, payload):
        status, error = REJECTED, "assinatura/token do webhook inválido"
    elif error is not None:
        status = ERROR
    else:
        status = RECEIVED

    event_type = event.event_type if event else str(payload.get("event") or "unknown")
    logger.info(f"🔔 Webhook {provider_name} recebido: {event_type} ({event.email if event else '-'}) -> {status}")
    if error:
        logger.warning(f"[{provider_name}] {error}")

    log_id = None
    try:
        log = models.WebhookLog(
            source=provider_name,
            event_type=event_type[:100],
            status=status,
            email=event.email if event else None,
            transaction_id=event.transaction_id if event else None,
            source_ip=source_ip,
            payload=payload,
            error_message=error,
        )
        db.add(log)
        db.commit()
        log_id = log.id
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"❌ Erro ao registrar webhook {provider_name} no banco")

    if status == RECEIVED:
        if log_id is not None:
            background_tasks.add_task(_process_log_task, log_id)
        else:
            background_tasks.add_task(_process_event_task, event)

    return {
        "success": status == RECEIVED,
        "message": "Webhook recebido com sucesso" if status == RECEIVED else f"Webhook registrado: {error}",
        "log_id": log_id,
        "timestamp": utcnow().isoformat(),
    }


async def _safe_receive(provider_name, request, background_tasks, db):
    # O provedor reenvia em qualquer resposta != 200; confirmamos sempre
    try:
        raw = await request.body()
        return await run_in_threadpool(
            _receive, provider_name, raw, request.headers, _source_ip(request), background_tasks, db
        )
    except Exception:
        logger.exception(f"❌ Erro não tratado no webhook {provider_name}")
        return {
            "success": False,
            "message": "Erro ao processar webhook, mas confirmamos o recebimento",
            "log_id": None,
            "timestamp": utcnow().isoformat(),
        }


@router.post("/webhook/hotmart")
@router.post("/api/webhooks/hotmart")
async def webhook_hotmart(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    return await _safe_receive("hotmart", request, background_tasks, db)


@router.post("/webhook/doppus")
@router.post("/api/webhooks/doppus")
async def webhook_doppus(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    return await _safe_receive("doppus", request, background_tasks, db)
