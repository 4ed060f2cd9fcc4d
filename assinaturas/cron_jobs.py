# assinaturas/cron_jobs.py
import argparse

from .config import logger
from .database import SessionLocal, init_db
from .models import WebhookLog
from .processing import ERROR, RECEIVED, process_log
from .subscriptions import expire_overdue
from .utils import utcnow


def expire_plans(now=None):
    db = SessionLocal()
    try:
        total = expire_overdue(db, now or utcnow())
    finally:
        db.close()
    logger.info(f"⏰ {total} assinaturas vencidas rebaixadas")
    return total


def reprocess_pending(limit=100):
    """Reprocessa webhooks que ficaram em 'received' ou 'error'."""
    db = SessionLocal()
    try:
        ids = [
            row.id for row in
            db.query(WebhookLog.id)
            .filter(WebhookLog.status.in_([RECEIVED, ERROR]))
            .order_by(WebhookLog.created_at, WebhookLog.id)
            .limit(limit)
        ]
        results = {}
        for log_id in ids:
            status = process_log(db, log_id)
            results[status] = results.get(status, 0) + 1
    finally:
        db.close()
    logger.info(f"🔁 {len(ids)} webhooks reprocessados: {results}")
    return results


def main(argv=None):
    parser = argparse.ArgumentParser(description="🗓️ Rotinas de manutenção das assinaturas.")
    subparsers = parser.add_subparsers(dest="comando", required=True)
    subparsers.add_parser("expirar", help="Rebaixar assinaturas vencidas")
    parser_reprocessar = subparsers.add_parser("reprocessar", help="Reprocessar webhooks pendentes/com erro")
    parser_reprocessar.add_argument("--limite", type=int, default=100, help="Máximo de webhooks por execução")

    args = parser.parse_args(argv)
    init_db()
    if args.comando == "expirar":
        expire_plans()
    elif args.comando == "reprocessar":
        reprocess_pending(limit=args.limite)


if __name__ == "__main__":
    main()
