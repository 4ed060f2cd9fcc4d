# assinaturas/subscriptions.py
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import config, models
from .config import NIVEL_BASE, NIVEL_PREMIUM, logger
from .errors import ForeignSubscription, StaleEvent, UserNotFound
from .plans import PlanDescriptor
from .utils import utcnow


def find_user(db: Session, email: str) -> Optional[models.User]:
    if not email:
        return None
    return (
        db.query(models.User)
        .filter(func.lower(models.User.email) == email.strip().lower())
        .first()
    )


def _check_order(user: models.User, now: datetime):
    if user.ultimoeventoem and now < user.ultimoeventoem:
        raise StaleEvent(
            f"evento de {now.isoformat()} é anterior ao último aplicado ({user.ultimoeventoem.isoformat()})"
        )


def _create_placeholder(db: Session, email: str, name: Optional[str]) -> models.User:
    local = email.split("@")[0]
    user = models.User(
        username=f"{local}_{secrets.token_hex(4)}",
        email=email,
        name=name or local,
        nivelacesso=NIVEL_BASE,
    )
    db.add(user)
    db.flush()
    logger.info(f"➕ Usuário criado via webhook: {email} (id={user.id})")
    return user


def activate(db: Session, email: str, plan: PlanDescriptor, provider: str,
             now: datetime, name: Optional[str] = None,
             transaction_id: Optional[str] = None, subscription_id: Optional[str] = None) -> models.User:
    """
    Ativa/renova a assinatura. Operação de "set": aplicar o mesmo evento
    duas vezes resulta no mesmo estado.
    """
    user = find_user(db, email)
    if user is None:
        if not config.WEBHOOK_CRIAR_USUARIO:
            raise UserNotFound(email)
        user = _create_placeholder(db, email.strip().lower(), name)
    _check_order(user, now)

    user.nivelacesso = NIVEL_PREMIUM
    user.tipoplano = plan.plan_type
    user.dataassinatura = now
    if plan.is_lifetime:
        user.dataexpiracao = None
    else:
        user.dataexpiracao = now + timedelta(days=plan.duration_days or 0)
    user.acessovitalicio = plan.is_lifetime
    user.origemassinatura = provider
    user.codigotransacao = transaction_id
    user.codigoassinatura = subscription_id
    user.ultimoeventoem = now
    db.commit()
    logger.info(f"✅ {user.email}: {plan.plan_type} via {provider} até {user.dataexpiracao or 'vitalício'}")
    return user


def _check_same_subscription(user: models.User, provider: Optional[str], references):
    """
    O cancelamento precisa ser do mesmo provedor e citar a transação ou o
    assinante que ativou o plano atual (quando ambos os lados têm códigos).
    """
    if provider is None or not user.origemassinatura:
        return
    if user.origemassinatura != provider:
        raise ForeignSubscription(
            f"cancelamento via {provider} não corresponde à assinatura atual ({user.origemassinatura})"
        )
    current = {c for c in (user.codigotransacao, user.codigoassinatura) if c}
    received = {c for c in references if c}
    if current and received and not current & received:
        raise ForeignSubscription(
            f"transação {', '.join(sorted(received))} não corresponde à assinatura atual "
            f"({', '.join(sorted(current))})"
        )


def cancel(db: Session, email: str, now: datetime, provider: Optional[str] = None,
           references=()) -> models.User:
    user = find_user(db, email)
    if user is None:
        raise UserNotFound(email)
    _check_order(user, now)
    _check_same_subscription(user, provider, references)

    user.nivelacesso = NIVEL_BASE
    user.tipoplano = None
    user.dataexpiracao = now
    user.acessovitalicio = False
    user.ultimoeventoem = now
    db.commit()
    logger.info(f"⬇️ {user.email}: assinatura cancelada")
    return user


def expire_overdue(db: Session, now: Optional[datetime] = None) -> int:
    """Rebaixa assinaturas vencidas (não vitalícias)."""
    now = now or utcnow()
    users = (
        db.query(models.User)
        .filter(
            models.User.nivelacesso == NIVEL_PREMIUM,
            models.User.acessovitalicio.is_(False),
            models.User.dataexpiracao.isnot(None),
            models.User.dataexpiracao < now,
        )
        .all()
    )
    for user in users:
        user.nivelacesso = NIVEL_BASE
        user.tipoplano = None
    db.commit()
    return len(users)
