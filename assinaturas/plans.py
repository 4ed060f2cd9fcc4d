# assinaturas/plans.py
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from . import models
from .config import logger


@dataclass(frozen=True)
class PlanDescriptor:
    plan_type: str
    duration_days: Optional[int] = None
    is_lifetime: bool = False


CatalogKey = Tuple[str, str, str]  # (provider, product_id, offer_id)
Catalog = Mapping[CatalogKey, PlanDescriptor]

# Catálogo inicial (semeado na subida se ainda não existir)
DEFAULT_MAPPINGS = [
    # provider, product_id, offer_id, product_name, plan_type, duration_days, is_lifetime
    ("doppus", "PREMIUM_MENSAL", "", "Premium Mensal", "premium_mensal", 30, False),
    ("doppus", "PREMIUM_SEMESTRAL", "", "Premium Semestral", "premium_semestral", 180, False),
    ("doppus", "PREMIUM_ANUAL", "", "Premium Anual", "premium_anual", 365, False),
    ("doppus", "PREMIUM_VITALICIO", "", "Premium Vitalício", "premium_vitalicio", None, True),
    ("hotmart", "5381714", "aukjngrt", "App DesignAuto - Plano Anual", "premium_anual", 365, False),
    ("hotmart", "5381714", "", "App DesignAuto", "premium_mensal", 30, False),
]


def _key(provider, product_id, offer_id) -> CatalogKey:
    return (
        (provider or "").strip().lower(),
        (product_id or "").strip(),
        (offer_id or "").strip(),
    )


def build_catalog(rows) -> Catalog:
    catalog = {}
    for provider, product_id, offer_id, plan_type, duration_days, is_lifetime in rows:
        catalog[_key(provider, product_id, offer_id)] = PlanDescriptor(
            plan_type=plan_type,
            duration_days=None if is_lifetime else duration_days,
            is_lifetime=bool(is_lifetime),
        )
    return MappingProxyType(catalog)


def load_catalog(db: Session) -> Catalog:
    rows = (
        db.query(
            models.ProductMapping.provider,
            models.ProductMapping.product_id,
            models.ProductMapping.offer_id,
            models.ProductMapping.plan_type,
            models.ProductMapping.duration_days,
            models.ProductMapping.is_lifetime,
        )
        .filter(models.ProductMapping.is_active.is_(True))
        .all()
    )
    return build_catalog(rows)


def resolve_plan(catalog: Catalog, provider: str, product_id: Optional[str],
                 offer_id: Optional[str] = None) -> Optional[PlanDescriptor]:
    """
    Oferta exata primeiro, depois o mapeamento do produto inteiro.
    Retorna None para códigos desconhecidos.
    """
    if not product_id:
        return None
    if offer_id:
        plan = catalog.get(_key(provider, product_id, offer_id))
        if plan is not None:
            return plan
    return catalog.get(_key(provider, product_id, ""))


def seed_mappings(db: Session, mappings=DEFAULT_MAPPINGS) -> int:
    existing = {
        _key(p, prod, off)
        for p, prod, off in db.query(
            models.ProductMapping.provider,
            models.ProductMapping.product_id,
            models.ProductMapping.offer_id,
        )
    }
    created = 0
    for provider, product_id, offer_id, product_name, plan_type, duration_days, is_lifetime in mappings:
        if _key(provider, product_id, offer_id) in existing:
            continue
        db.add(models.ProductMapping(
            provider=provider,
            product_id=product_id,
            offer_id=offer_id,
            product_name=product_name,
            plan_type=plan_type,
            duration_days=duration_days,
            is_lifetime=is_lifetime,
        ))
        created += 1
    if created:
        db.commit()
        logger.info(f"🗂️ {created} mapeamentos de produto criados")
    return created
