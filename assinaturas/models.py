# assinaturas/models.py
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, JSON, UniqueConstraint,
)
from .utils import utcnow
from .database import Base
from .config import NIVEL_BASE


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    senha = Column(String, nullable=True)

    # Assinatura
    nivelacesso = Column(String(50), nullable=False, default=NIVEL_BASE)
    tipoplano = Column(String(100), nullable=True)
    dataassinatura = Column(DateTime, nullable=True)
    dataexpiracao = Column(DateTime, nullable=True)
    acessovitalicio = Column(Boolean, nullable=False, default=False)
    origemassinatura = Column(String(50), nullable=True)
    ultimoeventoem = Column(DateTime, nullable=True)  # data do último webhook aplicado
    codigotransacao = Column(String(255), nullable=True)  # transação que ativou o plano atual
    codigoassinatura = Column(String(255), nullable=True)  # assinante/recorrência no provedor

    isactive = Column(Boolean, default=True)
    criadoem = Column(DateTime, default=utcnow, nullable=False)
    atualizadoem = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ProductMapping(Base):
    """Código de produto/oferta do provedor -> plano interno."""
    __tablename__ = "product_mappings"
    __table_args__ = (UniqueConstraint("provider", "product_id", "offer_id", name="uq_product_mapping"),)

    id = Column(Integer, primary_key=True)
    provider = Column(String(50), nullable=False, index=True)
    product_id = Column(String(255), nullable=False)
    offer_id = Column(String(255), nullable=False, default="")  # "" = produto inteiro
    product_name = Column(String(255), nullable=True)
    plan_type = Column(String(100), nullable=False)
    duration_days = Column(Integer, nullable=True)
    is_lifetime = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class WebhookLog(Base):
    __tablename__ = "webhook_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(50), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, default="unknown")
    status = Column(String(50), nullable=False, default="received", index=True)
    email = Column(String(255), nullable=True, index=True)
    transaction_id = Column(String(255), nullable=True, index=True)
    source_ip = Column(String(45), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
