"""
Conexão com o banco (PostgreSQL em produção, SQLite em dev/testes)
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}
    kwargs = {"connect_args": {"check_same_thread": False}}
    # Banco em memória precisa de uma única conexão compartilhada
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependência do FastAPI:
        @router.post("/x")
        def x(db: Session = Depends(get_db)): ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    # Importa os modelos para registrá-los no metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
