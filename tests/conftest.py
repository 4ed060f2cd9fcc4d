import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["HOTMART_HOTTOK"] = ""
os.environ["DOPPUS_SECRET_KEY"] = ""
os.environ["WEBHOOK_CRIAR_USUARIO"] = "true"

import pytest
from fastapi.testclient import TestClient

from assinaturas import config, main, models, plans
from assinaturas.database import Base, SessionLocal, engine

# 2025-05-17T02:04:27.789Z
HOTMART_CREATION_MS = 1747447467789


@pytest.fixture(autouse=True)
def _reset_db(monkeypatch):
    monkeypatch.setattr(config, "HOTMART_HOTTOK", "")
    monkeypatch.setattr(config, "DOPPUS_SECRET_KEY", "")
    monkeypatch.setattr(config, "WEBHOOK_CRIAR_USUARIO", True)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    plans.seed_mappings(session)
    session.close()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def make_user(db):
    def _make(email, **fields):
        user = models.User(username=email.split("@")[0], email=email, **fields)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def hotmart_payload():
    def _build(event="PURCHASE_APPROVED", email="cliente@exemplo.com", product_id=5381714,
               offer="aukjngrt", creation_date=HOTMART_CREATION_MS, **extra):
        payload = {
            "id": "083bb5a0-f7e0-414b-b600-585a015403f2",
            "creation_date": creation_date,
            "event": event,
            "version": "2.0.0",
            "data": {
                "product": {"id": product_id, "name": "App DesignAuto"},
                "buyer": {"email": email, "name": "Cliente Teste"},
                "purchase": {
                    "transaction": "HP1234567890",
                    "status": "APPROVED",
                    "offer": {"code": offer},
                },
                "subscription": {"subscriber": {"code": "SUB123"}, "plan": {"name": "Plano Anual"}},
            },
        }
        payload.update(extra)
        return payload
    return _build


@pytest.fixture
def doppus_payload():
    def _build(status="approved", email="cliente@exemplo.com", code="PREMIUM_ANUAL", offer=None,
               date="2025-05-17T16:30:00.000Z"):
        item = {"code": code, "name": "Design Auto Premium", "value": 297.00}
        if offer:
            item["offer"] = offer
        return {
            "customer": {"name": "Cliente Doppus", "email": email, "doc": "12345678900"},
            "status": {"code": status, "date": date},
            "transaction": {"code": "TX987654321", "total": 297.00, "payment_type": "credit_card"},
            "items": [item],
            "recurrence": {"code": "REC987654", "periodicy": "yearly"},
        }
    return _build
