import hashlib
import hmac
import json

import pytest
from sqlalchemy.exc import SQLAlchemyError

from assinaturas import config, models, processing
from assinaturas.subscriptions import find_user

HOTMART_PATHS = ["/webhook/hotmart", "/api/webhooks/hotmart"]
DOPPUS_PATHS = ["/webhook/doppus", "/api/webhooks/doppus"]


def _logs(db):
    db.expire_all()
    return db.query(models.WebhookLog).order_by(models.WebhookLog.id).all()


def _user(db, email):
    db.expire_all()
    return find_user(db, email)


def test_health_ok(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


@pytest.mark.parametrize("path", HOTMART_PATHS)
def test_hotmart_purchase_activates_user(client, db, make_user, hotmart_payload, path):
    make_user("cliente@exemplo.com")
    resp = client.post(path, json=hotmart_payload())
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["log_id"] is not None

    user = _user(db, "cliente@exemplo.com")
    assert user.nivelacesso == "premium"
    assert user.tipoplano == "premium_anual"
    assert user.origemassinatura == "hotmart"

    (log,) = _logs(db)
    assert log.source == "hotmart"
    assert log.event_type == "PURCHASE_APPROVED"
    assert log.status == processing.PROCESSED
    assert log.email == "cliente@exemplo.com"
    assert log.transaction_id == "HP1234567890"
    assert log.payload["data"]["buyer"]["email"] == "cliente@exemplo.com"


def test_replayed_webhook_gives_same_state(client, db, make_user, hotmart_payload):
    make_user("cliente@exemplo.com")
    client.post("/webhook/hotmart", json=hotmart_payload())
    user = _user(db, "cliente@exemplo.com")
    first = (user.nivelacesso, user.tipoplano, user.dataassinatura, user.dataexpiracao)

    client.post("/webhook/hotmart", json=hotmart_payload())
    user = _user(db, "cliente@exemplo.com")
    assert (user.nivelacesso, user.tipoplano, user.dataassinatura, user.dataexpiracao) == first
    assert [log.status for log in _logs(db)] == [processing.PROCESSED, processing.PROCESSED]


def test_purchase_then_cancellation(client, db, make_user, hotmart_payload):
    make_user("cliente@exemplo.com")
    client.post("/webhook/hotmart", json=hotmart_payload())
    resp = client.post(
        "/webhook/hotmart",
        json=hotmart_payload(event="PURCHASE_REFUNDED", creation_date=1747447467789 + 60_000),
    )
    assert resp.status_code == 200
    user = _user(db, "cliente@exemplo.com")
    assert user.nivelacesso == config.NIVEL_BASE
    assert user.tipoplano is None


def test_late_approval_after_cancellation_is_stale(client, db, make_user, hotmart_payload):
    make_user("cliente@exemplo.com")
    client.post("/webhook/hotmart", json=hotmart_payload(event="PURCHASE_CANCELED",
                                                         creation_date=1747447467789 + 60_000))
    client.post("/webhook/hotmart", json=hotmart_payload())
    assert _user(db, "cliente@exemplo.com").nivelacesso == config.NIVEL_BASE
    assert _logs(db)[-1].status == processing.STALE


@pytest.mark.parametrize("event_type", ["PURCHASE_DELAYED", "EVENTO_DESCONHECIDO"])
def test_unknown_events_never_mutate(client, db, make_user, hotmart_payload, event_type):
    make_user("cliente@exemplo.com", nivelacesso="premium", tipoplano="premium_mensal")
    resp = client.post("/webhook/hotmart", json=hotmart_payload(event=event_type))
    assert resp.status_code == 200
    user = _user(db, "cliente@exemplo.com")
    assert (user.nivelacesso, user.tipoplano) == ("premium", "premium_mensal")
    assert _logs(db)[0].status == processing.IGNORED


def test_unmapped_product_is_logged_without_change(client, db, make_user, hotmart_payload):
    make_user("cliente@exemplo.com")
    resp = client.post("/webhook/hotmart", json=hotmart_payload(product_id=999, offer="xyz"))
    assert resp.status_code == 200
    assert _user(db, "cliente@exemplo.com").nivelacesso == config.NIVEL_BASE
    (log,) = _logs(db)
    assert log.status == processing.UNMAPPED
    assert "999" in log.error_message


def test_cancellation_for_unknown_user(client, db, hotmart_payload):
    resp = client.post("/webhook/hotmart", json=hotmart_payload(event="PURCHASE_CANCELED"))
    assert resp.status_code == 200
    assert _logs(db)[0].status == processing.USER_NOT_FOUND
    assert db.query(models.User).count() == 0


@pytest.mark.parametrize("body", [b"{isto nao e json", b"", b"[1, 2, 3]", b"{}"])
def test_bad_bodies_still_return_200(client, db, body):
    resp = client.post("/webhook/hotmart", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 200
    assert resp.json()["success"] is False
    (log,) = _logs(db)
    assert log.status == processing.ERROR
    assert log.error_message


def test_invalid_hottok_is_rejected_without_change(client, db, make_user, hotmart_payload, monkeypatch):
    monkeypatch.setattr(config, "HOTMART_HOTTOK", "segredo")
    make_user("cliente@exemplo.com")
    resp = client.post("/webhook/hotmart", json=hotmart_payload(), headers={"X-Hotmart-Hottok": "errado"})
    assert resp.status_code == 200
    assert _user(db, "cliente@exemplo.com").nivelacesso == config.NIVEL_BASE
    assert _logs(db)[0].status == processing.REJECTED

    resp = client.post("/webhook/hotmart", json=hotmart_payload(), headers={"X-Hotmart-Hottok": "segredo"})
    assert resp.json()["success"] is True
    assert _user(db, "cliente@exemplo.com").nivelacesso == "premium"


@pytest.mark.parametrize("path", DOPPUS_PATHS)
def test_doppus_signed_lifetime_purchase(client, db, make_user, doppus_payload, monkeypatch, path):
    monkeypatch.setattr(config, "DOPPUS_SECRET_KEY", "chave")
    make_user("cliente@exemplo.com")
    body = json.dumps(doppus_payload(code="PREMIUM_VITALICIO")).encode()
    sig = hmac.new(b"chave", body, hashlib.sha256).hexdigest()
    resp = client.post(path, content=body,
                       headers={"Content-Type": "application/json", "X-Doppus-Signature": sig})
    assert resp.status_code == 200
    user = _user(db, "cliente@exemplo.com")
    assert user.nivelacesso == "premium"
    assert user.acessovitalicio is True
    assert user.dataexpiracao is None
    assert user.origemassinatura == "doppus"


def test_doppus_activation_creates_unknown_user(client, db, doppus_payload):
    resp = client.post("/api/webhooks/doppus", json=doppus_payload(email="Nova@Exemplo.com"))
    assert resp.status_code == 200
    user = _user(db, "nova@exemplo.com")
    assert user is not None
    assert user.tipoplano == "premium_anual"


def test_database_failure_during_processing_returns_200(client, db, make_user, hotmart_payload, monkeypatch):
    make_user("cliente@exemplo.com")

    def _boom(*args, **kwargs):
        raise SQLAlchemyError("banco fora do ar")

    monkeypatch.setattr(processing.subscriptions, "activate", _boom)
    resp = client.post("/webhook/hotmart", json=hotmart_payload())
    assert resp.status_code == 200
    (log,) = _logs(db)
    assert log.status == processing.ERROR
    assert "erro de banco" in log.error_message
    assert _user(db, "cliente@exemplo.com").nivelacesso == config.NIVEL_BASE


def test_log_write_failure_still_processes(client, db, make_user, hotmart_payload, monkeypatch):
    make_user("cliente@exemplo.com")

    def _broken_log(**kwargs):
        raise SQLAlchemyError("tabela webhook_logs indisponível")

    monkeypatch.setattr(models, "WebhookLog", _broken_log)
    resp = client.post("/webhook/hotmart", json=hotmart_payload())

    assert resp.status_code == 200
    assert resp.json()["log_id"] is None
    assert _user(db, "cliente@exemplo.com").nivelacesso == "premium"


def test_unexpected_error_still_returns_200(client, db, hotmart_payload, monkeypatch):
    def _explode(*args, **kwargs):
        raise RuntimeError("inesperado")

    monkeypatch.setattr("assinaturas.webhooks._decode", _explode)
    resp = client.post("/webhook/hotmart", json=hotmart_payload())
    assert resp.status_code == 200
    assert resp.json()["success"] is False


def test_unmapped_cancellation_keeps_subscription(client, db, make_user, hotmart_payload):
    make_user("cliente@exemplo.com")
    client.post("/webhook/hotmart", json=hotmart_payload())
    resp = client.post(
        "/webhook/hotmart",
        json=hotmart_payload(event="PURCHASE_REFUNDED", product_id=999, offer="xyz",
                             creation_date=1747447467789 + 60_000),
    )
    assert resp.status_code == 200
    user = _user(db, "cliente@exemplo.com")
    assert (user.nivelacesso, user.tipoplano) == ("premium", "premium_anual")
    assert [log.status for log in _logs(db)] == [processing.PROCESSED, processing.UNMAPPED]


def test_cancellation_from_other_provider_keeps_lifetime(client, db, make_user, doppus_payload,
                                                        hotmart_payload):
    make_user("cliente@exemplo.com")
    client.post("/webhook/doppus", json=doppus_payload(code="PREMIUM_VITALICIO"))
    resp = client.post(
        "/webhook/hotmart",
        json=hotmart_payload(event="PURCHASE_REFUNDED", creation_date=1747447467789 + 86_400_000),
    )
    assert resp.status_code == 200
    user = _user(db, "cliente@exemplo.com")
    assert user.nivelacesso == "premium"
    assert user.acessovitalicio is True
    log = _logs(db)[-1]
    assert log.status == processing.IGNORED
    assert "doppus" in log.error_message


def test_cancellation_for_other_transaction_is_ignored(client, db, make_user, hotmart_payload):
    make_user("cliente@exemplo.com")
    client.post("/webhook/hotmart", json=hotmart_payload())
    refund = hotmart_payload(event="PURCHASE_REFUNDED", creation_date=1747447467789 + 60_000)
    refund["data"]["purchase"]["transaction"] = "HP0000000001"
    refund["data"]["subscription"]["subscriber"]["code"] = "SUB999"
    client.post("/webhook/hotmart", json=refund)

    assert _user(db, "cliente@exemplo.com").nivelacesso == "premium"
    assert _logs(db)[-1].status == processing.IGNORED


def test_replayed_webhook_without_date_gives_same_state(client, db, make_user):
    make_user("cliente@exemplo.com")
    payload = {
        "event": "PAYMENT_APPROVED",
        "data": {
            "customer": {"email": "cliente@exemplo.com"},
            "product": {"code": "PREMIUM_ANUAL"},
            "transaction": {"code": "T-LEG-1"},
        },
    }
    client.post("/webhook/doppus", json=payload)
    user = _user(db, "cliente@exemplo.com")
    first = (user.dataassinatura, user.dataexpiracao, user.ultimoeventoem)

    client.post("/webhook/doppus", json=payload)
    user = _user(db, "cliente@exemplo.com")
    assert (user.dataassinatura, user.dataexpiracao, user.ultimoeventoem) == first
    logs = _logs(db)
    assert [log.status for log in logs] == [processing.PROCESSED, processing.PROCESSED]
    assert first[0] == logs[0].created_at
