from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from apps.rotafrete import payments

TRANSACTION_XML = b"""<?xml version="1.0" encoding="ISO-8859-1"?>
<transaction>
    <code>9E884542-81B3-4419-9A75-BCC6FB495EF1</code>
    <reference>company1:plan1</reference>
    <status>3</status>
    <grossAmount>49.90</grossAmount>
    <paymentMethod><type>1</type></paymentMethod>
    <sender><email>empresa@example.com</email></sender>
</transaction>"""


def _client():
    app = FastAPI()
    app.include_router(payments.router)
    return TestClient(app)


def test_missing_notification_code_is_400():
    res = _client().post("/api/webhooks/pagseguro")
    assert res.status_code == 400
    assert res.json() == {"error": "notificationCode não fornecido"}


def test_notification_code_is_forwarded(monkeypatch):
    seen = []
    monkeypatch.setattr(payments, "process_pagseguro_notification", lambda code: seen.append(code))

    res = _client().post("/api/webhooks/pagseguro", params={"notificationCode": "ABC-123"})

    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert seen == ["ABC-123"]


def test_processing_failure_is_500(monkeypatch):
    def _boom(code):
        raise RuntimeError("PagSeguro indisponível")

    monkeypatch.setattr(payments, "process_pagseguro_notification", _boom)

    res = _client().post("/api/webhooks/pagseguro", params={"notificationCode": "ABC-123"})

    assert res.status_code == 500
    assert res.json() == {"error": "Erro interno do servidor", "message": "PagSeguro indisponível"}


def test_liveness_check():
    res = _client().get("/api/webhooks/pagseguro")
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Webhook PagSeguro funcionando"
    assert body["timestamp"]


def test_parse_transaction_reads_fields():
    tx = payments.parse_transaction(TRANSACTION_XML)
    assert tx["reference"] == "company1:plan1"
    assert tx["status"] == "3"
    assert tx["grossAmount"] == "49.90"
    assert tx["senderEmail"] == "empresa@example.com"


def test_paid_transaction_assigns_plan(fake_db, monkeypatch):
    monkeypatch.setattr(payments, "fetch_transaction", lambda code: payments.parse_transaction(TRANSACTION_XML))
    fake_db.collection("users").document("company1").set({"role": "company", "status": "active"})
    fake_db.collection("plans").document("plan1").set({"name": "Pro", "durationDays": 30})

    record = payments.process_pagseguro_notification("NOTIF-1")

    assert record["userId"] == "company1"
    assert fake_db.docs("payments")["9E884542-81B3-4419-9A75-BCC6FB495EF1"]["notificationCode"] == "NOTIF-1"
    user = fake_db.docs("users")["company1"]
    assert user["activePlanId"] == "plan1"
    assert user["activePlanName"] == "Pro"


def test_waiting_payment_does_not_assign_plan(fake_db, monkeypatch):
    pending = TRANSACTION_XML.replace(b"<status>3</status>", b"<status>1</status>")
    monkeypatch.setattr(payments, "fetch_transaction", lambda code: payments.parse_transaction(pending))
    fake_db.collection("users").document("company1").set({"role": "company"})
    fake_db.collection("plans").document("plan1").set({"name": "Pro", "durationDays": 30})

    payments.process_pagseguro_notification("NOTIF-2")

    assert "activePlanId" not in fake_db.docs("users")["company1"]
    assert len(fake_db.docs("payments")) == 1


def _notification(fake_db, kind):
    return [n for n in fake_db.docs("notifications").values() if n["type"] == kind]


def _seed_charge(fake_db, status="pending"):
    fake_db.collection("users").document("company1").set({"role": "company", "status": "active"})
    fake_db.collection("plans").document("plan1").set({"name": "Pro", "durationDays": 30})
    fake_db.collection("payment_transactions").document("t1").set({
        "userId": "company1",
        "planId": "plan1",
        "planName": "Pro",
        "paymentMethod": "PIX",
        "status": status,
        "pagseguroCode": "CHECKOUT-1",
        "pagseguroStatus": "1",
    })


def _notify_with(monkeypatch, status, reference="company1:plan1:t1"):
    xml = TRANSACTION_XML.replace(b"<status>3</status>", f"<status>{status}</status>".encode())
    xml = xml.replace(b"<reference>company1:plan1</reference>", f"<reference>{reference}</reference>".encode())
    monkeypatch.setattr(payments, "fetch_transaction", lambda code: payments.parse_transaction(xml))


def test_paid_charge_opens_subscription(fake_db, monkeypatch):
    _seed_charge(fake_db)
    _notify_with(monkeypatch, 3)

    record = payments.process_pagseguro_notification("NOTIF-3")

    assert record["paymentStatus"] == "paid"
    charge = fake_db.docs("payment_transactions")["t1"]
    assert charge["status"] == "paid"
    assert charge["pagseguroStatus"] == "3"
    assert charge["paidAt"] is not None
    [subscription] = fake_db.docs("subscriptions").values()
    assert subscription["userId"] == "company1"
    assert subscription["lastPaymentId"] == "t1"
    assert subscription["paymentMethod"] == "PIX"
    assert subscription["status"] == "active"
    assert fake_db.docs("users")["company1"]["activePlanId"] == "plan1"
    [update] = _notification(fake_db, "payment_status_updated")
    assert update["userId"] == "company1"
    assert update["title"] == "Pagamento confirmado"


@pytest.mark.parametrize(
    "code,status,title",
    [
        (7, "cancelled", "Pagamento cancelado"),
        (6, "refunded", "Pagamento devolvido"),
        (5, "failed", "Pagamento em disputa"),
    ],
)
def test_unpaid_statuses_are_mapped(fake_db, monkeypatch, code, status, title):
    _seed_charge(fake_db)
    _notify_with(monkeypatch, code)

    payments.process_pagseguro_notification("NOTIF-4")

    assert fake_db.docs("payment_transactions")["t1"]["status"] == status
    assert "activePlanId" not in fake_db.docs("users")["company1"]
    assert fake_db.docs("subscriptions") == {}
    assert [n["title"] for n in _notification(fake_db, "payment_status_updated")] == [title]


def test_waiting_status_keeps_charge_pending(fake_db, monkeypatch):
    _seed_charge(fake_db)
    _notify_with(monkeypatch, 2)

    payments.process_pagseguro_notification("NOTIF-5")

    charge = fake_db.docs("payment_transactions")["t1"]
    assert charge["status"] == "pending"
    assert charge["pagseguroStatus"] == "2"
    assert _notification(fake_db, "payment_status_updated") == []


def test_charge_is_found_by_pagseguro_code(fake_db, monkeypatch):
    _seed_charge(fake_db)
    fake_db.collection("payment_transactions").document("t1").update(
        {"pagseguroCode": "9E884542-81B3-4419-9A75-BCC6FB495EF1"}
    )
    _notify_with(monkeypatch, 7, reference="company1:plan1")

    payments.process_pagseguro_notification("NOTIF-7")

    assert fake_db.docs("payment_transactions")["t1"]["status"] == "cancelled"
