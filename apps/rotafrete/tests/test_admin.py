from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from apps.rotafrete import admin
from apps.rotafrete.auth import get_current_user


def _client(user=None):
    app = FastAPI()
    app.include_router(admin.router)
    app.dependency_overrides[get_current_user] = lambda: user or {"uid": "a1", "role": "admin"}
    return TestClient(app)


def _notification_types(fake_db):
    return [n["type"] for n in fake_db.docs("notifications").values()]


def _driver(**overrides):
    data = {
        "role": "driver",
        "status": "pending",
        "name": "João Silva",
        "email": "joao@transsilva.com.br",
        "cnh": "12345678900",
        "cnhCategory": "E",
    }
    data.update(overrides)
    return data


def _company(card_status="approved", document_status="approved", **overrides):
    data = {
        "role": "company",
        "status": "pending",
        "cnpj": "12.345.678/0001-90",
        "cnpjCard": {"url": "https://storage.test/card.pdf", "status": card_status},
        "responsible": {
            "name": "Ana",
            "cpf": "52998224725",
            "document": {"url": "https://storage.test/rg.jpg", "status": document_status},
        },
    }
    data.update(overrides)
    return data


def test_non_admin_is_rejected(fake_db):
    assert _client({"uid": "c1", "role": "company"}).get("/admin/users").status_code == 403


def test_users_list_with_counts(fake_db):
    users = fake_db.collection("users")
    users.document("d1").set({"role": "driver", "status": "pending"})
    users.document("d2").set({"role": "driver", "status": "active"})
    users.document("c1").set({"role": "company", "status": "pending", "tradingName": "Trans"})

    body = _client().get("/admin/users", params={"role": "driver"}).json()

    assert body["counts"] == {"drivers": 2, "companies": 1, "pending": 2}
    assert {u["uid"] for u in body["users"]} == {"d1", "d2"}

    pending = _client().get("/admin/users", params={"status": "pending"}).json()
    assert {u["uid"] for u in pending["users"]} == {"d1", "c1"}


def test_user_detail_includes_collaborators(fake_db):
    fake_db.collection("users").document("c1").set({"role": "company", "status": "active"})
    fake_db.collection("users").document("c1").collection("collaborators").document("k1").set({"name": "Maria"})

    body = _client().get("/admin/users/c1").json()

    assert body["profile"]["uid"] == "c1"
    assert [c["name"] for c in body["collaborators"]] == ["Maria"]
    assert _client().get("/admin/users/missing").status_code == 404


@pytest.mark.parametrize(
    "status,kind",
    [("active", "user_activated"), ("blocked", "user_blocked"), ("suspended", "user_suspended")],
)
def test_status_change_notifies(fake_db, status, kind):
    fake_db.collection("users").document("u1").set(_driver())

    res = _client().patch("/admin/users/u1/status", json={"status": status})

    assert res.status_code == 200
    assert fake_db.docs("users")["u1"]["status"] == status
    assert _notification_types(fake_db) == [kind]


def test_status_back_to_pending_is_silent(fake_db):
    fake_db.collection("users").document("u1").set({"role": "driver", "status": "active"})
    _client().patch("/admin/users/u1/status", json={"status": "pending"})
    assert _notification_types(fake_db) == []


def test_document_review_normalizes_legacy_url(fake_db):
    fake_db.collection("users").document("c1").set({
        "role": "company",
        "cnpjCard": "https://storage.test/card.pdf",
        "responsible": {"name": "Ana", "cpf": "52998224725", "document": {"url": "https://storage.test/rg.jpg", "status": "pending"}},
    })

    res = _client().patch("/admin/users/c1/documents", json={"docField": "cnpjCard", "status": "approved"})
    assert res.status_code == 200
    assert fake_db.docs("users")["c1"]["cnpjCard"] == {"url": "https://storage.test/card.pdf", "status": "approved"}

    _client().patch("/admin/users/c1/documents", json={"docField": "responsible.document", "status": "rejected"})
    responsible = fake_db.docs("users")["c1"]["responsible"]
    assert responsible["document"]["status"] == "rejected"
    assert responsible["name"] == "Ana"

    assert sorted(_notification_types(fake_db)) == ["document_approved", "document_rejected"]


def test_document_review_rejects_unknown_field(fake_db):
    fake_db.collection("users").document("c1").set({"role": "company"})
    res = _client().patch("/admin/users/c1/documents", json={"docField": "selfie", "status": "approved"})
    assert res.status_code == 422


def test_document_review_missing_document(fake_db):
    fake_db.collection("users").document("c1").set({"role": "company", "cnpjCard": None})
    res = _client().patch("/admin/users/c1/documents", json={"docField": "cnpjCard", "status": "approved"})
    assert res.status_code == 404


def test_admin_edit_merges_responsible(fake_db):
    fake_db.collection("users").document("c1").set({
        "role": "company",
        "tradingName": "Antigo",
        "responsible": {"name": "Ana", "cpf": "", "document": {"url": "u", "status": "approved"}},
    })

    res = _client().patch("/admin/users/c1", json={"tradingName": "Novo", "responsibleCpf": "529.982.247-25"})

    assert res.status_code == 200
    stored = fake_db.docs("users")["c1"]
    assert stored["tradingName"] == "Novo"
    assert stored["responsible"] == {"name": "Ana", "cpf": "52998224725", "document": {"url": "u", "status": "approved"}}


def test_dashboard_metrics(fake_db):
    now = datetime.now(timezone.utc)
    users = fake_db.collection("users")
    users.document("u1").set({"status": "pending", "createdAt": now})
    users.document("u2").set({"status": "active", "createdAt": now - timedelta(days=3)})
    users.document("u3").set({"status": "pending"})
    freights = fake_db.collection("freights")
    for i, status in enumerate(["ativo", "ativo", "pendente", "concluido"]):
        freights.document(f"f{i}").set({"status": status})

    metrics = _client().get("/admin/metrics").json()

    assert metrics == {
        "totalUsers": 3,
        "newUsersToday": 1,
        "pendingVerifications": 2,
        "activeFreights": 2,
        "pendingFreights": 1,
        "completedFreights": 1,
    }


def test_company_with_unapproved_documents_cannot_be_activated(fake_db):
    fake_db.collection("users").document("c1").set(_company(card_status="pending", document_status="rejected"))

    res = _client().patch("/admin/users/c1/status", json={"status": "active"})

    assert res.status_code == 409
    assert "Documentos pendentes ou rejeitados" in res.json()["detail"]
    assert fake_db.docs("users")["c1"]["status"] == "pending"
    assert _notification_types(fake_db) == []


def test_company_with_approved_documents_is_activated(fake_db):
    fake_db.collection("users").document("c1").set(_company())

    res = _client().patch("/admin/users/c1/status", json={"status": "active"})

    assert res.status_code == 200
    assert fake_db.docs("users")["c1"]["status"] == "active"


@pytest.mark.parametrize("missing", ["cnh", "cnhCategory", "name", "email"])
def test_incomplete_driver_cannot_be_activated(fake_db, missing):
    fake_db.collection("users").document("d1").set(_driver(**{missing: ""}))

    res = _client().patch("/admin/users/d1/status", json={"status": "active"})

    assert res.status_code == 409
    assert fake_db.docs("users")["d1"]["status"] == "pending"


def test_blocking_skips_document_check(fake_db):
    fake_db.collection("users").document("c1").set(_company(card_status="pending", status="active"))
    res = _client().patch("/admin/users/c1/status", json={"status": "blocked"})
    assert res.status_code == 200
    assert fake_db.docs("users")["c1"]["status"] == "blocked"


@pytest.mark.parametrize("status", ["incomplete", "deleted"])
def test_status_outside_admin_set_is_422(fake_db, status):
    fake_db.collection("users").document("d1").set(_driver())

    res = _client().patch("/admin/users/d1/status", json={"status": status})

    assert res.status_code == 422
    assert fake_db.docs("users")["d1"]["status"] == "pending"


def test_bulk_approve_uses_activation_rules(fake_db):
    users = fake_db.collection("users")
    users.document("c1").set(_company())
    users.document("c2").set(_company(card_status="pending"))
    users.document("d1").set(_driver())

    res = _client().post("/admin/users/bulk-approve", json={"uids": ["c1", "c2", "d1", "ghost"]})

    assert res.status_code == 200
    body = res.json()
    assert body["success"] == 2
    assert body["failed"] == 2
    assert len(body["details"]) == 4
    stored = fake_db.docs("users")
    assert [stored[uid]["status"] for uid in ("c1", "c2", "d1")] == ["active", "pending", "active"]
    assert _notification_types(fake_db) == ["user_activated", "user_activated"]
    actions = [d["action"] for d in fake_db.docs("audit_logs").values()]
    assert actions == ["BULK_USER_APPROVAL"]


def test_bulk_approve_requires_ids(fake_db):
    assert _client().post("/admin/users/bulk-approve", json={"uids": []}).status_code == 422


def test_document_check_reports_missing_company_documents(fake_db):
    fake_db.collection("users").document("c1").set({
        "role": "company",
        "cnpj": "123",
        "cnpjCard": {"url": "https://storage.test/card.pdf", "status": "approved"},
        "responsible": {"name": "Ana", "cpf": "", "document": None},
    })

    body = _client().get("/admin/users/c1/document-check").json()

    assert body["isValid"] is False
    assert body["canActivate"] is False
    assert body["missingDocuments"] == ["CNPJ válido", "CPF do responsável", "Documento do responsável"]


def test_document_check_for_complete_driver(fake_db):
    fake_db.collection("users").document("d1").set(_driver())

    body = _client().get("/admin/users/d1/document-check").json()

    assert body == {"uid": "d1", "isValid": True, "issues": [], "missingDocuments": [], "canActivate": True}
    assert _client().get("/admin/users/ghost/document-check").status_code == 404


@pytest.mark.parametrize("target,expected", [("all", {"c1", "d1", "d2"}), ("companies", {"c1"}), ("drivers", {"d1", "d2"})])
def test_broadcast_targets(fake_db, target, expected):
    users = fake_db.collection("users")
    users.document("c1").set({"role": "company"})
    users.document("d1").set({"role": "driver"})
    users.document("d2").set({"role": "driver"})

    res = _client().post(
        "/admin/notifications/broadcast",
        json={"title": "Manutenção", "message": "Sistema indisponível às 22h.", "target": target},
    )

    assert res.json() == {"sent": len(expected), "failed": 0}
    notifications = fake_db.docs("notifications").values()
    assert {n["userId"] for n in notifications} == expected
    assert {n["type"] for n in notifications} == {"system_update"}


def test_broadcast_to_explicit_users(fake_db):
    res = _client().post(
        "/admin/notifications/broadcast",
        json={"title": "Aviso", "message": "Confira seu plano.", "userIds": ["c1", "c1", "d9"]},
    )
    assert res.json() == {"sent": 2, "failed": 0}
    assert sorted(n["userId"] for n in fake_db.docs("notifications").values()) == ["c1", "d9"]


def test_purge_old_notifications(fake_db):
    now = datetime.now(timezone.utc)
    notifications = fake_db.collection("notifications")
    notifications.document("n1").set({"userId": "u1", "createdAt": now - timedelta(days=40)})
    notifications.document("n2").set({"userId": "u2", "createdAt": now - timedelta(days=40)})
    notifications.document("n3").set({"userId": "u1", "createdAt": now - timedelta(days=2)})

    res = _client().delete("/admin/notifications/old", params={"days": 30, "userId": "u1"})
    assert res.json() == {"deleted": 1}
    assert set(fake_db.docs("notifications")) == {"n2", "n3"}

    res = _client().delete("/admin/notifications/old")
    assert res.json() == {"deleted": 1}
    assert set(fake_db.docs("notifications")) == {"n3"}
