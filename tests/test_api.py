"""
HTTP surface of the wallet and fraud routers, against the in-memory test database.
"""
import pytest
from fastapi.testclient import TestClient

from walletshield.database import get_db
from walletshield.main import app as wallet_app
from walletshield.services import ai_service
from walletshield.services.ground_truth_service import verify_ground_truth


@pytest.fixture
def app(db, fake_assessor, monkeypatch):
    monkeypatch.setattr(ai_service, "_assessor", fake_assessor)
    wallet_app.dependency_overrides[get_db] = lambda: db
    yield wallet_app
    wallet_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def accounts(make_user):
    sender = make_user(balance=1000, full_name="Alice")
    recipient = make_user(balance=0, full_name="Bob")
    admin = make_user(balance=0, is_admin=True, full_name="Reviewer")
    return sender, recipient, admin


def as_user(user, ip="10.0.0.7"):
    return {"X-User-Id": str(user.user_id), "X-Forwarded-For": ip}


class TestAuth:
    def test_missing_identity(self, client):
        assert client.get("/wallet/transactions").status_code == 401

    def test_unknown_identity(self, client):
        assert client.get("/wallet/transactions", headers={"X-User-Id": "999"}).status_code == 401

    def test_admin_routes_reject_users(self, client, accounts):
        sender, _, _ = accounts
        assert client.get("/fraud/metrics", headers=as_user(sender)).status_code == 403

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestWalletEndpoints:
    def test_send_and_list(self, client, accounts):
        sender, recipient, _ = accounts
        response = client.post("/wallet/send", json={"recipient_id": recipient.user_id, "amount": 125.5},
                               headers=as_user(sender))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["money_status"] == "completed"
        assert body["new_balance"] == 874.5

        listed = client.get("/wallet/transactions", headers=as_user(sender)).json()
        assert [(t["type"], t["amount"]) for t in listed] == [("transfer_sent", 125.5)]

    @pytest.mark.parametrize("payload,status", [
        ({"amount": 5000}, 400),
        ({"amount": 10.123}, 400),
        ({"amount": -1}, 422),
    ])
    def test_send_rejections(self, client, accounts, payload, status):
        sender, recipient, _ = accounts
        response = client.post("/wallet/send", json={"recipient_id": recipient.user_id, **payload},
                               headers=as_user(sender))
        assert response.status_code == status

    def test_unknown_recipient(self, client, accounts):
        sender, _, _ = accounts
        response = client.post("/wallet/send", json={"recipient_id": 999, "amount": 10}, headers=as_user(sender))
        assert response.status_code == 404


class TestFraudEndpoints:
    def test_check_does_not_move_money(self, client, db, accounts):
        sender, _, _ = accounts
        response = client.post("/fraud/check", json={"amount": 9500}, headers=as_user(sender))
        assert response.status_code == 200
        body = response.json()
        assert body["detection_method"] == "rules_only"
        assert body["risk_score"] == body["rule_based_score"]
        assert "AMT-002" in [r["rule_id"] for r in body["rules_triggered"]]
        assert body["country"] == "Local"
        db.refresh(sender)
        assert float(sender.wallet_balance) == 1000.0

    @pytest.mark.parametrize("amount", [0, -5])
    def test_check_rejects_non_positive_amounts(self, client, db, accounts, amount):
        sender, _, _ = accounts
        response = client.post("/fraud/check", json={"amount": amount}, headers=as_user(sender))
        assert response.status_code == 422
        assert client.get("/fraud/stats/me", headers=as_user(sender)).json()["total_checks"] == 0

    def test_verify_and_metrics(self, client, accounts):
        sender, _, admin = accounts
        verdict_id = client.post("/fraud/check", json={"amount": 20}, headers=as_user(sender)).json()["id"]

        response = client.post(f"/fraud/verify/{verdict_id}", json={"ground_truth": "legitimate"},
                               headers=as_user(admin))
        assert response.status_code == 200
        assert response.json()["ground_truth"] == "legitimate"

        again = client.post(f"/fraud/verify/{verdict_id}", json={"ground_truth": "fraud"}, headers=as_user(admin))
        assert again.status_code == 409

        revoked = client.post(f"/fraud/verify/{verdict_id}/revoke",
                              json={"new_ground_truth": "fraud", "reason": "chargeback"}, headers=as_user(admin))
        assert revoked.json()["revocation_reason"] == "chargeback"

        metrics = client.get("/fraud/metrics", headers=as_user(admin)).json()
        assert metrics["confusion_matrix"]["false_negatives"] == 1

        export = client.get("/fraud/metrics/export", headers=as_user(admin))
        assert export.headers["content-type"].startswith("text/csv")
        assert len(export.text.strip().splitlines()) == 2

    def test_invalid_label(self, client, accounts):
        sender, _, admin = accounts
        verdict_id = client.post("/fraud/check", json={"amount": 20}, headers=as_user(sender)).json()["id"]
        response = client.post(f"/fraud/verify/{verdict_id}", json={"ground_truth": "maybe"}, headers=as_user(admin))
        assert response.status_code == 400

    def test_metrics_history_period(self, client, accounts):
        _, _, admin = accounts
        assert client.get("/fraud/metrics/history?period=month", headers=as_user(admin)).status_code == 400
        assert client.get("/fraud/metrics/history?period=week", headers=as_user(admin)).json() == []

    def test_personal_views(self, client, accounts):
        sender, _, _ = accounts
        client.post("/fraud/check", json={"amount": 20}, headers=as_user(sender))

        assert client.get("/fraud/stats/me", headers=as_user(sender)).json()["total_checks"] == 1
        assert client.get("/fraud/health/me", headers=as_user(sender)).json()["method"] == "new_user_protection"
        assert client.get("/fraud/health/me/trend", headers=as_user(sender)).status_code == 200
        assert client.get("/fraud/health/me/recovery", headers=as_user(sender)).json()["already_healthy"] is True
        assert client.get("/fraud/locations/me", headers=as_user(sender)).json()[0]["city"] == "Local"

    def test_admin_health_lookup(self, client, accounts):
        sender, _, admin = accounts
        assert client.get(f"/fraud/health/{sender.user_id}", headers=as_user(admin)).json()["method"] == "none"
        assert client.get("/fraud/health/999", headers=as_user(admin)).status_code == 404


class TestCustodyAndAppealEndpoints:
    @pytest.fixture
    def held_transfer(self, db, accounts, make_verdict):
        from walletshield.services.custody_service import open_transfer

        sender, recipient, admin = accounts
        verdict = make_verdict(sender, action="BLOCK", score=88)
        sent, _ = open_transfer(db, sender.user_id, recipient.user_id, 300, verdict=verdict)
        return verdict, sent

    def test_confiscate_then_conflict(self, client, accounts, held_transfer):
        _, _, admin = accounts
        _, sent = held_transfer
        response = client.post(f"/custody/{sent.id}/confiscate", json={"reason": "mule"}, headers=as_user(admin))
        assert response.status_code == 200
        assert response.json()["money_status"] == "confiscated"
        assert response.json()["resolution_reason"] == "mule"

        assert client.post(f"/custody/{sent.id}/release", headers=as_user(admin)).status_code == 409

    def test_custody_requires_admin(self, client, accounts, held_transfer):
        sender, _, _ = accounts
        _, sent = held_transfer
        assert client.post(f"/custody/{sent.id}/return", headers=as_user(sender)).status_code == 403

    def test_appeal_flow(self, client, db, accounts, held_transfer):
        sender, recipient, admin = accounts
        verdict, sent = held_transfer
        verify_ground_truth(db, verdict.id, "fraud", admin.user_id)

        created = client.post("/fraud/appeals", json={"verdict_id": verdict.id, "reason": "Paying my landlord"},
                              headers=as_user(sender))
        assert created.status_code == 200
        appeal_id = created.json()["id"]

        duplicate = client.post("/fraud/appeals", json={"verdict_id": verdict.id, "reason": "again"},
                                headers=as_user(sender))
        assert duplicate.status_code == 409

        pending = client.get("/fraud/appeals/pending", headers=as_user(admin)).json()
        assert [a["id"] for a in pending] == [appeal_id]

        resolved = client.post(f"/fraud/appeals/{appeal_id}/resolve",
                               json={"status": "approved", "admin_notes": "Lease confirmed"}, headers=as_user(admin))
        assert resolved.json()["status"] == "approved"

        db.refresh(recipient)
        assert float(recipient.wallet_balance) == 300.0
