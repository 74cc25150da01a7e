"""
API tests through the FastAPI test client.

Tests cover:
- Registration, login, logout and role gating
- Partner dashboard, referrals and admin partner management
- Projects, tickets, notifications
- Payments and the MercadoPago webhook
- Admin stats, contact form and the WebSocket echo
"""

import hashlib
import hmac
import re
from decimal import Decimal

import pytest

from conftest import auth_headers
from models import Partner


class TestPartnerScenarios:
    """End-to-end partner flows."""

    def test_new_partner_dashboard(self, client, register):
        """Register a partner, then read empty referrals and zeroed stats."""
        body = register("p1@x.com", role="partner")
        user_id = body["user"]["id"]
        headers = auth_headers(body["token"])

        referrals = client.get("/api/partners/referrals", headers=headers)
        assert referrals.status_code == 200
        assert referrals.json() == []

        me = client.get("/api/partners/me", headers=headers)
        assert me.status_code == 200
        profile = me.json()
        assert re.match(rf"^PAR{user_id}[A-Z0-9]{{4}}$", profile["referralCode"])
        assert profile["conversionRate"] == 0
        assert profile["activeReferrals"] == 0
        assert profile["closedSales"] == 0
        assert profile["totalEarnings"] == "0.00"
        assert profile["commissionRate"] == "25.00"

    def test_admin_cannot_create_second_partner(self, client, register, admin_headers, app_storage):
        user_id = register("p2@mail.com", role="partner")["user"]["id"]
        before = app_storage.db.query(Partner).count()

        response = client.post("/api/partners", json={"userId": user_id}, headers=admin_headers)

        assert response.status_code == 400
        assert "detail" in response.json()
        assert app_storage.db.query(Partner).count() == before

    def test_admin_creates_partner(self, client, register, admin_headers):
        user_id = register("c1@mail.com")["user"]["id"]
        response = client.post(
            "/api/partners", json={"userId": user_id, "commissionRate": "30.00"}, headers=admin_headers
        )
        assert response.status_code == 201
        partner = response.json()
        assert partner["userId"] == user_id
        assert partner["commissionRate"] == "30.00"
        assert partner["totalEarnings"] == "0.00"

        listing = client.get("/api/partners", headers=admin_headers)
        assert [p["userId"] for p in listing.json()] == [user_id]

    def test_admin_creates_partner_for_unknown_user(self, client, admin_headers):
        response = client.post("/api/partners", json={"userId": 999}, headers=admin_headers)
        assert response.status_code == 404

    def test_full_referral_cycle(self, client, register, admin_headers, mailer):
        partner_body = register("partner@mail.com", role="partner", full_name="Partner One")
        partner_headers = auth_headers(partner_body["token"])
        code = client.get("/api/partners/me", headers=partner_headers).json()["referralCode"]

        client_body = register("client@mail.com", referral_code=code, full_name="Client One")
        client_headers = auth_headers(client_body["token"])
        project = client.post(
            "/api/projects", json={"name": "Online store", "price": "2000.00"}, headers=client_headers
        ).json()
        partner_id = client.get("/api/partners/me", headers=partner_headers).json()["id"]
        assert project["partnerId"] == partner_id

        updated = client.put(
            f"/api/projects/{project['id']}", json={"status": "in_progress"}, headers=admin_headers
        )
        assert updated.status_code == 200

        referrals = client.get("/api/partners/referrals", headers=partner_headers).json()
        assert len(referrals) == 1
        assert referrals[0]["status"] == "converted"
        assert referrals[0]["commissionAmount"] == "500.00"
        assert referrals[0]["clientName"] == "Client One"
        assert referrals[0]["clientEmail"] == "client@mail.com"
        assert referrals[0]["projectName"] == "Online store"
        assert referrals[0]["projectPrice"] == "2000.00"

        settled = client.post(f"/api/partners/referrals/{referrals[0]['id']}/settle", headers=admin_headers)
        assert settled.status_code == 200
        assert settled.json()["status"] == "paid"
        assert ("commission", "partner@mail.com", Decimal("500.00")) in mailer.sent

        profile = client.get("/api/partners/me", headers=partner_headers).json()
        assert profile["totalEarnings"] == "500.00"
        assert profile["activeReferrals"] == 1
        assert profile["closedSales"] == 1
        assert profile["conversionRate"] == 100

        again = client.post(f"/api/partners/referrals/{referrals[0]['id']}/settle", headers=admin_headers)
        assert again.status_code == 400

        partner_projects = client.get("/api/projects", headers=partner_headers).json()
        assert [p["id"] for p in partner_projects] == [project["id"]]

        notifications = client.get("/api/notifications", headers=partner_headers).json()
        assert len(notifications) == 2

    def test_partner_endpoints_are_role_gated(self, client, register):
        headers = auth_headers(register("c2@mail.com")["token"])
        assert client.get("/api/partners/me", headers=headers).status_code == 403
        assert client.get("/api/partners/referrals", headers=headers).status_code == 403
        assert client.post("/api/partners", json={"userId": 1}, headers=headers).status_code == 403

    def test_settle_unknown_referral(self, client, admin_headers):
        assert client.post("/api/partners/referrals/77/settle", headers=admin_headers).status_code == 404


class TestAuth:
    """Registration, login and token handling."""

    def test_register_returns_user_and_token(self, register, mailer):
        body = register("new@mail.com", full_name="New User")
        assert body["user"]["email"] == "new@mail.com"
        assert body["user"]["fullName"] == "New User"
        assert body["user"]["role"] == "client"
        assert "hashedPassword" not in body["user"]
        assert body["token"]
        assert ("welcome", "new@mail.com") in mailer.sent

    def test_register_duplicate_email(self, client, register):
        register("dup@mail.com")
        response = client.post(
            "/api/auth/register",
            json={"email": "dup@mail.com", "password": "secret123", "fullName": "Dup", "role": "client"},
        )
        assert response.status_code == 400

    def test_register_rejects_admin_role(self, client):
        response = client.post(
            "/api/auth/register",
            json={"email": "a@mail.com", "password": "secret123", "fullName": "Admin", "role": "admin"},
        )
        assert response.status_code == 400
        assert response.json()["errors"]

    def test_register_validation_errors(self, client):
        response = client.post(
            "/api/auth/register",
            json={"email": "not-an-email", "password": "123", "fullName": "A"},
        )
        assert response.status_code == 400
        fields = {error["loc"][-1] for error in response.json()["errors"]}
        assert {"email", "password", "fullName"} <= fields

    def test_register_with_unknown_referral_code(self, client):
        response = client.post(
            "/api/auth/register",
            json={
                "email": "r@mail.com",
                "password": "secret123",
                "fullName": "Referred",
                "role": "client",
                "referralCode": "PAR9XXXX",
            },
        )
        assert response.status_code == 400

    def test_partner_register_with_referral_code(self, client, register):
        partner_headers = auth_headers(register("first-partner@mail.com", role="partner")["token"])
        code = client.get("/api/partners/me", headers=partner_headers).json()["referralCode"]
        response = client.post(
            "/api/auth/register",
            json={
                "email": "second-partner@mail.com",
                "password": "secret123",
                "fullName": "Second",
                "role": "partner",
                "referralCode": code,
            },
        )
        assert response.status_code == 400
        login = client.post("/api/auth/login", json={"email": "second-partner@mail.com", "password": "secret123"})
        assert login.status_code == 401

    def test_login_and_me(self, client, register):
        register("login@mail.com", password="secret123")
        response = client.post("/api/auth/login", json={"email": "login@mail.com", "password": "secret123"})
        assert response.status_code == 200
        me = client.get("/api/auth/me", headers=auth_headers(response.json()["token"]))
        assert me.status_code == 200
        assert me.json()["email"] == "login@mail.com"

    def test_login_wrong_password(self, client, register):
        register("wrong@mail.com", password="secret123")
        response = client.post("/api/auth/login", json={"email": "wrong@mail.com", "password": "secret999"})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, register):
        headers = auth_headers(register("bye@mail.com")["token"])
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_missing_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_deactivated_user(self, client, register, admin_headers):
        body = register("off@mail.com", password="secret123")
        response = client.put(
            f"/api/users/{body['user']['id']}", json={"isActive": False}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["isActive"] is False
        assert response.json()["role"] == "client"

        assert client.get("/api/auth/me", headers=auth_headers(body["token"])).status_code == 403
        login = client.post("/api/auth/login", json={"email": "off@mail.com", "password": "secret123"})
        assert login.status_code == 401

    def test_users_listing_is_admin_only(self, client, register, admin_headers):
        headers = auth_headers(register("u@mail.com")["token"])
        assert client.get("/api/users", headers=headers).status_code == 403
        emails = [user["email"] for user in client.get("/api/users", headers=admin_headers).json()]
        assert "u@mail.com" in emails


class TestProjects:
    """Project registry endpoints."""

    def test_client_creates_own_project(self, client, register):
        body = register("owner@mail.com")
        headers = auth_headers(body["token"])
        response = client.post(
            "/api/projects",
            json={"name": "Landing", "price": "150.50", "clientId": 999, "partnerId": 5},
            headers=headers,
        )
        assert response.status_code == 201
        project = response.json()
        assert project["clientId"] == body["user"]["id"]
        assert project["partnerId"] is None
        assert project["status"] == "pending"
        assert project["progress"] == 0
        assert project["price"] == "150.50"

    def test_clients_do_not_see_each_other(self, client, register):
        first = auth_headers(register("first@mail.com")["token"])
        second = auth_headers(register("second@mail.com")["token"])
        project = client.post("/api/projects", json={"name": "Mine", "price": "10"}, headers=first).json()

        assert client.get("/api/projects", headers=second).json() == []
        assert client.get(f"/api/projects/{project['id']}", headers=second).status_code == 404
        update = client.put(f"/api/projects/{project['id']}", json={"progress": 90}, headers=second)
        assert update.status_code == 404

    def test_progress_bounds(self, client, register):
        headers = auth_headers(register("bounds@mail.com")["token"])
        response = client.post(
            "/api/projects", json={"name": "X", "price": "10", "progress": 101}, headers=headers
        )
        assert response.status_code == 400

    def test_admin_must_name_client(self, client, admin_headers):
        response = client.post("/api/projects", json={"name": "X", "price": "10"}, headers=admin_headers)
        assert response.status_code == 400

    def test_admin_creates_project_for_client(self, client, register, admin_headers):
        client_id = register("cl@mail.com")["user"]["id"]
        response = client.post(
            "/api/projects", json={"name": "ERP", "price": "5000", "clientId": client_id}, headers=admin_headers
        )
        assert response.status_code == 201
        assert response.json()["clientId"] == client_id

    def test_owner_updates_project(self, client, register):
        headers = auth_headers(register("upd@mail.com")["token"])
        project = client.post("/api/projects", json={"name": "Old", "price": "10"}, headers=headers).json()
        response = client.put(
            f"/api/projects/{project['id']}", json={"name": "New", "progress": 40}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["name"] == "New"
        assert response.json()["progress"] == 40

    def _referred_client(self, client, register):
        partner_headers = auth_headers(register("ref-partner@mail.com", role="partner")["token"])
        code = client.get("/api/partners/me", headers=partner_headers).json()["referralCode"]
        body = register("ref-client@mail.com", referral_code=code)
        return partner_headers, body

    def test_client_cannot_declare_project_status(self, client, register):
        partner_headers, body = self._referred_client(client, register)
        headers = auth_headers(body["token"])
        response = client.post(
            "/api/projects", json={"name": "X", "price": "100000.00", "status": "completed"}, headers=headers
        )
        assert response.status_code == 201
        assert response.json()["status"] == "pending"

        referrals = client.get("/api/partners/referrals", headers=partner_headers).json()
        assert referrals[0]["status"] == "pending"
        assert referrals[0]["commissionAmount"] == "0.00"

    @pytest.mark.parametrize("update", [{"status": "completed"}, {"price": "99999.00"}])
    def test_client_cannot_change_status_or_price(self, client, register, update):
        partner_headers, body = self._referred_client(client, register)
        headers = auth_headers(body["token"])
        project = client.post("/api/projects", json={"name": "X", "price": "100.00"}, headers=headers).json()

        response = client.put(f"/api/projects/{project['id']}", json=update, headers=headers)

        assert response.status_code == 403
        stored = client.get(f"/api/projects/{project['id']}", headers=headers).json()
        assert stored["status"] == "pending"
        assert stored["price"] == "100.00"
        referrals = client.get("/api/partners/referrals", headers=partner_headers).json()
        assert referrals[0]["status"] == "pending"

    def test_admin_creates_committed_project_for_referred_client(self, client, register, admin_headers):
        partner_headers, body = self._referred_client(client, register)
        response = client.post(
            "/api/projects",
            json={"name": "ERP", "price": "2000.00", "status": "completed", "clientId": body["user"]["id"]},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["partnerId"] is not None

        referrals = client.get("/api/partners/referrals", headers=partner_headers).json()
        assert referrals[0]["status"] == "converted"
        assert referrals[0]["commissionAmount"] == "500.00"
        assert referrals[0]["projectName"] == "ERP"


class TestTicketsAndNotifications:
    """Support tickets and notifications."""

    def test_ticket_lifecycle(self, client, register):
        headers = auth_headers(register("t@mail.com")["token"])
        created = client.post(
            "/api/tickets", json={"title": "Bug", "description": "Button broken", "priority": "high"}, headers=headers
        )
        assert created.status_code == 201
        ticket = created.json()
        assert ticket["status"] == "open"
        assert ticket["priority"] == "high"

        updated = client.put(f"/api/tickets/{ticket['id']}", json={"status": "resolved"}, headers=headers)
        assert updated.json()["status"] == "resolved"
        assert [t["id"] for t in client.get("/api/tickets", headers=headers).json()] == [ticket["id"]]

    def test_foreign_ticket_hidden(self, client, register):
        owner = auth_headers(register("o@mail.com")["token"])
        stranger = auth_headers(register("s@mail.com")["token"])
        ticket = client.post("/api/tickets", json={"title": "T", "description": "D"}, headers=owner).json()
        response = client.put(f"/api/tickets/{ticket['id']}", json={"status": "closed"}, headers=stranger)
        assert response.status_code == 404

    def test_mark_notification_read(self, client, register, app_storage):
        body = register("n@mail.com")
        headers = auth_headers(body["token"])
        notification = app_storage.create_notification(body["user"]["id"], "Hello", "World")

        assert client.put(f"/api/notifications/{notification.id}/read", headers=headers).status_code == 200
        items = client.get("/api/notifications", headers=headers).json()
        assert items[0]["isRead"] is True

    def test_cannot_read_foreign_notification(self, client, register, app_storage):
        owner_id = register("no@mail.com")["user"]["id"]
        stranger = auth_headers(register("ns@mail.com")["token"])
        notification = app_storage.create_notification(owner_id, "Hello", "World")
        assert client.put(f"/api/notifications/{notification.id}/read", headers=stranger).status_code == 404


class TestPayments:
    """Payment creation and gateway webhook."""

    def _project(self, client, headers, price="1000.00"):
        return client.post("/api/projects", json={"name": "Paid", "price": price}, headers=headers).json()

    def test_create_payment(self, client, register, mercadopago):
        headers = auth_headers(register("pay@mail.com")["token"])
        project = self._project(client, headers)

        response = client.post(
            "/api/payments/create", json={"projectId": project["id"], "amount": "500.00"}, headers=headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["preferenceId"] == "pref-1"
        assert body["initPoint"].endswith("pref-1")
        assert mercadopago.preferences[0]["external_reference"] == str(body["paymentId"])
        assert mercadopago.preferences[0]["items"][0]["unit_price"] == 500.0

    def test_cannot_pay_foreign_project(self, client, register):
        owner = auth_headers(register("po@mail.com")["token"])
        stranger = auth_headers(register("ps@mail.com")["token"])
        project = self._project(client, owner)
        response = client.post(
            "/api/payments/create", json={"projectId": project["id"], "amount": "1"}, headers=stranger
        )
        assert response.status_code == 404

    def test_webhook_completes_payment_and_converts_referral(self, client, register, mercadopago):
        partner_headers = auth_headers(register("wp@mail.com", role="partner")["token"])
        code = client.get("/api/partners/me", headers=partner_headers).json()["referralCode"]
        headers = auth_headers(register("wc@mail.com", referral_code=code)["token"])
        project = self._project(client, headers, price="400.00")
        payment_id = client.post(
            "/api/payments/create", json={"projectId": project["id"], "amount": "400.00"}, headers=headers
        ).json()["paymentId"]
        mercadopago.payments["9001"] = {
            "id": 9001,
            "status": "approved",
            "external_reference": str(payment_id),
            "payment_method_id": "visa",
        }

        response = client.post("/api/payments/webhook", json={"type": "payment", "data": {"id": "9001"}})

        assert response.status_code == 200
        assert response.json() == {"status": "completed"}
        referrals = client.get("/api/partners/referrals", headers=partner_headers).json()
        assert referrals[0]["status"] == "converted"
        assert referrals[0]["commissionAmount"] == "100.00"

    def test_webhook_ignores_other_topics(self, client):
        response = client.post("/api/payments/webhook", json={"type": "merchant_order", "data": {"id": "1"}})
        assert response.json() == {"status": "ignored"}

    def test_webhook_signature(self, client, register, mercadopago, gateway):
        gateway.configure(webhook_secret="whsec")
        headers = auth_headers(register("sig@mail.com")["token"])
        project = self._project(client, headers)
        payment_id = client.post(
            "/api/payments/create", json={"projectId": project["id"], "amount": "10"}, headers=headers
        ).json()["paymentId"]
        mercadopago.payments["77"] = {"id": 77, "status": "rejected", "external_reference": str(payment_id)}
        event = {"type": "payment", "data": {"id": "77"}}

        unsigned = client.post("/api/payments/webhook", json=event)
        assert unsigned.status_code == 401

        manifest = "id:77;request-id:req-1;ts:1700000000;"
        v1 = hmac.new(b"whsec", manifest.encode(), hashlib.sha256).hexdigest()
        signed = client.post(
            "/api/payments/webhook",
            json=event,
            headers={"x-signature": f"ts=1700000000,v1={v1}", "x-request-id": "req-1"},
        )
        assert signed.status_code == 200
        assert signed.json() == {"status": "failed"}

    def test_unknown_gateway_payment(self, client):
        response = client.post("/api/payments/webhook", json={"type": "payment", "data": {"id": "404"}})
        assert response.status_code == 502


class TestAdmin:
    """Admin statistics and gateway configuration."""

    def test_stats(self, client, register, admin_headers):
        register("sp@mail.com", role="partner")
        headers = auth_headers(register("sc@mail.com")["token"])
        project = client.post("/api/projects", json={"name": "S", "price": "1200.00"}, headers=headers).json()
        client.put(f"/api/projects/{project['id']}", json={"status": "completed"}, headers=admin_headers)
        client.post("/api/projects", json={"name": "Open", "price": "10"}, headers=headers)

        stats = client.get("/api/admin/stats", headers=admin_headers).json()

        assert stats == {
            "totalUsers": 3,
            "activePartners": 1,
            "activeProjects": 1,
            "monthlyRevenue": "1200.00",
        }

    def test_stats_admin_only(self, client, register):
        headers = auth_headers(register("x@mail.com", role="partner")["token"])
        assert client.get("/api/admin/stats", headers=headers).status_code == 403

    def test_gateway_config(self, client, admin_headers):
        config = client.get("/api/admin/mercadopago", headers=admin_headers).json()
        assert config == {"publicKey": "TEST-public-key", "hasAccessToken": True, "hasWebhookSecret": False}

        client.put("/api/admin/mercadopago", json={"webhookSecret": "s3cret"}, headers=admin_headers)
        config = client.get("/api/admin/mercadopago", headers=admin_headers).json()
        assert config["hasWebhookSecret"] is True
        assert "s3cret" not in str(config)


class TestContactAndRealtime:
    """Public contact form and WebSocket echo."""

    def test_contact(self, client, mailer):
        response = client.post(
            "/api/contact",
            json={
                "fullName": "Ana",
                "email": "ana@mail.com",
                "message": "Нужен интернет-магазин",
                "acceptTerms": True,
            },
        )
        assert response.status_code == 200
        assert ("contact", "ana@mail.com") in mailer.sent

    def test_contact_requires_terms(self, client, mailer):
        response = client.post(
            "/api/contact",
            json={"fullName": "Ana", "email": "ana@mail.com", "message": "Нужен интернет-магазин", "acceptTerms": False},
        )
        assert response.status_code == 400
        assert mailer.sent == []

    def test_websocket_echo(self, client):
        with client.websocket_connect("/ws") as websocket:
            welcome = websocket.receive_json()
            assert welcome["type"] == "welcome"
            websocket.send_text("not json")
            websocket.send_json({"ping": 1})
            echo = websocket.receive_json()
            assert echo["type"] == "echo"
            assert echo["data"] == {"ping": 1}
            assert "timestamp" in echo
