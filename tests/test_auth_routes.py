"""Tests for the OTP sign-in flow and user account routes."""

from mento.auth import TokenKind, verify_token
from mento.database import OTP_REQUESTS_TABLE, USERS_TABLE, WORKER_PROFILES_TABLE

MOBILE = "9876543210"


class TestOtpFlow:
    def test_send_otp(self, client, otp_provider, db, mailer):
        response = client.post("/api/auth/send-otp", json={"mobile": MOBILE, "email": "a@example.com"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "OTP sent successfully", "data": None}
        assert otp_provider.sent == [MOBILE]
        assert db.find(OTP_REQUESTS_TABLE, mobile=MOBILE)["email"] == "a@example.com"
        mailer.send_otp_email.assert_not_called()

    def test_returned_code_is_mailed_in_background(self, client, otp_provider, mailer):
        otp_provider.returns_code = True

        response = client.post("/api/auth/send-otp", json={"mobile": MOBILE, "email": "a@example.com"})

        assert response.status_code == 200
        mailer.send_otp_email.assert_awaited_once_with("a@example.com", "123456")

    def test_returned_code_without_email_is_not_mailed(self, client, otp_provider, mailer):
        otp_provider.returns_code = True
        client.post("/api/auth/send-otp", json={"mobile": MOBILE})
        mailer.send_otp_email.assert_not_called()

    def test_invalid_mobile(self, client, otp_provider):
        response = client.post("/api/auth/send-otp", json={"mobile": "12345"})
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["message"].startswith("mobile")
        assert otp_provider.sent == []

    def test_first_verify_registers(self, client, db, settings, mailer):
        client.post("/api/auth/send-otp", json={"mobile": MOBILE, "email": "a@example.com"})

        response = client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "123456"})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Registration successful"
        data = body["data"]
        assert data["is_new_user"] is True
        assert data["user"]["mobile"] == MOBILE
        assert data["user"]["email"] == "a@example.com"
        assert data["user"]["kyc_status"] == "pending"
        assert data["expires_in"] == settings.access_token_lifetime_seconds
        claim = verify_token(data["access_token"], TokenKind.access, settings)
        assert claim.user_id == data["user"]["id"]
        assert verify_token(data["refresh_token"], TokenKind.refresh, settings).mobile == MOBILE
        assert len(db.rows(USERS_TABLE)) == 1
        assert db.find(OTP_REQUESTS_TABLE, mobile=MOBILE) is None
        mailer.send_welcome_email.assert_awaited_once_with("a@example.com")

    def test_second_verify_logs_in(self, client, db):
        first = client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "123456"})
        second = client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "123456"})

        assert second.json()["data"]["is_new_user"] is False
        assert second.json()["message"] == "Login successful"
        assert second.json()["data"]["user"]["id"] == first.json()["data"]["user"]["id"]
        assert len(db.rows(USERS_TABLE)) == 1

    def test_wrong_otp(self, client, db):
        response = client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "000000"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid OTP"
        assert db.rows(USERS_TABLE) == []

    def test_verify_attempts_limited(self, client, settings):
        for _ in range(settings.otp_verify_limit):
            client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "000000"})
        response = client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "123456"})
        assert response.status_code == 429

    def test_deactivated_user_refused(self, client, make_user):
        make_user(mobile=MOBILE, is_active=False)
        response = client.post("/api/auth/verify-otp", json={"mobile": MOBILE, "otp": "123456"})
        assert response.status_code == 403


class TestRefresh:
    def test_refresh_issues_access_token(self, client, user, refresh_token_for, settings):
        response = client.post("/api/auth/refresh", json={"refresh_token": refresh_token_for(user)})
        assert response.status_code == 200
        token = response.json()["data"]["access_token"]
        assert verify_token(token, TokenKind.access, settings).user_id == user["id"]

    def test_access_token_cannot_refresh(self, client, auth_headers):
        access = auth_headers["Authorization"].split(" ", 1)[1]
        response = client.post("/api/auth/refresh", json={"refresh_token": access})
        assert response.status_code == 401

    def test_refresh_token_cannot_authenticate(self, client, user, refresh_token_for):
        headers = {"Authorization": f"Bearer {refresh_token_for(user)}"}
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_refresh_rate_limited_per_ip(self, client, user, refresh_token_for, settings):
        token = refresh_token_for(user)
        for _ in range(settings.refresh_limit):
            assert client.post("/api/auth/refresh", json={"refresh_token": token}).status_code == 200
        response = client.post("/api/auth/refresh", json={"refresh_token": token})
        assert response.status_code == 429


class TestMe:
    def test_auth_me(self, client, user, auth_headers):
        response = client.get("/api/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["id"] == user["id"]

    def test_unauthenticated(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_users_me_includes_profile(self, client, db, user, auth_headers):
        db.seed(WORKER_PROFILES_TABLE, user_id=user["id"], name="Asha")
        response = client.get("/api/users/me", headers=auth_headers)
        data = response.json()["data"]
        assert data["user"]["id"] == user["id"]
        assert data["worker_profile"]["name"] == "Asha"
        assert data["worker_subscription"] is None

    def test_update_me(self, client, db, user, auth_headers):
        response = client.put(
            "/api/users/me", json={"name": "Ravi", "pincode": "560001"}, headers=auth_headers
        )
        assert response.status_code == 200
        assert db.find(USERS_TABLE, id=user["id"])["name"] == "Ravi"

    def test_update_me_requires_fields(self, client, auth_headers):
        response = client.put("/api/users/me", json={}, headers=auth_headers)
        assert response.status_code == 400

    def test_fcm_token(self, client, db, user, auth_headers):
        response = client.put(
            "/api/users/me/fcm-token",
            json={"fcm_token": "tok", "platform": "android"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        stored = db.find(USERS_TABLE, id=user["id"])
        assert (stored["fcm_token"], stored["fcm_platform"]) == ("tok", "android")

    def test_delete_account(self, client, db, user, auth_headers):
        db.seed(WORKER_PROFILES_TABLE, user_id=user["id"], name="Asha", is_available=True)

        response = client.delete("/api/users/me", headers=auth_headers)

        assert response.status_code == 200
        assert db.find(USERS_TABLE, id=user["id"])["is_active"] is False
        assert db.find(WORKER_PROFILES_TABLE, user_id=user["id"])["is_available"] is False
        assert client.get("/api/users/me", headers=auth_headers).status_code == 404


class TestEnvelope:
    def test_unknown_route(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"
