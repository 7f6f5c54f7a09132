import pytest
from fastapi.testclient import TestClient

from exam_eval.exceptions import DuplicateUser
from exam_eval.models import UserRole
from exam_eval.services import auth as auth_service
from exam_eval.services.otp import InMemoryOtpStore, OtpService


def register(client: TestClient, **overrides):
    payload = {
        "email": "student1@example.com",
        "password": "password123",
        "role": "student",
        "name": "Test Student",
        "roll_no": "21CS001",
        "section": "A",
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


def test_register_student(client: TestClient):
    response = register(client)
    assert response.status_code == 201
    data = response.json()
    assert data["token"]
    assert data["user"]["email"] == "student1@example.com"
    assert data["user"]["role"] == "student"
    assert data["user"]["roll_no"] == "21CS001"
    assert "password_hash" not in data["user"]


def test_register_requires_roll_no_for_students(client: TestClient):
    response = register(client, roll_no=None)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_register_rejects_short_password(client: TestClient):
    response = register(client, password="123")
    assert response.status_code == 400


def test_register_rejects_missing_fields(client: TestClient):
    response = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert response.status_code == 400


def test_duplicate_email_and_roll_no(client: TestClient):
    assert register(client).status_code == 201

    response = register(client, roll_no="21CS002")
    assert response.status_code == 400
    assert response.json()["code"] == "DUPLICATE_USER"

    response = register(client, email="other@example.com")
    assert response.status_code == 400
    assert response.json()["code"] == "DUPLICATE_USER"


def test_null_roll_numbers_never_collide(client: TestClient, make_user):
    make_user(role="teacher")
    make_user(role="admin")
    # non-students never keep a roll number
    first = make_user(role="spoc")
    second = make_user(role="spoc")
    assert first.roll_no is None and second.roll_no is None


def test_register_elevated_role_requires_otp(client: TestClient):
    response = register(client, email="t1@example.com", role="teacher", roll_no=None)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_OTP"

    response = register(client, email="t1@example.com", role="teacher", roll_no=None, otp="123456")
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_OTP"


def test_register_elevated_role_with_otp(client: TestClient, mailer):
    client.post("/api/otp/send-otp", json={"email": "t2@example.com"})
    code = mailer.last_code("t2@example.com")

    response = register(
        client, email="t2@example.com", role="teacher", roll_no="IGNORED", otp=code
    )
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "teacher"
    assert response.json()["user"]["roll_no"] is None


def test_login_student(client: TestClient):
    register(client)
    response = client.post(
        "/api/auth/login",
        json={"email": "student1@example.com", "password": "password123"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token"]
    assert data["user"]["name"] == "Test Student"
    assert "token" in response.cookies


def test_login_invalid_password(client: TestClient):
    register(client)
    response = client.post(
        "/api/auth/login",
        json={"email": "student1@example.com", "password": "wrongpassword"},
    )
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


def test_login_unknown_and_inactive_users_look_the_same(client: TestClient, make_user):
    make_user(role="student", email="gone@example.com", roll_no="21CS050", is_active=False)
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "password123"})
    inactive = client.post("/api/auth/login", json={"email": "gone@example.com", "password": "password123"})
    assert unknown.status_code == inactive.status_code == 401
    assert unknown.json() == inactive.json()


def test_teacher_login_needs_otp(client: TestClient, make_user, mailer):
    make_user(role="teacher", email="teach@example.com")

    response = client.post("/api/auth/login", json={"email": "teach@example.com", "password": "password123"})
    assert response.status_code == 401
    assert response.json()["code"] == "OTP_REQUIRED"

    response = client.post(
        "/api/auth/login",
        json={"email": "teach@example.com", "password": "password123", "otp": "000000"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_OTP"

    client.post("/api/otp/send-otp", json={"email": "teach@example.com"})
    code = mailer.last_code("teach@example.com")
    response = client.post(
        "/api/auth/login",
        json={"email": "teach@example.com", "password": "password123", "otp": code},
    )
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "teacher"


def test_wrong_password_does_not_consume_otp(client: TestClient, make_user, mailer):
    make_user(role="admin", email="boss@example.com")
    client.post("/api/otp/send-otp", json={"email": "boss@example.com"})
    code = mailer.last_code("boss@example.com")

    response = client.post(
        "/api/auth/login",
        json={"email": "boss@example.com", "password": "nope-nope", "otp": code},
    )
    assert response.status_code == 401

    response = client.post(
        "/api/auth/login",
        json={"email": "boss@example.com", "password": "password123", "otp": code},
    )
    assert response.status_code == 200


def test_me_with_header_and_cookie(client: TestClient):
    token = register(client).json()["token"]

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["email"] == "student1@example.com"

    # register set the cookie on the client
    response = client.get("/api/auth/me")
    assert response.status_code == 200


def test_me_requires_token(client: TestClient):
    response = client.get("/api/auth/me")
    assert response.status_code == 401

    response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


def test_inactive_user_token_is_rejected(client: TestClient, session, make_user, auth_headers):
    user = make_user(role="student", roll_no="21CS060")
    headers = auth_headers(user)
    assert client.get("/api/auth/me", headers=headers).status_code == 200

    user.is_active = False
    session.commit()
    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or inactive user"


def test_logout_clears_cookie(client: TestClient):
    register(client)
    response = client.post("/api/auth/logout")
    assert response.status_code == 200
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


class _NoMatch:
    """Query stand-in for a row inserted after the duplicate check ran."""

    def filter(self, *criteria):
        return self

    def first(self):
        return None


def test_register_insert_conflict_keeps_otp(session, settings, make_user, mailer, monkeypatch):
    make_user(role="teacher", email="taken@example.com")
    store = InMemoryOtpStore()
    service = OtpService(store, mailer)
    code = store.issue("taken@example.com")
    monkeypatch.setattr(session, "query", lambda *entities: _NoMatch())

    with pytest.raises(DuplicateUser):
        auth_service.register(
            session, service, settings,
            email="taken@example.com", password="password123", role=UserRole.TEACHER,
            name="Late Teacher", otp=code,
        )
    assert store.verify("taken@example.com", code)
