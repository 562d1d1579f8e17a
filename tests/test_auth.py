from datetime import timedelta

import pytest

import auth
import models
import schemas
from conftest import auth_headers, make_user
from errors import (
    AccountDeactivated,
    InvalidCredentials,
    RoleMismatch,
    Unauthenticated,
    UserExists,
    ValidationFailed,
)


def test_password_hash_round_trip():
    hashed = auth.get_password_hash("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert auth.verify_password("s3cret-pass", hashed)
    assert not auth.verify_password("s3cret-passx", hashed)


def test_password_hash_is_salted():
    assert auth.get_password_hash("same") != auth.get_password_hash("same")


def test_overlong_password_rejected():
    with pytest.raises(ValidationFailed):
        auth.get_password_hash("x" * 73)


def test_verify_against_malformed_hash_is_false():
    assert not auth.verify_password("anything", "not-a-bcrypt-hash")


def test_token_round_trip():
    token = auth.create_access_token({"sub": "42"})
    assert auth.decode_access_token(token) == 42


def test_expired_token_rejected():
    token = auth.create_access_token({"sub": "42"}, expires_delta=timedelta(seconds=-5))
    with pytest.raises(Unauthenticated):
        auth.decode_access_token(token)


def test_tampered_token_rejected():
    token = auth.create_access_token({"sub": "42"})
    head, payload, signature = token.split(".")
    forged = auth.jwt.encode({"sub": "1"}, "some-other-secret", algorithm=auth.ALGORITHM)
    with pytest.raises(Unauthenticated):
        auth.decode_access_token(forged)
    with pytest.raises(Unauthenticated):
        auth.decode_access_token(f"{head}.{payload}.{signature[::-1]}")


def test_token_without_subject_rejected():
    token = auth.create_access_token({"role": "admin"})
    with pytest.raises(Unauthenticated):
        auth.decode_access_token(token)


def test_login_success(db):
    user = make_user(db, email="ravi@billtracker.in", password="secret1", role="staff")
    token, logged_in = auth.login(db, "Ravi@BillTracker.in", "secret1", "staff")
    assert logged_in.id == user.id
    assert auth.decode_access_token(token) == user.id


def test_login_unknown_email(db):
    with pytest.raises(InvalidCredentials):
        auth.login(db, "nobody@billtracker.in", "secret1", "staff")


def test_login_wrong_password(db):
    make_user(db, password="secret1")
    with pytest.raises(InvalidCredentials):
        auth.login(db, "ravi@billtracker.in", "wrong", "staff")


def test_login_role_mismatch_with_correct_credentials(db):
    make_user(db, password="secret1", role="staff")
    with pytest.raises(RoleMismatch):
        auth.login(db, "ravi@billtracker.in", "secret1", "admin")


@pytest.mark.parametrize("password", ["secret1", "wrong"])
def test_login_inactive_user_always_fails(db, password):
    make_user(db, password="secret1", is_active=False)
    with pytest.raises(AccountDeactivated):
        auth.login(db, "ravi@billtracker.in", password, "staff")


def test_register_duplicate_email_creates_nothing(db):
    make_user(db, email="ravi@billtracker.in")
    user_in = schemas.UserCreate(email="RAVI@billtracker.in", password="secret1", full_name="Another", role="staff")
    with pytest.raises(UserExists):
        auth.register(db, user_in)
    assert db.query(models.User).count() == 1


def test_register_duplicate_staff_id(db):
    make_user(db, staff_id="STF001")
    user_in = schemas.UserCreate(email="new@billtracker.in", password="secret1", full_name="New", staff_id="STF001", role="staff")
    with pytest.raises(UserExists):
        auth.register(db, user_in)


def test_register_hashes_password(db):
    user_in = schemas.UserCreate(email="new@billtracker.in", password="secret1", full_name="New", role="commissioner")
    token, user = auth.register(db, user_in)
    assert user.hashed_password != "secret1"
    assert auth.verify_password("secret1", user.hashed_password)
    assert auth.decode_access_token(token) == user.id


# --- HTTP ---

def test_login_endpoint_returns_public_view(client, db):
    make_user(db, staff_id="STF001")
    resp = client.post("/api/auth/login", json={"email": "ravi@billtracker.in", "password": "secret1", "role": "staff"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["token"]
    assert body["user"] == {
        "id": 1,
        "email": "ravi@billtracker.in",
        "full_name": "Ravi Kumar",
        "staff_id": "STF001",
        "role": "staff",
        "is_active": True,
    }
    assert "password" not in str(body["user"])


def test_login_endpoint_role_mismatch(client, db):
    make_user(db)
    resp = client.post("/api/auth/login", json={"email": "ravi@billtracker.in", "password": "secret1", "role": "commissioner"})
    assert resp.status_code == 401
    assert resp.json() == {"message": "Invalid role for this user"}


def test_login_endpoint_missing_fields(client):
    resp = client.post("/api/auth/login", json={"email": "ravi@billtracker.in"})
    assert resp.status_code == 400
    assert "password" in resp.json()["message"]


def test_register_endpoint(client):
    payload = {"email": "new@billtracker.in", "password": "secret1", "full_name": "New Staff", "staff_id": "STF009", "role": "staff"}
    resp = client.post("/api/auth/register", json=payload)
    assert resp.status_code == 201
    assert resp.json()["user"]["staff_id"] == "STF009"

    again = client.post("/api/auth/register", json=payload)
    assert again.status_code == 400
    assert again.json()["message"] == "User already exists"


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["message"] == "No token, authorization denied"


def test_me_with_token(client, db):
    user = make_user(db)
    resp = client.get("/api/auth/me", headers=auth_headers(user))
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "ravi@billtracker.in"


def test_me_with_garbage_token(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.token"})
    assert resp.status_code == 401


def test_me_with_expired_token(client, db):
    user = make_user(db)
    token = auth.create_access_token({"sub": str(user.id)}, expires_delta=timedelta(minutes=-1))
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_deactivated_user_token_refused(client, db):
    user = make_user(db)
    headers = auth_headers(user)
    user.is_active = False
    db.commit()
    resp = client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["message"] == "User account is deactivated"


def test_change_password(client, db):
    user = make_user(db, password="secret1")
    headers = auth_headers(user)

    bad = client.put("/api/auth/me/password", json={"old_password": "nope", "new_password": "secret2"}, headers=headers)
    assert bad.status_code == 400

    ok = client.put("/api/auth/me/password", json={"old_password": "secret1", "new_password": "secret2"}, headers=headers)
    assert ok.status_code == 200
    db.refresh(user)
    assert auth.verify_password("secret2", user.hashed_password)


def test_password_reset_flow(client, db):
    user = make_user(db, password="secret1")

    resp = client.post("/api/auth/forgot-password", json={"email": "ravi@billtracker.in"})
    assert resp.status_code == 200
    db.refresh(user)
    token = user.reset_password_token
    assert token

    reset = client.post("/api/auth/reset-password", json={"token": token, "new_password": "brandnew"})
    assert reset.status_code == 200
    db.refresh(user)
    assert user.reset_password_token is None
    assert auth.verify_password("brandnew", user.hashed_password)

    reused = client.post("/api/auth/reset-password", json={"token": token, "new_password": "another"})
    assert reused.status_code == 400


def test_forgot_password_unknown_email_same_answer(client, db):
    make_user(db)
    known = client.post("/api/auth/forgot-password", json={"email": "ravi@billtracker.in"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@billtracker.in"})
    assert known.json() == unknown.json()


def test_expired_reset_token_rejected(db):
    user = make_user(db)
    _, token = auth.start_password_reset(db, user.email)
    user.reset_password_expires = models.utcnow() - timedelta(minutes=1)
    db.commit()
    with pytest.raises(ValidationFailed):
        auth.reset_password(db, token, "brandnew")
