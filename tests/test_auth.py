import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from jose import jwt

from reservation_service import auth
from reservation_service.config import settings
from conftest import create_test_token


def test_decode_admin_token():
    assert auth.decode_admin_token(create_test_token(subject="owner")) == "owner"


@pytest.mark.parametrize("header", [None, "", "Bearer", "Token abc", "Bearer not.a.jwt"])
def test_decode_rejects_bad_headers(header):
    with pytest.raises(HTTPException) as exc:
        auth.decode_admin_token(header)
    assert exc.value.status_code == 401


def test_decode_rejects_wrong_signature():
    token = jwt.encode({"sub": "owner", "role": "admin"}, "some-other-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as exc:
        auth.decode_admin_token(f"Bearer {token}")
    assert exc.value.status_code == 401


def test_decode_requires_subject():
    token = jwt.encode({"role": "admin"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    with pytest.raises(HTTPException) as exc:
        auth.decode_admin_token(f"Bearer {token}")
    assert exc.value.status_code == 401


def test_decode_requires_admin_role():
    with pytest.raises(HTTPException) as exc:
        auth.decode_admin_token(create_test_token(role="guest"))
    assert exc.value.status_code == 403


def test_admin_auth_can_be_disabled(client: TestClient, mocker):
    mocker.patch.object(settings, "ADMIN_AUTH_ENABLED", False)

    response = client.get("/api/reservations")

    assert response.status_code == 200
