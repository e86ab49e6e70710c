"""Tests for dashboard operator authentication helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from civichub.core.auth import (
    OperatorTokenPayload,
    TokenConfigurationError,
    TokenValidationError,
    decode_operator_token,
    require_role,
)

from conftest import TOKEN_SECRET, issue_token


@pytest.fixture()
def token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set the signing secret and rely on default audience/issuer."""

    monkeypatch.setenv("ADMIN_TOKEN_SECRET", TOKEN_SECRET)
    monkeypatch.delenv("ADMIN_TOKEN_AUDIENCE", raising=False)
    monkeypatch.delenv("ADMIN_TOKEN_ISSUER", raising=False)
    monkeypatch.delenv("ADMIN_TOKEN_ALGORITHM", raising=False)


def test_decode_operator_token_success(token_env: None) -> None:
    payload = decode_operator_token(issue_token(roles=("operator",), tenant_id="desa-1"))

    assert payload["operator_id"] == "op1"
    assert payload["tenant_id"] == "desa-1"
    assert payload["roles"] == ["operator"]


def test_decode_operator_token_requires_operator_id(token_env: None) -> None:
    token = jwt.encode(
        {
            "aud": "civichub",
            "iss": "civichub-dashboard",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        TOKEN_SECRET,
        algorithm="HS256",
    )

    with pytest.raises(TokenValidationError):
        decode_operator_token(token)


@pytest.mark.parametrize(
    "token_kwargs",
    [
        {"secret": "other-secret"},
        {"aud": "someone-else"},
        {"iss": "someone-else"},
        {"exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
    ],
)
def test_decode_operator_token_rejects_invalid_tokens(token_env: None, token_kwargs) -> None:
    with pytest.raises(TokenValidationError):
        decode_operator_token(issue_token(**token_kwargs))


def test_decode_operator_token_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ADMIN_TOKEN_SECRET", raising=False)

    with pytest.raises(TokenConfigurationError):
        decode_operator_token("token")


def test_require_role_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        require_role("superuser")


def _create_test_client() -> TestClient:
    app = FastAPI()

    @app.get("/operator")
    async def read_operator(
        payload: OperatorTokenPayload = Depends(require_role("operator")),
    ) -> OperatorTokenPayload:
        return payload

    return TestClient(app)


@pytest.mark.parametrize(
    ("roles", "expected"),
    [(("admin",), 200), (("operator",), 200), (("viewer",), 403), ((), 403), (("viewer", "admin"), 200)],
)
def test_require_role_levels(token_env: None, roles, expected) -> None:
    client = _create_test_client()

    response = client.get("/operator", headers={"Authorization": f"Bearer {issue_token(roles=roles)}"})

    assert response.status_code == expected


def test_missing_configuration_is_a_server_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ADMIN_TOKEN_SECRET", raising=False)
    client = _create_test_client()

    response = client.get("/operator", headers={"Authorization": f"Bearer {issue_token()}"})

    assert response.status_code == 500
