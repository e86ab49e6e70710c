"""Bearer-token authentication for the admin control surface.

Dashboard users reach the admin routes with a JWT signed by the dashboard
backend. The token identifies the operator (``operator_id``), optionally the
tenant they administer, and their roles. Role checks are expressed as FastAPI
dependencies created by :func:`require_role`.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import cast

from typing_extensions import TypedDict

import jwt
from fastapi import Depends, HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

__all__ = [
    "OperatorTokenPayload",
    "TokenConfigurationError",
    "TokenValidationError",
    "decode_operator_token",
    "get_operator_context",
    "require_role",
]

_ROLE_LEVELS = {"viewer": 0, "operator": 1, "admin": 2}


class TokenConfigurationError(RuntimeError):
    """Raised when admin token configuration is invalid."""


class TokenValidationError(ValueError):
    """Raised when the provided admin token cannot be validated."""


class _OperatorTokenRequiredClaims(TypedDict):
    operator_id: str


class OperatorTokenPayload(_OperatorTokenRequiredClaims, total=False):
    """Decoded JWT payload for dashboard operators."""

    aud: str | list[str]
    exp: int
    iat: int
    iss: str
    name: str
    roles: list[str]
    tenant_id: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise TokenConfigurationError(
            f"Environment variable '{name}' must be set for admin token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def decode_operator_token(token: str) -> OperatorTokenPayload:
    """Decode and validate an operator access token.

    Raises:
        TokenConfigurationError: If mandatory environment configuration is missing.
        TokenValidationError: If token signature, claims, or expiry are invalid.
    """

    secret_key = _get_env("ADMIN_TOKEN_SECRET")
    audience = _get_env("ADMIN_TOKEN_AUDIENCE", required=False, default="civichub")
    issuer = _get_env("ADMIN_TOKEN_ISSUER", required=False, default="civichub-dashboard")
    algorithm = _get_env("ADMIN_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Admin token has expired.") from exc
    except InvalidTokenError as exc:
        raise TokenValidationError("Admin token is invalid.") from exc

    if "operator_id" not in payload:
        raise TokenValidationError("Admin token payload must include 'operator_id'.")
    return cast(OperatorTokenPayload, payload)


async def get_operator_context(request: Request) -> OperatorTokenPayload:
    """Extract the operator payload from the ``Authorization`` header."""

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        return decode_operator_token(credentials)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


def require_role(min_role: str) -> Callable[..., OperatorTokenPayload]:
    """Create a dependency ensuring the caller has at least ``min_role``."""

    if min_role not in _ROLE_LEVELS:
        raise ValueError(f"Unknown role: {min_role}")

    async def dependency(
        payload: OperatorTokenPayload = Depends(get_operator_context),
    ) -> OperatorTokenPayload:
        roles = payload.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        levels = [_ROLE_LEVELS[role] for role in roles if role in _ROLE_LEVELS]
        if not levels:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No roles assigned to operator.",
            )
        if max(levels) < _ROLE_LEVELS[min_role]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role.",
            )
        return payload

    return dependency
