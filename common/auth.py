"""Bearer authentication for the monitor and treasury routers.

A request is made on behalf of exactly one principal; the role checks in
:mod:`common.access` are evaluated against that id. Two token forms are
accepted: an HS256 JWT whose ``sub`` is the principal, or a static token
listed under ``API_TOKENS``.
"""
import hmac
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status

from .secrets import secrets

__all__ = ["require_token", "current_principal"]


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def _jwt_claims(token: str) -> Dict[str, Any]:
    key = secrets.jwt_secret()
    if not key:
        raise _forbidden()
    try:
        claims = jwt.decode(token, key, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        raise _forbidden() from exc
    if not claims.get("sub"):
        raise _forbidden()
    return claims


def _static_principal(token: str) -> Optional[str]:
    for principal, expected in secrets.api_tokens().items():
        if hmac.compare_digest(token.encode(), str(expected).encode()):
            return principal
    return None


def require_token(authorization: str | None = Header(None)) -> Dict[str, Any]:
    """Resolve the ``Authorization`` header to token claims (401/403 otherwise)."""
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _forbidden()

    if token.count(".") == 2:
        return _jwt_claims(token)

    principal = _static_principal(token)
    if principal is None:
        raise _forbidden()
    return {"sub": principal}


def current_principal(claims: Dict[str, Any] = Depends(require_token)) -> str:
    return str(claims["sub"])
