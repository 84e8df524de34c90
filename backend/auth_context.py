"""
backend/auth_context.py

Shared authentication context primitives for FastAPI dependency injection.
This module breaks the circular import between main.py and dependencies.py.

Contains:
- AuthContext: Immutable principal context (id + email) from the bearer token
- require_auth_context: FastAPI dependency for auth enforcement
- verify_token: JWT token verification

Tokens are issued by the identity service; this backend only verifies them.
The token's `sub` is the principal id and its `email` claim is the address
invitations are matched against.

This module MUST NOT import backend.main to avoid circular dependencies.
"""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict

# Import configuration (safe - no circular dependency)
try:
    from backend import db, store
    from backend.config import SECRET_KEY, ALGORITHM, IS_DEV
    from backend.models import utcnow
except ModuleNotFoundError:
    import db
    import store
    from config import SECRET_KEY, ALGORITHM, IS_DEV
    from models import utcnow

# Security scheme for HTTPBearer
security = HTTPBearer()


# ---------------------------------------------------------
# JWT Token Verification
# ---------------------------------------------------------
def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        HTTPException(401): If token is expired or invalid
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    Immutable principal context derived from JWT token.
    This is the ONLY source of the acting principal in protected endpoints.
    Never trust principal ids from request bodies or query params.

    Fields:
        principal_id: `sub` claim
        email: `email` claim, lowercased
    """
    model_config = ConfigDict(frozen=True)

    principal_id: str
    email: str


def _remember_principal(ctx: AuthContext) -> None:
    """Keep the principals table in step with the identity service."""
    with db.get_db_connection() as conn:
        known = store.get_principal(conn, ctx.principal_id)
    if known is not None and known.email == ctx.email:
        return

    try:
        with db.transaction() as conn:
            store.upsert_principal(conn, ctx.principal_id, ctx.email, utcnow())
    except Exception as e:
        if not db.is_integrity_error(e):
            raise
        print(f"[AUTH] Email already linked to another principal: principal_id={ctx.principal_id}")
        raise HTTPException(status_code=409, detail="This email address is linked to a different account")


def require_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthContext:
    """
    Auth context dependency for FastAPI routes.

    Process:
    1. Verify JWT token signature and expiration
    2. Extract `sub` and `email` from token payload
    3. Record the principal (first sighting or changed email)
    4. Return AuthContext

    Usage:
        @router.get("/protected")
        def protected_route(ctx: AuthContext = Depends(require_auth_context)):
            ...

    Raises:
        HTTPException(401): If token is invalid, expired, or missing claims
        HTTPException(409): If the email belongs to a different principal
    """
    payload = verify_token(credentials.credentials)
    principal_id = payload.get("sub")
    email = payload.get("email")

    if not principal_id:
        print("[AUTH] Missing sub in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")
    if not email:
        print(f"[AUTH] Missing email claim: principal_id={principal_id}")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    ctx = AuthContext(principal_id=str(principal_id), email=store.normalize_email(email))
    _remember_principal(ctx)

    if IS_DEV:
        print(f"[AUTH] Authenticated: principal_id={ctx.principal_id}")

    return ctx
