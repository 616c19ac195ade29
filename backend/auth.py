"""
Module: auth.py
Description: Session token authentication for Spend Sentinel.

Provides:
    - HS256 session token verification (bearer header or session cookie)
    - get_current_actor dependency for FastAPI
    - require_resolver dependency gating alert resolution by role

Tokens are issued by the login service and carry userId, name and role
claims. create_session_token mirrors that issuer for scripts and tests.

Usage:
    @app.put("/fraud-alerts/{alert_id}")
    async def resolve(alert_id: int, actor: Actor = Depends(require_resolver)):
        ...

Author: Spend Sentinel Team
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Request, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import (
    JWT_SECRET, JWT_ALGORITHM, SESSION_COOKIE_NAME,
    AUTH_BYPASS, AUTH_BYPASS_USER_ID, AUTH_BYPASS_ROLE,
    RESOLVE_FORBIDDEN_ROLES,
)
from services.observability import logger
from services.records import Actor


# =============================================================================
# Security Scheme
# =============================================================================

security = HTTPBearer(auto_error=False)


# =============================================================================
# Token Handling
# =============================================================================

def create_session_token(user_id: int, role: str, name: str = None,
                         expires_in: timedelta = timedelta(hours=1)) -> str:
    """Sign a session token with the same claims the login service issues."""
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "name": name,
        "role": role,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_session_token(token: str) -> Optional[dict]:
    """
    Verify a session token and return its claims.

    Args:
        token: Raw JWT from the Authorization header or session cookie.

    Returns:
        Dict of claims if the signature and expiry check out, None otherwise.
    """
    if not token:
        return None

    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Session token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid session token", error=str(e))
        return None


def _claims_to_actor(claims: dict) -> Optional[Actor]:
    user_id = claims.get("userId")
    role = claims.get("role")
    if user_id is None or not role:
        return None
    try:
        return Actor(user_id=int(user_id), role=str(role), name=claims.get("name"))
    except (TypeError, ValueError):
        return None


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Actor:
    """
    FastAPI dependency resolving the caller's identity.

    Looks for a bearer token first, then the session cookie.

    Raises:
        HTTPException: 401 if no valid token is presented.
    """
    if AUTH_BYPASS:
        return Actor(user_id=AUTH_BYPASS_USER_ID, role=AUTH_BYPASS_ROLE, name="bypass")

    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = verify_session_token(token)
    actor = _claims_to_actor(claims) if claims else None
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return actor


async def require_resolver(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    FastAPI dependency for actors allowed to resolve alerts.

    Raises:
        HTTPException: 403 for roles listed in RESOLVE_FORBIDDEN_ROLES.
    """
    if actor.role in RESOLVE_FORBIDDEN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: You do not have permission to resolve alerts.",
        )
    return actor
