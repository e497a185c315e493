"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes carry the access token as "Authorization: Bearer <token>".
get_current_user() resolves it through AuthService.authenticate(), which
rejects expired, blacklisted, and deactivated-user tokens with 401.

get_bearer_token() is the soft variant: it only extracts the raw token
(or None) and never raises. Logout needs the raw string to blacklist it.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import User
from auth.service import AuthService


def get_bearer_token(request: Request) -> str | None:
    """Return the token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_user(request: Request) -> User:
    """Require a valid bearer access token. Raises UnauthorizedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    service = get_auth_service(request)
    return service.authenticate(get_bearer_token(request))
