from fastapi import Request, HTTPException, status
from typing import Optional
import logging
import os
import secrets
from auth import decode_access_token
from models import UserRole

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)
    if not payload or not payload.get("user_id"):
        return None
    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_admin(request: Request) -> dict:
    """Require admin role."""
    user = await require_auth(request)
    if user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

async def admin_route_guard(request: Request) -> dict:
    """Guard for admin routes."""
    return await require_admin(request)

async def automation_route_guard(request: Request) -> dict:
    """Guard for the outbox consumer: a shared key, or an admin token."""
    expected = (os.getenv("AUTOMATION_API_KEY") or "").strip()
    provided = (request.headers.get("X-Automation-Key") or "").strip()
    if expected and secrets.compare_digest(provided, expected):
        return {"user_id": "automation", "role": "automation"}
    return await require_admin(request)
