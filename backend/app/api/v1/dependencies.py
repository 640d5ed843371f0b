"""
API Dependencies
Shared dependencies for authentication, Supabase access, and authorization
"""
import os
from typing import Optional
from fastapi import Depends, HTTPException, status, Header
from supabase import create_client, Client
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()


class CurrentUser(BaseModel):
    """Current authenticated user model"""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    org_id: Optional[str] = None
    role: str = "member"


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract token from "Bearer <token>", or None if malformed."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def _load_user(supabase: Client, token: str) -> Optional[CurrentUser]:
    """
    Verify the token with Supabase auth and attach the profile's org.

    Returns None when the token does not resolve to a user.
    """
    user_response = supabase.auth.get_user(token)
    if not user_response or not user_response.user:
        return None

    auth_user = user_response.user

    profile_response = supabase.table("profiles").select(
        "org_id, full_name, role"
    ).eq("id", auth_user.id).limit(1).execute()

    profile = profile_response.data[0] if profile_response.data else {}

    return CurrentUser(
        id=str(auth_user.id),
        email=auth_user.email,
        name=profile.get("full_name"),
        org_id=profile.get("org_id"),
        role=profile.get("role") or "member",
    )


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    supabase: Client = Depends(get_supabase)
) -> CurrentUser:
    """
    Dependency to get the current authenticated user from JWT token.

    Args:
        authorization: Bearer token from Authorization header
        supabase: Supabase client

    Returns:
        CurrentUser object with user details

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = _load_user(supabase, token)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token validation failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def require_org_member(
    current_user: CurrentUser = Depends(get_current_user)
) -> CurrentUser:
    """
    Dependency to require a user that belongs to an organization.

    Raises:
        HTTPException: 403 if the profile has no org
    """
    if not current_user.org_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organization not found for user"
        )
    return current_user


def get_optional_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    supabase: Client = Depends(get_supabase)
) -> Optional[CurrentUser]:
    """
    Dependency to optionally get current user (for endpoints that work with or without auth).

    Returns None if no valid token provided.
    """
    token = _bearer_token(authorization)
    if not token:
        return None

    try:
        return _load_user(supabase, token)
    except Exception:
        return None
