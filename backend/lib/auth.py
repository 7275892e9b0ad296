"""
Authentication utilities for JWT validation

The student identity used for sessions and attempts always comes from the
validated token, never from request bodies.
"""
import logging
import os
from typing import Any, Dict, Optional
from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv
from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

# Same secret Supabase signs its access tokens with
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def decode_access_token(token: str, secret: str) -> Dict[str, Any]:
    """
    Verify a Supabase access token locally.

    Raises:
        HTTPException: If the token is invalid, expired or has no subject
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return claims


async def get_current_user(authorization: Optional[str] = Header(None)):
    """
    Validate JWT token and return user info

    Verifies locally when SUPABASE_JWT_SECRET is set, otherwise asks Supabase.

    Returns:
        dict: User information including id, email, role

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.replace("Bearer ", "", 1)

    if JWT_SECRET:
        claims = decode_access_token(token, JWT_SECRET)
        metadata = claims.get("user_metadata") or {}
        return {
            "id": claims["sub"],
            "email": claims.get("email"),
            "role": metadata.get("role", "student"),
            "full_name": metadata.get("full_name"),
        }

    try:
        supabase = get_supabase_client()
        user_response = supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = user_response.user
        profile_response = supabase.table('profiles').select('*').eq('id', user.id).single().execute()

        if not profile_response.data:
            raise HTTPException(status_code=404, detail="User profile not found")

        profile = profile_response.data

        return {
            "id": user.id,
            "email": user.email,
            "role": profile.get("role", "student"),
            "full_name": profile.get("full_name"),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")
