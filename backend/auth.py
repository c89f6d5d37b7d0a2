"""
API key authentication for the prop engine endpoints.
A handful of personal keys; user1 is the admin.
"""

from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader
import os
from typing import Dict
from dotenv import load_dotenv

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)
MAX_USERS = 5
ADMIN_USER = "user1"


def get_valid_api_keys() -> Dict[str, str]:
    """Map of key -> user id from API_KEY_USER1..API_KEY_USER5."""
    keys = {}
    for i in range(1, MAX_USERS + 1):
        key = os.getenv(f"API_KEY_USER{i}")
        if key:
            keys[key] = f"user{i}"

    if not keys:
        # Development only
        if os.getenv("ENVIRONMENT") == "development":
            keys["dev-key-insecure"] = ADMIN_USER
        else:
            raise ValueError("No API keys configured! Set API_KEY_USER1 in environment")

    return keys


VALID_API_KEYS = get_valid_api_keys()


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """Resolve the ``X-API-Key`` header to a user id or reject with 401."""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    user = VALID_API_KEYS.get(api_key)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return user


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    """Admin-only routes (refresh, overrides)."""
    if user != ADMIN_USER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
