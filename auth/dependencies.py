"""
Authentication dependencies for the billing panel
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .middleware import get_auth_middleware

security = HTTPBearer()


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """
    Get current authenticated user
    """
    return get_auth_middleware().verify_token(credentials)
