"""
Authentication middleware with local validation of Supabase JWTs
"""
import jwt
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from typing import Optional
import logging
from supabase import create_client, Client

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# JWT settings
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


class AuthMiddleware:
    def __init__(self, settings: Settings):
        # Service-role client: bypasses row level security, server side only
        self.supabase: Client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        self.jwt_secret: Optional[str] = settings.supabase_jwt_secret
        logger.info("Supabase client initialized with local JWT validation")

    def verify_token(self, credentials: HTTPAuthorizationCredentials) -> dict:
        """
        Verify JWT token locally without round-trip to Supabase
        """
        if not self.jwt_secret:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication is not configured"
            )

        try:
            payload = jwt.decode(
                credentials.credentials,
                self.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                audience=JWT_AUDIENCE
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired"
            )
        except jwt.InvalidAudienceError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token audience"
            )
        except jwt.InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {str(e)}"
            )

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: missing user information"
            )

        return {"id": user_id, "email": payload.get("email")}


# Global auth middleware instance - created on first use
auth_middleware = None


def get_auth_middleware() -> AuthMiddleware:
    """Get or create auth middleware instance"""
    global auth_middleware
    if auth_middleware is None:
        auth_middleware = AuthMiddleware(get_settings())
    return auth_middleware
