from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.database import get_db
from skillmint.core.exceptions import Forbidden, Unauthenticated
from skillmint.core.security import verify_access_token
from skillmint.models.user import User
from skillmint.services.commission_service import CommissionRates
from skillmint.services.payment_service import PaymentGateway


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing credentials are reported as UNAUTHENTICATED
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Dependency to get the current authenticated user.
    Validates the JWT token and returns the user object. Only the `sub`
    claim is consumed.
    """
    if credentials is None:
        raise Unauthenticated("Not authenticated")

    user_id = verify_access_token(credentials.credentials)
    if user_id is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise Unauthenticated("Could not validate credentials")

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid user_id in token: {user_id}")
        raise Unauthenticated("Could not validate credentials")

    user = await db.get(User, user_uuid)
    if user is None:
        logger.warning(f"User {user_id} not found")
        raise Unauthenticated("Could not validate credentials")

    if not user.is_active:
        raise Forbidden("User account is deactivated")

    return user


async def get_admin_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


def get_gateway(request: Request) -> PaymentGateway:
    """Payment gateway built once in the application lifespan."""
    return request.app.state.gateway


def get_commission_rates(request: Request) -> CommissionRates:
    return request.app.state.commission_rates


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]
DB = Annotated[AsyncSession, Depends(get_db)]
Gateway = Annotated[PaymentGateway, Depends(get_gateway)]
Rates = Annotated[CommissionRates, Depends(get_commission_rates)]
