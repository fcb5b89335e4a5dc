"""
FastAPI Dependencies - Authentication and authorization.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from manabee.exceptions import ProviderUnavailableError, UnauthenticatedError
from manabee.models.domain import CallerIdentity, UserProfileData
from manabee.services.registry import ServiceRegistry

logger = get_logger(__name__)

# Bearer token scheme for Firebase ID tokens
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> ServiceRegistry:
    """Component graph built in the application lifespan."""
    return request.app.state.services  # type: ignore[no-any-return]


async def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: ServiceRegistry = Depends(get_services),
) -> CallerIdentity:
    """
    Validate the Firebase ID token from the Authorization header.

    Accepts: Authorization: Bearer {firebase_id_token}

    Raises:
        UnauthenticatedError: header missing or token rejected
        ProviderUnavailableError: no identity verifier configured
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Authorization header required")

    if services.verifier is None:
        logger.error("identity_verifier_not_configured")
        raise ProviderUnavailableError("Firebase authentication")

    caller = await services.verifier.verify(credentials.credentials)
    logger.debug("caller_authenticated", user_id=caller.user_id)
    return caller


async def get_admin(
    caller: CallerIdentity = Depends(get_caller),
    services: ServiceRegistry = Depends(get_services),
) -> UserProfileData:
    """Require a caller whose profile holds the admin role."""
    return await services.guard.require_admin(caller)
