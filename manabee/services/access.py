"""
Access Guard - authorization predicates shared by every entry point.
"""

from structlog import get_logger

from manabee.exceptions import FailedPreconditionError, PermissionDeniedError, UnauthenticatedError
from manabee.models.api import UserRole
from manabee.models.domain import CallerIdentity, ProfileChanges, UserProfileData
from manabee.storage import Store

logger = get_logger(__name__)


class AccessGuard:
    """Checks caller identity and role against stored profiles."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def require_authenticated(self, caller: CallerIdentity | None) -> CallerIdentity:
        if caller is None:
            raise UnauthenticatedError()
        return caller

    async def require_admin(self, caller: CallerIdentity | None) -> UserProfileData:
        """
        Require a caller whose stored profile has the admin role.

        Raises:
            UnauthenticatedError: no verified identity
            PermissionDeniedError: no profile, or role other than admin
        """
        caller = self.require_authenticated(caller)
        profile = await self.store.get_user(caller.user_id)
        if profile is None or not profile.is_admin:
            logger.warning(
                "admin_access_denied",
                user_id=caller.user_id,
                role=profile.role.value if profile else None,
            )
            raise PermissionDeniedError(UserRole.ADMIN.value)
        return profile

    @staticmethod
    def ensure_not_self_demotion(
        caller_id: str, target_id: str, changes: ProfileChanges
    ) -> None:
        """Admins may not change their own role away from admin."""
        if (
            caller_id == target_id
            and changes.role is not None
            and changes.role != UserRole.ADMIN
        ):
            raise FailedPreconditionError("Cannot demote yourself")
