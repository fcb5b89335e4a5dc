"""
User Administration - admin listing and editing of user profiles.
"""

from datetime import UTC, datetime

from structlog import get_logger

from manabee.exceptions import InvalidArgumentError, NotFoundError
from manabee.models.api import UserProfileResponse
from manabee.models.domain import ProfileChanges, UserProfileData
from manabee.services.access import AccessGuard
from manabee.storage import Store

logger = get_logger(__name__)


class UserAdministration:
    """Admin-only user operations. Callers must already hold the admin role."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def _to_response(self, profile: UserProfileData) -> UserProfileResponse:
        endpoints = await self.store.list_endpoints(profile.user_id)
        return UserProfileResponse(
            id=profile.user_id,
            email=profile.email,
            name=profile.name,
            role=profile.role,
            must_change_password=profile.must_change_password,
            endpoint_count=len(endpoints),
            created_at=profile.created_at,
            updated_at=profile.updated_at,
            updated_by=profile.updated_by,
        )

    async def list_users(self) -> list[UserProfileResponse]:
        """All profiles, newest first."""
        profiles = await self.store.list_users()
        return [await self._to_response(p) for p in profiles]

    async def update_user(
        self, caller_id: str, target_id: str, changes: ProfileChanges
    ) -> UserProfileData:
        """
        Apply ``changes`` to ``target_id`` and stamp who made them.

        Raises:
            InvalidArgumentError: nothing to update
            FailedPreconditionError: caller would remove their own admin role
            NotFoundError: target profile does not exist
        """
        if changes.is_empty:
            raise InvalidArgumentError("No updates provided")

        AccessGuard.ensure_not_self_demotion(caller_id, target_id, changes)

        updated = await self.store.update_user(target_id, changes, caller_id, datetime.now(UTC))
        if updated is None:
            raise NotFoundError("User", target_id)

        logger.info(
            "user_updated",
            target_user_id=target_id,
            updated_by=caller_id,
            role=changes.role.value if changes.role else None,
        )
        return updated
