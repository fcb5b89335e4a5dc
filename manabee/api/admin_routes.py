"""
Admin API Routes - usage reporting and user management.

All routes require a caller whose profile has the admin role.
"""

from fastapi import APIRouter, Depends, Query

from manabee.api.dependencies import get_admin, get_services
from manabee.models.api import (
    SuccessResponse,
    TimeRange,
    UpdateUserRequest,
    UsageStatsResponse,
    UserProfileResponse,
)
from manabee.models.domain import ProfileChanges, UserProfileData
from manabee.services.registry import ServiceRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/usage", response_model=UsageStatsResponse)
async def get_usage_stats(
    time_range: TimeRange = Query("7d", description="Aggregation window"),
    admin: UserProfileData = Depends(get_admin),
    services: ServiceRegistry = Depends(get_services),
) -> UsageStatsResponse:
    """AI usage totals by user, operation and day."""
    return await services.usage.stats(time_range)


@router.get("/users", response_model=list[UserProfileResponse])
async def list_users(
    admin: UserProfileData = Depends(get_admin),
    services: ServiceRegistry = Depends(get_services),
) -> list[UserProfileResponse]:
    """All user profiles, newest first."""
    return await services.users.list_users()


@router.patch("/users/{user_id}", response_model=SuccessResponse)
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    admin: UserProfileData = Depends(get_admin),
    services: ServiceRegistry = Depends(get_services),
) -> SuccessResponse:
    """
    Update a user's role, name, email or password-change flag.

    Admins cannot demote themselves.
    """
    changes = ProfileChanges(
        role=request.role,
        name=request.name,
        email=request.email,
        must_change_password=request.must_change_password,
    )
    await services.users.update_user(admin.user_id, user_id, changes)
    return SuccessResponse(success=True)
