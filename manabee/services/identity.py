"""
Identity - Firebase ID token verification and default profile provisioning.

The Firebase app is created once at startup and passed to the verifier and
the push provider; nothing here touches the SDK's default app.
"""

import asyncio
import json
import os
from datetime import UTC, datetime
from typing import Any, Protocol

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin import exceptions as firebase_exceptions
from structlog import get_logger

from manabee.config import Settings
from manabee.exceptions import UnauthenticatedError
from manabee.models.api import UserRole
from manabee.models.domain import CallerIdentity, UserProfileData
from manabee.storage import Store

logger = get_logger(__name__)

FIREBASE_APP_NAME = "manabee"
DEFAULT_PROFILE_NAME = "New User"


def init_firebase_app(settings: Settings) -> Any:
    """
    Initialize the named Firebase app from settings.

    ``firebase_credentials`` may hold the service account JSON itself or a
    path to it. Without credentials but with a project id, application
    default credentials are used. Returns None when neither is configured.
    """
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    raw = (settings.firebase_credentials or "").strip()
    options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None

    if raw:
        if raw.startswith("{"):
            cred = credentials.Certificate(json.loads(raw))
        elif os.path.exists(raw):
            cred = credentials.Certificate(raw)
        else:
            raise ValueError("FIREBASE_CREDENTIALS is neither JSON nor an existing file path")
    elif settings.firebase_project_id:
        cred = credentials.ApplicationDefault()
    else:
        logger.warning("firebase_not_configured")
        return None

    app = firebase_admin.initialize_app(cred, options=options, name=FIREBASE_APP_NAME)
    logger.info("firebase_initialized", project_id=settings.firebase_project_id)
    return app


class IdentityVerifier(Protocol):
    """Turns a bearer token into a verified caller identity."""

    async def verify(self, token: str) -> CallerIdentity: ...


class FirebaseIdentityVerifier:
    """Verifies Firebase ID tokens with the admin SDK."""

    def __init__(self, app: Any = None) -> None:
        self.app = app

    async def verify(self, token: str) -> CallerIdentity:
        try:
            decoded = await asyncio.to_thread(auth.verify_id_token, token, app=self.app)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            logger.warning("id_token_rejected", error_type=type(e).__name__)
            raise UnauthenticatedError("Invalid or expired token") from e

        return CallerIdentity(
            user_id=decoded["uid"],
            email=decoded.get("email"),
            name=decoded.get("name"),
        )


def default_profile_name(identity: CallerIdentity) -> str:
    """Display name, else the email local part, else a placeholder."""
    if identity.name:
        return identity.name
    if identity.email and "@" in identity.email:
        return identity.email.split("@", 1)[0]
    return DEFAULT_PROFILE_NAME


class ProfileProvisioner:
    """Creates the default profile for a newly seen identity."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def provision(self, identity: CallerIdentity) -> tuple[UserProfileData, bool]:
        """
        Create a student profile that must change its password.

        Idempotent: an existing profile is returned unchanged with
        ``created=False``.
        """
        profile = UserProfileData(
            user_id=identity.user_id,
            email=identity.email or "",
            name=default_profile_name(identity),
            role=UserRole.STUDENT,
            must_change_password=True,
            created_at=datetime.now(UTC),
        )
        stored, created = await self.store.create_user_if_absent(profile)
        if created:
            logger.info("profile_provisioned", user_id=identity.user_id, role=stored.role.value)
        return stored, created

