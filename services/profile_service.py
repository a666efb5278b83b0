"""
User profile and settings persistence.

Profiles from the identity provider are mirrored into `users/{user_id}`;
preferences live separately in `settings/{user_id}` so that a settings change
never rewrites the profile. Missing settings read as the defaults.
"""

import logging
from typing import Any, Dict, Optional

from utils.api_models import UserProfile, UserSettings, decode, utcnow
from utils.connectivity import ConnectivityMonitor
from utils.constants import ERROR_PROFILE_NOT_FOUND, SETTINGS_COLLECTION, USERS_COLLECTION
from utils.database import Database
from utils.errors import ErrorKind, OfflineError, PokedexError
from utils.validators import (
    ensure_valid,
    validate_language,
    validate_theme,
    validate_user_id,
)

logger = logging.getLogger("pokedex.profile")


class ProfileService:
    def __init__(self, database: Database, connectivity: ConnectivityMonitor):
        self.db = database
        self.connectivity = connectivity

    async def _require_connection(self, operation: str) -> None:
        if not await self.connectivity.has_connection():
            logger.info("Refusing profile write while offline", extra={"operation": operation})
            raise OfflineError()

    # ==================== PROFILE ====================

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        """
        Create or update a profile document, and its settings document.

        Only fields explicitly set on `profile` are written, so timestamps
        stamped by `record_login`/`record_sync` survive a later save. The
        stored `created_at` is never replaced, and settings are only written
        when `profile` carries them.
        """
        ensure_valid(validate_user_id(profile.id))
        await self._require_connection("save_profile")

        body = profile.model_dump(mode="json", exclude={"settings", "created_at"}, exclude_unset=True)
        if await self.db.get_document(USERS_COLLECTION, profile.id) is None:
            body.update(profile.model_dump(mode="json", include={"created_at"}))
        await self.db.set_document(USERS_COLLECTION, profile.id, body, merge=True)
        if "settings" in profile.model_fields_set:
            await self._write_settings(profile.id, profile.settings)

        logger.info("Profile saved", extra={"user_id": profile.id, "fields": sorted(body)})
        return await self.get_profile(profile.id)

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ensure_valid(validate_user_id(user_id))
        document = await self.db.get_document(USERS_COLLECTION, user_id)
        if document is None:
            return None
        settings = await self.get_settings(user_id)
        return decode(UserProfile, {**document, "settings": settings.model_dump(mode="json")})

    async def record_login(self, user_id: str) -> UserProfile:
        """Stamp `last_login_at` with the current time."""
        return await self._touch(user_id, "last_login_at")

    async def record_sync(self, user_id: str) -> UserProfile:
        """Stamp `last_sync_at` with the current time."""
        return await self._touch(user_id, "last_sync_at")

    async def _touch(self, user_id: str, field: str) -> UserProfile:
        ensure_valid(validate_user_id(user_id))
        await self._require_connection(field)

        if await self.db.get_document(USERS_COLLECTION, user_id) is None:
            raise PokedexError(ERROR_PROFILE_NOT_FOUND, kind=ErrorKind.NOT_FOUND)

        await self.db.set_document(
            USERS_COLLECTION, user_id, {field: utcnow().isoformat()}, merge=True
        )
        logger.debug("Profile timestamp updated", extra={"user_id": user_id, "field": field})
        return await self.get_profile(user_id)

    # ==================== SETTINGS ====================

    async def get_settings(self, user_id: str) -> UserSettings:
        ensure_valid(validate_user_id(user_id))
        document = await self.db.get_document(SETTINGS_COLLECTION, user_id)
        if not document or "settings" not in document:
            return UserSettings()
        return decode(UserSettings, document["settings"])

    async def update_settings(
        self,
        user_id: str,
        theme: Optional[str] = None,
        language: Optional[str] = None,
        push_enabled: Optional[bool] = None,
        email_enabled: Optional[bool] = None,
    ) -> UserSettings:
        """
        Change individual settings, keeping the rest.

        Raises:
            ValidationError: Unsupported theme or language.
            OfflineError: No connection.
        """
        ensure_valid(validate_user_id(user_id))
        if theme is not None:
            ensure_valid(validate_theme(theme))
        if language is not None:
            ensure_valid(validate_language(language))

        current = await self.get_settings(user_id)

        changes: Dict[str, Any] = {}
        if theme is not None:
            changes["theme"] = theme
        if language is not None:
            changes["language"] = language

        notification_changes = {}
        if push_enabled is not None:
            notification_changes["push_enabled"] = push_enabled
        if email_enabled is not None:
            notification_changes["email_enabled"] = email_enabled
        if notification_changes:
            changes["notifications"] = current.notifications.model_copy(
                update=notification_changes
            )

        if not changes:
            return current

        await self._require_connection("update_settings")
        updated = current.model_copy(update=changes)
        await self._write_settings(user_id, updated)
        logger.info("Settings updated", extra={"user_id": user_id, "fields": sorted(changes)})
        return updated

    async def _write_settings(self, user_id: str, settings: UserSettings) -> None:
        await self.db.set_document(
            SETTINGS_COLLECTION,
            user_id,
            {"settings": settings.model_dump(mode="json"), "updated_at": utcnow().isoformat()},
            merge=True,
        )
