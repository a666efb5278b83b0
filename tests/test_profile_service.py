import pytest

from utils.api_models import UserProfile, UserSettings
from utils.errors import ErrorKind, OfflineError, PokedexError, ValidationError


def _profile(**overrides):
    data = {"id": "ash", "email": "ash@example.com", "display_name": "Ash"}
    data.update(overrides)
    return UserProfile(**data)


@pytest.mark.asyncio
class TestProfiles:
    async def test_missing_profile(self, profile_service):
        assert await profile_service.get_profile("ash") is None

    async def test_save_and_get(self, profile_service):
        profile = _profile(settings=UserSettings(theme="dark"))
        await profile_service.save_profile(profile)

        loaded = await profile_service.get_profile("ash")
        assert loaded == profile
        assert loaded.settings.theme == "dark"

    async def test_save_keeps_settings_separate(self, profile_service, database):
        await profile_service.save_profile(_profile(settings=UserSettings()))

        users_doc = await database.get_document("users", "ash")
        settings_doc = await database.get_document("settings", "ash")

        assert "settings" not in users_doc
        assert settings_doc["settings"]["theme"] == "light"
        assert "updated_at" in settings_doc

    async def test_save_without_settings_writes_none(self, profile_service, database):
        saved = await profile_service.save_profile(_profile())

        assert await database.get_document("settings", "ash") is None
        assert saved.settings == UserSettings()

    async def test_second_save_keeps_stamps_and_settings(self, profile_service):
        first = await profile_service.save_profile(_profile())
        after_login = await profile_service.record_login("ash")
        await profile_service.update_settings("ash", theme="dark")

        saved = await profile_service.save_profile(_profile(display_name="Ash Ketchum"))

        assert saved.display_name == "Ash Ketchum"
        assert saved.last_login_at == after_login.last_login_at
        assert saved.created_at == first.created_at
        assert saved.settings.theme == "dark"
        assert await profile_service.get_profile("ash") == saved

    async def test_explicit_fields_overwrite(self, profile_service):
        await profile_service.save_profile(_profile(photo_url="https://example.com/a.png"))

        saved = await profile_service.save_profile(
            _profile(photo_url=None, settings=UserSettings(language="de"))
        )

        assert saved.photo_url is None
        assert saved.settings.language == "de"

    async def test_record_login_and_sync(self, profile_service):
        await profile_service.save_profile(_profile())

        after_login = await profile_service.record_login("ash")
        assert after_login.last_login_at is not None
        assert after_login.last_sync_at is None

        after_sync = await profile_service.record_sync("ash")
        assert after_sync.last_sync_at is not None
        assert after_sync.last_login_at == after_login.last_login_at
        assert after_sync.email == "ash@example.com"

    async def test_record_login_unknown_user(self, profile_service):
        with pytest.raises(PokedexError) as exc_info:
            await profile_service.record_login("gary")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_offline_save(self, profile_service, connectivity):
        connectivity.force_offline()

        with pytest.raises(OfflineError):
            await profile_service.save_profile(_profile())
        assert await profile_service.get_profile("ash") is None


@pytest.mark.asyncio
class TestSettings:
    async def test_defaults_when_absent(self, profile_service):
        settings = await profile_service.get_settings("ash")
        assert settings == UserSettings()

    async def test_update_merges(self, profile_service):
        await profile_service.update_settings("ash", theme="dark")
        settings = await profile_service.update_settings("ash", language="de")

        assert settings.theme == "dark"
        assert settings.language == "de"
        assert await profile_service.get_settings("ash") == settings

    async def test_partial_notification_update(self, profile_service):
        settings = await profile_service.update_settings("ash", push_enabled=False)

        assert settings.notifications.push_enabled is False
        assert settings.notifications.email_enabled is True

        settings = await profile_service.update_settings("ash", email_enabled=False)
        assert settings.notifications.push_enabled is False
        assert settings.notifications.email_enabled is False

    async def test_settings_update_does_not_touch_profile(self, profile_service):
        await profile_service.save_profile(_profile())
        await profile_service.update_settings("ash", theme="system")

        profile = await profile_service.get_profile("ash")
        assert profile.display_name == "Ash"
        assert profile.settings.theme == "system"

    @pytest.mark.parametrize("kwargs", [{"theme": "neon"}, {"language": "klingon"}])
    async def test_invalid_values(self, profile_service, kwargs):
        with pytest.raises(ValidationError):
            await profile_service.update_settings("ash", **kwargs)

    async def test_no_changes_works_offline(self, profile_service, connectivity):
        connectivity.force_offline()

        assert await profile_service.update_settings("ash") == UserSettings()
        with pytest.raises(OfflineError):
            await profile_service.update_settings("ash", theme="dark")
