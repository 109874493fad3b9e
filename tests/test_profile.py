"""Unit tests for profile operations."""

import pytest

from vidtube.service.errors import ConflictError, NotFoundError, ValidationError
from vidtube.service.media import MediaService
from vidtube.service.profile import ProfileService
from vidtube.storage.memory import MemoryStore


@pytest.fixture
def store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path / "store"), persist=False)


@pytest.fixture
def profile_service(store, tmp_path):
    return ProfileService(store, MediaService(str(tmp_path / "fs"), tmp_path / "tmp"))


@pytest.fixture
def accounts(store):
    created = {}
    for name in ("alice", "bob"):
        created[name] = store.create_account(
            username=name,
            email=f"{name}@example.com",
            full_name=name.title(),
            password_hash="hash",
            avatar=f"/media/{name}.png",
        )
    return created


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "tmp" / "image.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"image")
    return path


class TestUpdateAccount:
    async def test_only_full_name_keeps_email(self, profile_service, accounts):
        updated = await profile_service.update_account(
            accounts["alice"].id, full_name="Alice Liddell"
        )
        assert updated.full_name == "Alice Liddell"
        assert updated.email == "alice@example.com"
        assert updated.password_hash is None

    async def test_email_is_normalized(self, profile_service, accounts):
        updated = await profile_service.update_account(
            accounts["alice"].id, email=" New@Example.com "
        )
        assert updated.email == "new@example.com"

    async def test_nothing_to_update(self, profile_service, accounts):
        with pytest.raises(ValidationError):
            await profile_service.update_account(accounts["alice"].id)
        with pytest.raises(ValidationError):
            await profile_service.update_account(accounts["alice"].id, full_name="  ")

    async def test_email_taken(self, profile_service, accounts):
        with pytest.raises(ConflictError):
            await profile_service.update_account(
                accounts["alice"].id, email="bob@example.com"
            )

    async def test_missing_account(self, profile_service):
        with pytest.raises(NotFoundError):
            await profile_service.update_account("missing", full_name="x")


class TestImages:
    async def test_update_avatar(self, profile_service, accounts, image):
        updated = await profile_service.update_avatar(accounts["alice"].id, image)
        assert updated.avatar.startswith("/media/")
        assert updated.avatar != "/media/alice.png"
        assert not image.exists()

    async def test_update_cover_image(self, profile_service, accounts, image):
        updated = await profile_service.update_cover_image(accounts["alice"].id, image)
        assert updated.cover_image.startswith("/media/")
        assert not image.exists()

    async def test_missing_file(self, profile_service, accounts):
        with pytest.raises(ValidationError):
            await profile_service.update_avatar(accounts["alice"].id, None)

    async def test_failed_upload(self, profile_service, accounts, tmp_path):
        with pytest.raises(ValidationError):
            await profile_service.update_cover_image(
                accounts["alice"].id, tmp_path / "missing.png"
            )

    async def test_unknown_account_still_discards_file(self, profile_service, image):
        with pytest.raises(NotFoundError):
            await profile_service.update_avatar("missing", image)
        assert not image.exists()


class TestChannels:
    async def test_channel_profile(self, profile_service, accounts, store):
        store.add_subscription(accounts["bob"].id, accounts["alice"].id)
        profile = await profile_service.channel_profile("Alice", accounts["bob"].id)
        assert profile.username == "alice"
        assert profile.subscribers_count == 1
        assert profile.channels_subscribed_to_count == 0
        assert profile.is_subscribed is True

    async def test_channel_profile_errors(self, profile_service, accounts):
        with pytest.raises(ValidationError):
            await profile_service.channel_profile("  ", accounts["bob"].id)
        with pytest.raises(NotFoundError):
            await profile_service.channel_profile("nobody", accounts["bob"].id)

    async def test_subscribe_and_unsubscribe(self, profile_service, accounts):
        bob = accounts["bob"]
        profile = await profile_service.subscribe(bob.id, "alice")
        assert profile.subscribers_count == 1
        assert profile.is_subscribed is True
        again = await profile_service.subscribe(bob.id, "alice")
        assert again.subscribers_count == 1
        profile = await profile_service.unsubscribe(bob.id, "alice")
        assert profile.subscribers_count == 0
        assert profile.is_subscribed is False

    async def test_cannot_subscribe_to_self(self, profile_service, accounts):
        with pytest.raises(ValidationError):
            await profile_service.subscribe(accounts["alice"].id, "alice")

    async def test_watch_history(self, profile_service, accounts, store):
        video = store.create_video(accounts["bob"].id, "Clip", duration=12.5)
        store.add_to_watch_history(accounts["alice"].id, video.id)
        history = await profile_service.watch_history(accounts["alice"].id)
        assert len(history) == 1
        assert history[0].video.id == video.id
        assert history[0].owner.full_name == "Bob"
