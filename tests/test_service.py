"""
Tests for the org.freedesktop.Secret.Service root object.
"""
import asyncio

import pytest
from dbus_fast import Variant

from bitwarden_keyring import crypto
from bitwarden_keyring.exceptions import SessionNotFound, UserCancelled
from bitwarden_keyring.service.errors import IsLocked, NotSupported
from bitwarden_keyring.service.service import SecretService
from bitwarden_keyring.service.types import (
    ALGORITHM_DH,
    ALGORITHM_PLAIN,
    DEFAULT_ALIAS_PATH,
    DEFAULT_COLLECTION_PATH,
    PROMPT_PREFIX,
    SERVICE_PATH,
    item_path,
)

from .conftest import ITEM_ID, NOTE_ID, OTHER_ID, FakeVault, make_login


@pytest.fixture
def service(bus, vault):
    return SecretService(bus, vault)


async def open_plain(service):
    output, path = await service.open_session(ALGORITHM_PLAIN, Variant("s", ""))
    return path


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_exports_root_and_default(self, service, bus):
        """Test that start exports the root, the collection and the alias."""
        await service.start()
        assert bus.objects[SERVICE_PATH] is service
        assert DEFAULT_COLLECTION_PATH in bus.objects
        assert DEFAULT_ALIAS_PATH in bus.objects
        assert bus.signal_names().count("CollectionCreated") == 1

    @pytest.mark.asyncio
    async def test_start_failure_unexports_root(self, service, bus):
        """Test that a failed collection export withdraws the root."""
        bus.fail_exports.add(DEFAULT_COLLECTION_PATH)
        with pytest.raises(Exception):
            await service.start()
        assert SERVICE_PATH not in bus.objects

    @pytest.mark.asyncio
    async def test_stop_withdraws_everything(self, service, bus):
        """Test that stop leaves no object exported."""
        await service.start()
        await open_plain(service)
        await service.search_items({})
        assert len(service.items) == 2

        await service.stop()

        assert bus.objects == {}
        assert len(service.sessions) == 0
        assert len(service.items) == 0
        assert "CollectionDeleted" in bus.signal_names()


class TestOpenSession:
    """Tests for OpenSession."""

    @pytest.mark.asyncio
    async def test_plain(self, service):
        """Test that plain sessions return an empty string variant."""
        output, path = await service.open_session(ALGORITHM_PLAIN, Variant("s", ""))
        assert output.signature == "s"
        assert output.value == ""
        assert service.sessions.get_session(path) is not None

    @pytest.mark.asyncio
    async def test_dh(self, service):
        """Test that DH sessions return the server public key."""
        client = crypto.generate_key_pair(b"\x02")
        output, path = await service.open_session(
            ALGORITHM_DH, Variant("ay", client.public_key),
        )
        assert output.signature == "ay"
        assert len(output.value) == 128

    @pytest.mark.asyncio
    async def test_unsupported(self, service):
        """Test that unknown algorithms are refused."""
        with pytest.raises(NotSupported):
            await service.open_session("rot13", Variant("s", ""))


class TestSearchAndUnlock:
    """Tests for SearchItems, Unlock and Lock."""

    @pytest.mark.asyncio
    async def test_search_unlocked(self, service):
        """Test that matches are returned as unlocked paths."""
        await service.start()
        unlocked, locked = await service.search_items({"username": "alice"})
        assert unlocked == [item_path(ITEM_ID)]
        assert locked == []

    @pytest.mark.asyncio
    async def test_search_by_service(self, service, vault):
        """Test that a service attribute narrows the vault search by URI."""
        await service.start()
        unlocked, _ = await service.search_items({"service": "mail.example.org"})
        assert unlocked == [item_path(OTHER_ID)]
        assert vault.calls["search_items"] == 1

    @pytest.mark.asyncio
    async def test_search_never_returns_notes(self, service):
        """Test that non-login items are not exported by search."""
        await service.start()
        unlocked, _ = await service.search_items({})
        assert item_path(NOTE_ID) not in unlocked
        assert len(unlocked) == 2

    @pytest.mark.asyncio
    async def test_search_locked(self, bus):
        """Test that a locked vault reports the collection as locked."""
        vault = FakeVault(items=[make_login()], locked=True)
        service = SecretService(bus, vault)
        unlocked, locked = await service.search_items({"username": "alice"})
        assert unlocked == []
        assert locked == [DEFAULT_COLLECTION_PATH]
        assert vault.calls["list_items"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_searches_export_once(self, service, bus):
        """Test that parallel searches share one export per item."""
        await service.start()
        results = await asyncio.gather(*(service.search_items({}) for _ in range(20)))
        assert all(sorted(r[0]) == sorted(results[0][0]) for r in results)
        assert bus.export_calls.count(item_path(ITEM_ID)) == 1
        assert bus.export_calls.count(item_path(OTHER_ID)) == 1

    @pytest.mark.asyncio
    async def test_unlock_when_unlocked(self, service):
        """Test that Unlock needs no prompt for an unlocked vault."""
        unlocked, prompt = await service.unlock([DEFAULT_COLLECTION_PATH])
        assert unlocked == [DEFAULT_COLLECTION_PATH]
        assert prompt == "/"

    @pytest.mark.asyncio
    async def test_unlock_when_locked(self, bus):
        """Test that Unlock returns a prompt that performs the unlock."""
        vault = FakeVault(locked=True)
        service = SecretService(bus, vault)
        unlocked, prompt_path = await service.unlock([DEFAULT_COLLECTION_PATH])

        assert unlocked == []
        assert prompt_path.startswith(PROMPT_PREFIX)
        prompt = service.prompts.get_prompt(prompt_path)
        assert bus.objects[prompt_path] is prompt

        await prompt.prompt("")
        await asyncio.wait_for(prompt.completed.wait(), 1)
        assert vault.locked is False
        assert prompt.dismissed is False

    @pytest.mark.asyncio
    async def test_lock(self, service, vault):
        """Test that Lock locks the vault without a prompt."""
        locked, prompt = await service.lock([DEFAULT_COLLECTION_PATH])
        assert locked == [DEFAULT_COLLECTION_PATH]
        assert prompt == "/"
        assert vault.locked is True


class TestGetSecrets:
    """Tests for GetSecrets."""

    @pytest.mark.asyncio
    async def test_returns_known_items(self, service):
        """Test that secrets of resolvable items are returned."""
        await service.start()
        session = await open_plain(service)
        secrets = await service.get_secrets(
            [item_path(ITEM_ID), item_path(OTHER_ID)], session,
        )
        assert secrets[item_path(ITEM_ID)] == [session, b"", b"hunter2", "text/plain"]
        assert secrets[item_path(OTHER_ID)][2] == b"s3cret"

    @pytest.mark.asyncio
    async def test_skips_unknown_items(self, service):
        """Test that missing items are left out of the result."""
        await service.start()
        session = await open_plain(service)
        missing = item_path("ffffffff-ffff-ffff-ffff-ffffffffffff")
        secrets = await service.get_secrets(
            [missing, item_path(ITEM_ID), "/not/an/item"], session,
        )
        assert list(secrets) == [item_path(ITEM_ID)]

    @pytest.mark.asyncio
    async def test_unknown_session(self, service):
        """Test that an unknown session is rejected."""
        with pytest.raises(SessionNotFound):
            await service.get_secrets([item_path(ITEM_ID)], "/org/freedesktop/secrets/session/9")

    @pytest.mark.asyncio
    async def test_locked_without_auto_unlock(self, bus):
        """Test that a locked vault without auto-unlock reports IsLocked."""
        vault = FakeVault(items=[make_login()], locked=True, auto_unlock=False)
        service = SecretService(bus, vault)
        session = await open_plain(service)
        with pytest.raises(IsLocked):
            await service.get_secrets([item_path(ITEM_ID)], session)

    @pytest.mark.asyncio
    async def test_cancelled_unlock(self, bus):
        """Test that a cancelled password prompt reports IsLocked."""
        vault = FakeVault(items=[make_login()], locked=True)
        vault.unlock_error = UserCancelled()
        service = SecretService(bus, vault)
        session = await open_plain(service)
        with pytest.raises(IsLocked):
            await service.get_secrets([item_path(ITEM_ID)], session)

    @pytest.mark.asyncio
    async def test_auto_unlock(self, bus):
        """Test that a locked vault is unlocked on demand."""
        vault = FakeVault(items=[make_login()], locked=True)
        service = SecretService(bus, vault)
        session = await open_plain(service)
        secrets = await service.get_secrets([item_path(ITEM_ID)], session)
        assert secrets[item_path(ITEM_ID)][2] == b"hunter2"
        assert vault.locked is False


class TestAliasesAndCollections:
    """Tests for ReadAlias, SetAlias, CreateCollection and Collections."""

    @pytest.mark.asyncio
    async def test_read_default_alias(self, service):
        """Test that the default alias resolves to the default collection."""
        assert await service.read_alias("default") == DEFAULT_COLLECTION_PATH

    @pytest.mark.asyncio
    async def test_read_unknown_alias(self, service):
        """Test that other aliases resolve to no object."""
        assert await service.read_alias("login") == "/"

    @pytest.mark.asyncio
    async def test_set_alias_is_ignored(self, service):
        """Test that SetAlias succeeds without changing anything."""
        await service.set_alias("login", DEFAULT_COLLECTION_PATH)
        assert await service.read_alias("login") == "/"

    @pytest.mark.asyncio
    async def test_create_collection_returns_default(self, service, bus):
        """Test that CreateCollection hands back the default collection."""
        path, prompt = await service.create_collection(
            {"org.freedesktop.Secret.Collection.Label": Variant("s", "Work")}, "work",
        )
        assert path == DEFAULT_COLLECTION_PATH
        assert prompt == "/"
        assert bus.signal_names().count("CollectionCreated") == 1

    @pytest.mark.asyncio
    async def test_collections_property(self, service):
        """Test the Collections property."""
        assert await service.get_property("Collections") == []
        await service.start()
        assert await service.get_property("Collections") == [DEFAULT_COLLECTION_PATH]
