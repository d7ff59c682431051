"""
Tests for the default collection and its items.

Tests cover:
- CreateItem with and without replace
- Collection properties and the Label signal
- Item secrets over plain and DH sessions
- Item property writes, deletion and snapshot refresh
"""
import pytest
from dbus_fast import Variant

from bitwarden_keyring import crypto
from bitwarden_keyring.exceptions import (
    APIError,
    MissingSecret,
    ObjectNotFound,
    SessionNotFound,
    VaultError,
)
from bitwarden_keyring.service.collection import CollectionManager
from bitwarden_keyring.service.errors import NotSupported
from bitwarden_keyring.service.item import ItemManager
from bitwarden_keyring.service.session import SessionManager
from bitwarden_keyring.service.types import (
    ALGORITHM_DH,
    ALGORITHM_PLAIN,
    DEFAULT_ALIAS_PATH,
    DEFAULT_COLLECTION_PATH,
    PROP_ITEM_ATTRIBUTES,
    PROP_ITEM_LABEL,
    SERVICE_PATH,
    item_path,
)

from .conftest import ITEM_ID, OTHER_ID, make_login


@pytest.fixture
def sessions(bus):
    return SessionManager(bus)


@pytest.fixture
def items(bus, vault, sessions):
    return ItemManager(bus, vault, sessions)


@pytest.fixture
def collections(bus, vault, items):
    return CollectionManager(bus, vault, items)


@pytest.fixture
def plain(sessions):
    session, _ = sessions.create_session(ALGORITHM_PLAIN, "")
    return session


def plain_secret(session, value: bytes):
    return [session.path, b"", value, "text/plain"]


def item_properties(label=None, attributes=None):
    props = {}
    if label is not None:
        props[PROP_ITEM_LABEL] = Variant("s", label)
    if attributes is not None:
        props[PROP_ITEM_ATTRIBUTES] = Variant("a{ss}", attributes)
    return props


# --- Collection lifecycle ---

class TestCollectionManager:
    """Tests for the default collection and its alias."""

    @pytest.mark.asyncio
    async def test_default_collection_exported_once(self, collections, bus):
        """Test that the collection and alias are exported on first use."""
        first = await collections.ensure_default_collection()
        second = await collections.ensure_default_collection()

        assert first is second
        assert bus.objects[DEFAULT_COLLECTION_PATH] is first
        assert bus.objects[DEFAULT_ALIAS_PATH] is first
        assert bus.signals_named("CollectionCreated") == [
            (SERVICE_PATH, "org.freedesktop.Secret.Service", "CollectionCreated",
             "o", [DEFAULT_COLLECTION_PATH]),
        ]
        assert collections.get_collection(DEFAULT_ALIAS_PATH) is first
        assert collections.get_collection(DEFAULT_COLLECTION_PATH) is first
        assert collections.get_collection("/elsewhere") is None
        assert collections.collection_paths() == [DEFAULT_COLLECTION_PATH]

    @pytest.mark.asyncio
    async def test_alias_export_failure_rolls_back(self, collections, bus):
        """Test that a failed alias export withdraws the collection too."""
        bus.fail_exports.add(DEFAULT_ALIAS_PATH)
        with pytest.raises(Exception):
            await collections.ensure_default_collection()
        assert DEFAULT_COLLECTION_PATH not in bus.objects
        assert collections.collection_paths() == []

        bus.fail_exports.clear()
        coll = await collections.ensure_default_collection()
        assert bus.objects[DEFAULT_COLLECTION_PATH] is coll

    @pytest.mark.asyncio
    async def test_close(self, collections, bus):
        """Test that close unexports both paths and signals deletion."""
        await collections.ensure_default_collection()
        await collections.close()
        assert DEFAULT_COLLECTION_PATH not in bus.objects
        assert DEFAULT_ALIAS_PATH not in bus.objects
        assert "CollectionDeleted" in bus.signal_names()


# --- CreateItem ---

class TestCreateItem:
    """Tests for Collection.CreateItem."""

    @pytest.mark.asyncio
    async def test_create_new_login(self, collections, vault, plain, bus):
        """Test that a new login item is created and signalled."""
        coll = await collections.ensure_default_collection()
        attrs = {"service": "github.com", "username": "carol"}

        path, prompt = await coll.create_item(
            item_properties("GitHub", attrs), plain_secret(plain, b"gh-token"), False,
        )

        assert prompt == "/"
        created_id = "00000000-0000-0000-0000-000000000001"
        assert path == item_path(created_id)
        stored = vault.items[created_id]
        assert stored.name == "GitHub"
        assert stored.login.username == "carol"
        assert stored.login.password == "gh-token"
        assert [u.uri for u in stored.login.uris] == ["https://github.com"]
        assert bus.signals_named("ItemCreated")[0][4] == [path]
        assert bus.objects[path].item_id == created_id

    @pytest.mark.asyncio
    async def test_replace_updates_matching_item(self, collections, vault, plain, bus):
        """Test that replace updates the matching login instead of adding one."""
        coll = await collections.ensure_default_collection()
        attrs = {"service": "example.com", "username": "alice"}

        path, _ = await coll.create_item(
            item_properties("Example", attrs), plain_secret(plain, b"new-pw"), True,
        )

        assert path == item_path(ITEM_ID)
        assert vault.calls["create_item"] == 0
        assert vault.items[ITEM_ID].login.password == "new-pw"
        assert vault.items[OTHER_ID].login.password == "s3cret"
        assert bus.signals_named("ItemChanged")[0][4] == [path]
        assert bus.signals_named("ItemCreated") == []

    @pytest.mark.asyncio
    async def test_replace_without_match_creates(self, collections, vault, plain):
        """Test that replace falls back to creating when nothing matches."""
        coll = await collections.ensure_default_collection()
        attrs = {"service": "example.com", "username": "nobody"}

        await coll.create_item(
            item_properties("New", attrs), plain_secret(plain, b"pw"), True,
        )

        assert vault.calls["create_item"] == 1
        assert vault.items[ITEM_ID].login.password == "hunter2"

    @pytest.mark.asyncio
    async def test_schema_only_attributes_never_replace(self, collections, vault, plain):
        """Test that schema-only attributes always create a new item."""
        coll = await collections.ensure_default_collection()
        attrs = {"xdg:schema": "org.freedesktop.Secret.Generic"}

        path, _ = await coll.create_item(
            item_properties(None, attrs), plain_secret(plain, b"pw"), True,
        )

        assert vault.calls["create_item"] == 1
        assert vault.calls["update_item"] == 0
        created = vault.items["00000000-0000-0000-0000-000000000001"]
        assert created.name == "Unnamed"
        assert created.login.username is None
        assert created.login.uris == []
        assert path == item_path(created.id)

    @pytest.mark.asyncio
    async def test_unknown_session(self, collections, vault):
        """Test that a secret bound to an unknown session is rejected."""
        coll = await collections.ensure_default_collection()
        with pytest.raises(SessionNotFound):
            await coll.create_item(
                item_properties("x", {}),
                ["/org/freedesktop/secrets/session/99", b"", b"pw", "text/plain"],
                False,
            )
        assert vault.calls["create_item"] == 0

    @pytest.mark.asyncio
    async def test_dh_secret_decrypted(self, collections, vault, sessions):
        """Test that a DH-encrypted secret is stored as plaintext."""
        coll = await collections.ensure_default_collection()
        client = crypto.generate_key_pair(b"\x02")
        session, output = sessions.create_session(ALGORITHM_DH, client.public_key)
        key = crypto.derive_aes_key(crypto.compute_shared_secret(client, output.value))
        ciphertext, iv = crypto.encrypt("pässword".encode("utf-8"), key)

        await coll.create_item(
            item_properties("DH", {"service": "dh.example"}),
            [session.path, iv, ciphertext, "text/plain"],
            False,
        )

        created = vault.items["00000000-0000-0000-0000-000000000001"]
        assert created.login.password == "pässword"


# --- Collection methods and properties ---

class TestCollectionProperties:
    """Tests for Collection methods and properties."""

    @pytest.mark.asyncio
    async def test_delete_not_supported(self, collections):
        """Test that the default collection cannot be deleted."""
        coll = await collections.ensure_default_collection()
        with pytest.raises(NotSupported):
            await coll.delete()

    @pytest.mark.asyncio
    async def test_items_lists_logins_only(self, collections):
        """Test that Items contains the two logins but not the note."""
        coll = await collections.ensure_default_collection()
        paths = await coll.get_property("Items")
        assert sorted(paths) == sorted([item_path(ITEM_ID), item_path(OTHER_ID)])

    @pytest.mark.asyncio
    async def test_search_items(self, collections):
        """Test collection-scoped search."""
        coll = await collections.ensure_default_collection()
        assert await coll.search_items({"username": "bob"}) == [item_path(OTHER_ID)]

    @pytest.mark.asyncio
    async def test_label_change_signals(self, collections, bus):
        """Test that setting Label emits CollectionChanged."""
        coll = await collections.ensure_default_collection()
        await coll.set_property("Label", "Bitwarden")
        assert await coll.get_property("Label") == "Bitwarden"
        changed = bus.signals_named("CollectionChanged")
        assert changed == [
            (SERVICE_PATH, "org.freedesktop.Secret.Service", "CollectionChanged",
             "o", [DEFAULT_COLLECTION_PATH]),
        ]

    @pytest.mark.asyncio
    async def test_timestamps_from_last_sync(self, collections):
        """Test that Created and Modified report the last sync time."""
        coll = await collections.ensure_default_collection()
        assert await coll.get_property("Created") == 1705314600
        assert await coll.get_property("Modified") == 1705314600

    @pytest.mark.asyncio
    async def test_timestamps_zero_on_error(self, collections, vault):
        """Test that an unreachable vault reports zero timestamps."""
        coll = await collections.ensure_default_collection()
        vault.status_error = VaultError("down")
        assert await coll.get_property("Created") == 0
        assert await coll.get_property("Locked") is True

    @pytest.mark.asyncio
    async def test_timestamps_zero_without_sync(self, collections, vault):
        """Test that a vault that never synced reports zero."""
        coll = await collections.ensure_default_collection()
        vault.last_sync = None
        assert await coll.get_property("Modified") == 0

    @pytest.mark.asyncio
    async def test_get_all_properties(self, collections, vault):
        """Test GetAll, including the Items fallback on vault errors."""
        coll = await collections.ensure_default_collection()
        props = await coll.get_all_properties()
        assert props["Label"] == "Default"
        assert props["Locked"] is False
        assert len(props["Items"]) == 2

        vault.list_error = VaultError("down")
        props = await coll.get_all_properties()
        assert props["Items"] == []


# --- Items ---

class TestItemSecrets:
    """Tests for Item.GetSecret and Item.SetSecret."""

    @pytest.mark.asyncio
    async def test_get_secret_plain(self, items, plain):
        """Test that plain sessions return the raw password."""
        item, created = await items.get_or_create_item(make_login())
        assert created is True
        assert await item.get_secret(plain.path) == [
            plain.path, b"", b"hunter2", "text/plain",
        ]

    @pytest.mark.asyncio
    async def test_get_secret_dh(self, items, sessions):
        """Test that DH sessions return IV and ciphertext."""
        client = crypto.generate_key_pair(b"\x02")
        session, output = sessions.create_session(ALGORITHM_DH, client.public_key)
        key = crypto.derive_aes_key(crypto.compute_shared_secret(client, output.value))
        item, _ = await items.get_or_create_item(make_login())

        path, iv, value, content_type = await item.get_secret(session.path)

        assert path == session.path
        assert len(iv) == 16
        assert crypto.decrypt(value, key, iv) == b"hunter2"
        assert content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_get_secret_unknown_session(self, items):
        """Test that an unknown session is rejected."""
        item, _ = await items.get_or_create_item(make_login())
        with pytest.raises(SessionNotFound):
            await item.get_secret("/org/freedesktop/secrets/session/42")

    @pytest.mark.asyncio
    async def test_get_secret_without_password(self, items, plain):
        """Test that an item without a password reports a missing secret."""
        item, _ = await items.get_or_create_item(make_login(password=None))
        with pytest.raises(MissingSecret):
            await item.get_secret(plain.path)

    @pytest.mark.asyncio
    async def test_set_secret(self, items, vault, plain, bus):
        """Test that SetSecret writes the password and signals the change."""
        item, _ = await items.get_or_create_item(make_login())
        await item.set_secret(plain_secret(plain, b"changed"))

        assert vault.items[ITEM_ID].login.password == "changed"
        assert item.snapshot.password == "changed"
        assert bus.signals_named("ItemChanged")[0][4] == [item.path]

    @pytest.mark.asyncio
    async def test_set_secret_invalid_utf8(self, items, vault, plain):
        """Test that non-UTF-8 secrets are rejected before any write."""
        item, _ = await items.get_or_create_item(make_login())
        with pytest.raises(ValueError):
            await item.set_secret(plain_secret(plain, b"\xff\xfe"))
        assert vault.calls["update_item"] == 0


class TestItemProperties:
    """Tests for Item properties, deletion and refresh."""

    @pytest.mark.asyncio
    async def test_read_properties(self, items):
        """Test the read side of every property."""
        item, _ = await items.get_or_create_item(make_login())
        props = await item.get_all_properties()
        assert props["Label"] == "Example"
        assert props["Locked"] is False
        assert props["Created"] == 1704067200
        assert props["Modified"] == 1704844800
        assert props["Attributes"]["username"] == "alice"
        assert props["Attributes"]["domain"] == "example.com"
        assert await item.get_property("Label") == "Example"

    @pytest.mark.asyncio
    async def test_set_label(self, items, vault, bus):
        """Test that Label writes the item name."""
        item, _ = await items.get_or_create_item(make_login())
        await item.set_property("Label", "Renamed")
        assert vault.items[ITEM_ID].name == "Renamed"
        assert await item.get_property("Label") == "Renamed"
        assert "ItemChanged" in bus.signal_names()

    @pytest.mark.asyncio
    async def test_set_attributes(self, items, vault):
        """Test that Attributes writes username and custom fields."""
        item, _ = await items.get_or_create_item(make_login())
        await item.set_property("Attributes", {"username": "alice2", "env": "prod"})
        stored = vault.items[ITEM_ID]
        assert stored.login.username == "alice2"
        assert [(f.name, f.value) for f in stored.fields] == [("env", "prod")]

    @pytest.mark.asyncio
    async def test_failed_write_keeps_snapshot(self, items, vault):
        """Test that a failed vault update leaves the item unchanged."""
        item, _ = await items.get_or_create_item(make_login())
        del vault.items[ITEM_ID]
        with pytest.raises(APIError):
            await item.set_property("Label", "Renamed")
        assert item.snapshot.name == "Example"

    @pytest.mark.asyncio
    async def test_delete(self, items, vault, bus):
        """Test that Delete removes the vault item and the bus object."""
        item, _ = await items.get_or_create_item(make_login())
        assert await item.delete() == "/"
        assert ITEM_ID not in vault.items
        assert item.path not in bus.objects
        assert await items.get_item(item.path) is None
        assert bus.signals_named("ItemDeleted")[0][4] == [item.path]

    @pytest.mark.asyncio
    async def test_refresh_replaces_snapshot(self, items, bus):
        """Test that a second export of the same id refreshes the snapshot."""
        item, _ = await items.get_or_create_item(make_login())
        again, created = await items.get_or_create_item(make_login(name="Fresh"))
        assert again is item
        assert created is False
        assert item.snapshot.name == "Fresh"
        assert bus.export_calls.count(item.path) == 1

    @pytest.mark.asyncio
    async def test_resolve_fetches_unexported(self, items, vault):
        """Test that resolve_item exports an item fetched from the vault."""
        item = await items.resolve_item(item_path(OTHER_ID))
        assert item.item_id == OTHER_ID
        assert vault.calls["get_item"] == 1
        assert await items.resolve_item(item_path(OTHER_ID)) is item
        assert vault.calls["get_item"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        "/org/freedesktop/secrets/session/1",
        DEFAULT_COLLECTION_PATH,
        DEFAULT_COLLECTION_PATH + "/a/b",
    ])
    async def test_resolve_rejects_non_item_paths(self, items, path):
        """Test that non-item paths are unknown objects."""
        with pytest.raises(ObjectNotFound):
            await items.resolve_item(path)
