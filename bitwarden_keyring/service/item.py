"""
Items — vault logins exposed as ``org.freedesktop.Secret.Item`` objects.

An :class:`Item` wraps a snapshot of one vault item. Snapshots are never
expired: every later search or fetch of the same id replaces the snapshot
in place, under the item's lock.
"""
import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Optional

from .. import mapping
from ..exceptions import InvalidInput, MissingSecret, ObjectNotFound
from ..vault.types import Item as VaultItem
from . import signals
from .bus import DBusObject, Method, Property
from .registry import ObjectRegistry
from .session import SessionManager
from .types import (
    COLLECTION_PREFIX,
    DEFAULT_COLLECTION_PATH,
    ITEM_INTERFACE,
    NO_PROMPT,
    SECRET_SIGNATURE,
    Secret,
    item_id_from_path,
    item_path,
)

logger = logging.getLogger("bwkeyring.service")


def decrypt_password(sessions: SessionManager, raw_secret) -> str:
    """Decrypt a wire secret through its session and decode it as UTF-8.

    Raises:
        SessionNotFound: If the secret names an unknown session.
        InvalidInput: If decryption or decoding fails.
    """
    secret = Secret.from_dbus(raw_secret)
    session = sessions.require_session(secret.session)
    plaintext = session.decrypt_secret(secret.value, secret.parameters)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidInput("secret is not valid UTF-8") from None


def _unix(moment: Optional[datetime]) -> int:
    if moment is None:
        return 0
    return max(int(moment.timestamp()), 0)


class Item(DBusObject):
    """A vault item on the bus."""

    interface = ITEM_INTERFACE
    methods = {
        "Delete": Method("delete", out_args=(("prompt", "o"),)),
        "GetSecret": Method(
            "get_secret",
            in_args=(("session", "o"),),
            out_args=(("secret", SECRET_SIGNATURE),),
        ),
        "SetSecret": Method("set_secret", in_args=(("secret", SECRET_SIGNATURE),)),
    }
    properties = {
        "Locked": Property("b"),
        "Attributes": Property("a{ss}", writable=True),
        "Label": Property("s", writable=True),
        "Created": Property("t"),
        "Modified": Property("t"),
    }

    def __init__(
        self,
        path: str,
        snapshot: VaultItem,
        collection_path: str,
        manager: "ItemManager",
    ):
        self.path = path
        self.collection_path = collection_path
        self._snapshot = snapshot
        self._lock = asyncio.Lock()
        self._manager = weakref.ref(manager)

    @property
    def item_id(self) -> str:
        return self._snapshot.id

    @property
    def snapshot(self) -> VaultItem:
        return self._snapshot

    def _owner(self) -> "ItemManager":
        manager = self._manager()
        if manager is None:
            raise ObjectNotFound(self.path)
        return manager

    async def update_snapshot(self, snapshot: VaultItem) -> None:
        async with self._lock:
            self._snapshot = snapshot

    async def _save(self, changed: VaultItem) -> None:
        """Write ``changed`` to the vault and adopt the stored result.

        Caller holds the item lock.
        """
        manager = self._owner()
        updated = await manager.vault.update_item(changed.id, changed.to_update_request())
        self._snapshot = updated
        signals.item_changed(manager.bus, self.collection_path, self.path)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def delete(self) -> str:
        manager = self._owner()
        await manager.vault.delete_item(self.item_id)
        await manager.remove_item(self.path)
        signals.item_deleted(manager.bus, self.collection_path, self.path)
        logger.info("Deleted item %s", self.path)
        return NO_PROMPT

    async def get_secret(self, session_path: str) -> list:
        manager = self._owner()
        async with self._lock:
            password = self._snapshot.password
        if password is None:
            raise MissingSecret("item has no password")
        session = manager.sessions.require_session(session_path)
        value, parameters = session.encrypt_secret(password.encode("utf-8"))
        return Secret(session_path, parameters, value).to_dbus()

    async def set_secret(self, raw_secret) -> None:
        manager = self._owner()
        password = decrypt_password(manager.sessions, raw_secret)
        async with self._lock:
            if self._snapshot.login is None:
                raise MissingSecret("item has no login credentials")
            changed = self._snapshot.model_copy(deep=True)
            changed.login.password = password
            await self._save(changed)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    async def get_property(self, name: str) -> Any:
        if name == "Locked":
            return await self._owner().vault.is_locked_safe()
        async with self._lock:
            if name == "Attributes":
                return mapping.item_to_attributes(self._snapshot)
            if name == "Label":
                return self._snapshot.name
            if name == "Created":
                return _unix(self._snapshot.creation_date)
            if name == "Modified":
                return _unix(self._snapshot.revision_date)
        return await super().get_property(name)

    async def set_property(self, name: str, value: Any) -> None:
        async with self._lock:
            changed = self._snapshot.model_copy(deep=True)
            if name == "Label":
                changed.name = value
            elif name == "Attributes":
                mapping.update_item_from_attributes(changed, dict(value))
            else:
                return await super().set_property(name, value)
            await self._save(changed)

    async def get_all_properties(self) -> dict[str, Any]:
        locked = await self._owner().vault.is_locked_safe()
        async with self._lock:
            return {
                "Locked": locked,
                "Attributes": mapping.item_to_attributes(self._snapshot),
                "Label": self._snapshot.name,
                "Created": _unix(self._snapshot.creation_date),
                "Modified": _unix(self._snapshot.revision_date),
            }


class ItemManager:
    """Owns every exported :class:`Item`.

    Args:
        bus: Object bus items are exported on.
        vault: Vault client.
        sessions: Session manager used to encrypt and decrypt secrets.
    """

    def __init__(self, bus, vault, sessions: SessionManager):
        self.bus = bus
        self.vault = vault
        self.sessions = sessions
        self._items: ObjectRegistry[str, Item] = ObjectRegistry("item")

    def __len__(self) -> int:
        return len(self._items)

    async def get_or_create_item(
        self,
        vault_item: VaultItem,
        collection_path: str = DEFAULT_COLLECTION_PATH,
    ) -> tuple[Item, bool]:
        """Return the bus object for ``vault_item``, exporting it if needed.

        An already exported item gets ``vault_item`` as its new snapshot.

        Returns:
            Tuple of (item, created).
        """
        path = item_path(vault_item.id)

        async def create() -> Item:
            item = Item(path, vault_item, collection_path, self)
            self.bus.export(path, item)
            return item

        async def refresh(item: Item) -> None:
            await item.update_snapshot(vault_item)

        return await self._items.get_or_create(path, create, refresh)

    async def get_item(self, path: str) -> Optional[Item]:
        return await self._items.get(path)

    async def resolve_item(self, path: str) -> Item:
        """Return the item at ``path``, fetching it from the vault if needed.

        Raises:
            ObjectNotFound: If ``path`` is not an item path.
        """
        item = await self._items.get(path)
        if item is not None:
            return item
        # /org/freedesktop/secrets/collections/<collection>/<item>
        if not path.startswith(COLLECTION_PREFIX) or path.count("/") != 6:
            raise ObjectNotFound(path)
        vault_item = await self.vault.get_item(item_id_from_path(path))
        item, _ = await self.get_or_create_item(vault_item)
        return item

    async def remove_item(self, path: str) -> None:
        """Forget ``path``, waiting for any in-flight export of it first."""
        item = await self._items.remove(path)
        if item is not None:
            self.bus.unexport(path)

    def items(self) -> list[Item]:
        return self._items.values()
