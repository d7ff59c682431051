"""
Collections — the single ``default`` collection backed by the whole vault.

The collection is created lazily the first time it is needed, exported at
``/org/freedesktop/secrets/collections/default`` and at the
``/org/freedesktop/secrets/aliases/default`` alias, and withdrawn when the
service stops.
"""
import asyncio
import logging
from typing import Any, Optional

from .. import mapping
from ..exceptions import VaultError
from ..vault.types import CreateItemRequest, ItemType, Login, URI
from . import signals
from .bus import DBusObject, Method, Property
from .errors import NotSupported
from .item import ItemManager, decrypt_password
from .registry import ObjectRegistry
from .search import get_login_item_paths, search_and_filter_items
from .types import (
    COLLECTION_INTERFACE,
    COLLECTION_PREFIX,
    DEFAULT_ALIAS_PATH,
    DEFAULT_COLLECTION,
    DEFAULT_COLLECTION_PATH,
    NO_PROMPT,
    PROP_ITEM_ATTRIBUTES,
    PROP_ITEM_LABEL,
    SECRET_SIGNATURE,
)

logger = logging.getLogger("bwkeyring.service")

DEFAULT_LABEL = "Default"
UNNAMED_ITEM = "Unnamed"


class Collection(DBusObject):
    """The vault as a Secret Service collection."""

    interface = COLLECTION_INTERFACE
    methods = {
        "Delete": Method("delete", out_args=(("prompt", "o"),)),
        "SearchItems": Method(
            "search_items",
            in_args=(("attributes", "a{ss}"),),
            out_args=(("results", "ao"),),
        ),
        "CreateItem": Method(
            "create_item",
            in_args=(
                ("properties", "a{sv}"),
                ("secret", SECRET_SIGNATURE),
                ("replace", "b"),
            ),
            out_args=(("item", "o"), ("prompt", "o")),
        ),
    }
    properties = {
        "Items": Property("ao"),
        "Label": Property("s", writable=True),
        "Locked": Property("b"),
        "Created": Property("t"),
        "Modified": Property("t"),
    }
    signals = {
        "ItemCreated": (("item", "o"),),
        "ItemDeleted": (("item", "o"),),
        "ItemChanged": (("item", "o"),),
    }

    def __init__(self, path: str, name: str, label: str, vault, items: ItemManager, bus):
        self.path = path
        self.name = name
        self._label = label
        self._vault = vault
        self._items = items
        self._bus = bus
        self._lock = asyncio.Lock()

    @property
    def label(self) -> str:
        return self._label

    async def _last_sync(self) -> int:
        try:
            status = await self._vault.status()
        except VaultError as err:
            logger.debug("Vault status unavailable: %s", type(err).__name__)
            return 0
        return status.last_sync_timestamp()

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def delete(self) -> str:
        raise NotSupported("cannot delete default collection")

    async def search_items(self, attributes: dict[str, str]) -> list[str]:
        return await search_and_filter_items(self._vault, self._items, self.path, attributes)

    async def create_item(
        self,
        properties: dict[str, Any],
        raw_secret,
        replace: bool,
    ) -> tuple[str, str]:
        """Store a secret, updating a matching item when ``replace`` is set.

        Replacement only happens when the attributes carry at least one
        identity attribute; otherwise a new login item is always created.
        """
        password = decrypt_password(self._items.sessions, raw_secret)

        label = UNNAMED_ITEM
        label_variant = properties.get(PROP_ITEM_LABEL)
        if label_variant is not None and label_variant.signature == "s":
            label = label_variant.value
        attributes: dict[str, str] = {}
        attrs_variant = properties.get(PROP_ITEM_ATTRIBUTES)
        if attrs_variant is not None and attrs_variant.signature == "a{ss}":
            attributes = dict(attrs_variant.value)

        uri = mapping.build_uri_from_attributes(attributes)

        if replace and mapping.has_meaningful_attributes(attributes):
            if uri:
                candidates = await self._vault.search_items(uri)
            else:
                candidates = await self._vault.list_items()
            for candidate in candidates:
                if not mapping.matches_attributes(candidate, attributes):
                    continue
                mapping.update_item_from_attributes(candidate, attributes)
                candidate.login.password = password
                candidate.name = label
                updated = await self._vault.update_item(
                    candidate.id, candidate.to_update_request(),
                )
                item, _ = await self._items.get_or_create_item(updated, self.path)
                signals.item_changed(self._bus, self.path, item.path)
                logger.info("Replaced item %s", item.path)
                return item.path, NO_PROMPT

        username = mapping.get_username(attributes)
        request = CreateItemRequest(
            type=ItemType.LOGIN,
            name=label,
            login=Login(
                username=username or None,
                password=password,
                uris=[URI(uri=uri)] if uri else [],
            ),
        )
        created = await self._vault.create_item(request)
        item, _ = await self._items.get_or_create_item(created, self.path)
        signals.item_created(self._bus, self.path, item.path)
        logger.info("Created item %s", item.path)
        return item.path, NO_PROMPT

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    async def get_property(self, name: str) -> Any:
        if name in ("Created", "Modified"):
            return await self._last_sync()
        if name == "Items":
            return await get_login_item_paths(self._vault, self._items, self.path)
        if name == "Locked":
            return await self._vault.is_locked_safe()
        if name == "Label":
            async with self._lock:
                return self._label
        return await super().get_property(name)

    async def set_property(self, name: str, value: Any) -> None:
        if name != "Label":
            return await super().set_property(name, value)
        async with self._lock:
            self._label = value
        signals.collection_changed(self._bus, self.path)

    async def get_all_properties(self) -> dict[str, Any]:
        timestamp = await self._last_sync()
        locked = await self._vault.is_locked_safe()
        try:
            paths = await get_login_item_paths(self._vault, self._items, self.path)
        except VaultError as err:
            logger.debug("Item listing unavailable: %s", type(err).__name__)
            paths = []
        async with self._lock:
            label = self._label
        return {
            "Items": paths,
            "Label": label,
            "Locked": locked,
            "Created": timestamp,
            "Modified": timestamp,
        }


class CollectionManager:
    """Owns the collections and the ``default`` alias.

    Args:
        bus: Object bus collections are exported on.
        vault: Vault client.
        items: Item manager shared with the service.
    """

    def __init__(self, bus, vault, items: ItemManager):
        self._bus = bus
        self._vault = vault
        self._items = items
        self._collections: ObjectRegistry[str, Collection] = ObjectRegistry("collection")

    async def ensure_default_collection(self) -> Collection:
        """Return the default collection, creating and exporting it once."""

        async def create() -> Collection:
            coll = Collection(
                DEFAULT_COLLECTION_PATH, DEFAULT_COLLECTION, DEFAULT_LABEL,
                self._vault, self._items, self._bus,
            )
            self._bus.export(coll.path, coll)
            try:
                self._bus.export(DEFAULT_ALIAS_PATH, coll)
            except Exception:
                self._bus.unexport(coll.path)
                raise
            signals.collection_created(self._bus, coll.path)
            logger.info("Exported collection %s", coll.path)
            return coll

        coll, _ = await self._collections.get_or_create(DEFAULT_COLLECTION, create)
        return coll

    def get_collection(self, path: str) -> Optional[Collection]:
        if path == DEFAULT_ALIAS_PATH:
            return self._collections.peek(DEFAULT_COLLECTION)
        if not path.startswith(COLLECTION_PREFIX):
            return None
        return self._collections.peek(path[len(COLLECTION_PREFIX):])

    def collection_paths(self) -> list[str]:
        return [c.path for c in self._collections.values()]

    def default_alias(self) -> str:
        return DEFAULT_COLLECTION_PATH

    async def close(self) -> None:
        """Withdraw every collection from the bus."""
        for name in self._collections.keys():
            coll = await self._collections.remove(name)
            if coll is None:
                continue
            self._bus.unexport(DEFAULT_ALIAS_PATH)
            self._bus.unexport(coll.path)
            signals.collection_deleted(self._bus, coll.path)
