"""
Secret Service — the ``org.freedesktop.Secret.Service`` root object.

Owns the session, item, collection and prompt managers and implements the
top-level protocol calls on ``/org/freedesktop/secrets``.
"""
import logging
from typing import Any

from dbus_fast import Variant

from ..exceptions import UserCancelled, VaultLocked
from .bus import DBusObject, Method, Property
from .collection import CollectionManager
from .errors import IsLocked
from .item import ItemManager
from .prompt import PromptManager
from .search import search_and_filter_items
from .session import SessionManager
from .types import (
    DEFAULT_COLLECTION,
    NO_PROMPT,
    SECRET_SIGNATURE,
    SERVICE_INTERFACE,
    SERVICE_PATH,
)

logger = logging.getLogger("bwkeyring.service")


class SecretService(DBusObject):
    """Secret Service backed by a vault client.

    Args:
        bus: Object bus everything is exported on (an :class:`ObjectBus`).
        vault: Vault client (a :class:`VaultClient` or compatible).
    """

    interface = SERVICE_INTERFACE
    methods = {
        "OpenSession": Method(
            "open_session",
            in_args=(("algorithm", "s"), ("input", "v")),
            out_args=(("output", "v"), ("result", "o")),
        ),
        "CreateCollection": Method(
            "create_collection",
            in_args=(("properties", "a{sv}"), ("alias", "s")),
            out_args=(("collection", "o"), ("prompt", "o")),
        ),
        "SearchItems": Method(
            "search_items",
            in_args=(("attributes", "a{ss}"),),
            out_args=(("unlocked", "ao"), ("locked", "ao")),
        ),
        "Unlock": Method(
            "unlock",
            in_args=(("objects", "ao"),),
            out_args=(("unlocked", "ao"), ("prompt", "o")),
        ),
        "Lock": Method(
            "lock",
            in_args=(("objects", "ao"),),
            out_args=(("locked", "ao"), ("prompt", "o")),
        ),
        "GetSecrets": Method(
            "get_secrets",
            in_args=(("items", "ao"), ("session", "o")),
            out_args=(("secrets", "a{o" + SECRET_SIGNATURE + "}"),),
        ),
        "ReadAlias": Method(
            "read_alias",
            in_args=(("name", "s"),),
            out_args=(("collection", "o"),),
        ),
        "SetAlias": Method(
            "set_alias",
            in_args=(("name", "s"), ("collection", "o")),
        ),
    }
    properties = {
        "Collections": Property("ao"),
    }
    signals = {
        "CollectionCreated": (("collection", "o"),),
        "CollectionDeleted": (("collection", "o"),),
        "CollectionChanged": (("collection", "o"),),
    }

    def __init__(self, bus, vault):
        self.path = SERVICE_PATH
        self.bus = bus
        self.vault = vault
        self.sessions = SessionManager(bus)
        self.items = ItemManager(bus, vault, self.sessions)
        self.collections = CollectionManager(bus, vault, self.items)
        self.prompts = PromptManager(bus, vault)

    async def start(self) -> None:
        """Export the service root and the default collection."""
        self.bus.export(SERVICE_PATH, self)
        try:
            await self.collections.ensure_default_collection()
        except Exception:
            self.bus.unexport(SERVICE_PATH)
            raise
        logger.info("Secret service exported at %s", SERVICE_PATH)

    async def stop(self) -> None:
        """Dismiss prompts, close sessions and withdraw every object."""
        await self.prompts.close()
        self.sessions.close_all()
        for item in self.items.items():
            await self.items.remove_item(item.path)
        await self.collections.close()
        self.bus.unexport(SERVICE_PATH)
        logger.info("Secret service stopped")

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def open_session(self, algorithm: str, peer_input: Variant) -> tuple[Variant, str]:
        value = peer_input.value
        if isinstance(value, str):
            value = value.encode("utf-8")
        session, output = self.sessions.create_session(algorithm, value)
        return output, session.path

    async def create_collection(self, properties: dict[str, Any], alias: str) -> tuple[str, str]:
        # only the default collection exists; name and alias are ignored
        coll = await self.collections.ensure_default_collection()
        return coll.path, NO_PROMPT

    async def search_items(self, attributes: dict[str, str]) -> tuple[list[str], list[str]]:
        """Return (unlocked, locked) item paths.

        While the vault is locked nothing can be enumerated, so the default
        collection is reported as locked and the caller is expected to
        call ``Unlock`` on it.
        """
        coll = await self.collections.ensure_default_collection()
        if await self.vault.is_locked():
            return [], [coll.path]
        paths = await search_and_filter_items(self.vault, self.items, coll.path, attributes)
        return paths, []

    async def unlock(self, objects: list[str]) -> tuple[list[str], str]:
        if not await self.vault.is_locked():
            return list(objects), NO_PROMPT
        prompt = self.prompts.create_unlock_prompt(objects)
        return [], prompt.path

    async def lock(self, objects: list[str]) -> tuple[list[str], str]:
        await self.vault.lock()
        return list(objects), NO_PROMPT

    async def get_secrets(self, items: list[str], session_path: str) -> dict[str, list]:
        """Return secrets for every resolvable item; the rest are skipped."""
        self.sessions.require_session(session_path)
        try:
            await self.vault.ensure_unlocked()
        except (UserCancelled, VaultLocked) as err:
            raise IsLocked() from err
        secrets: dict[str, list] = {}
        for path in items:
            try:
                item = await self.items.resolve_item(path)
                secrets[path] = await item.get_secret(session_path)
            except Exception as err:
                logger.debug("Skipping secret for %s: %s", path, type(err).__name__)
        return secrets

    async def read_alias(self, name: str) -> str:
        if name != DEFAULT_COLLECTION:
            return NO_PROMPT
        await self.collections.ensure_default_collection()
        return self.collections.default_alias()

    async def set_alias(self, name: str, collection: str) -> None:
        logger.debug("Ignoring SetAlias(%s)", name)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    async def get_property(self, name: str) -> Any:
        if name == "Collections":
            return self.collections.collection_paths()
        return await super().get_property(name)
