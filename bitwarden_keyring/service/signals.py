"""
Signals — best-effort lifecycle notifications.

Item signals fire on the owning collection, collection signals on the
service root. A failed emission is logged and never fails the call that
triggered it.
"""
import logging

from dbus_fast import Variant

from .types import COLLECTION_INTERFACE, PROMPT_INTERFACE, SERVICE_INTERFACE, SERVICE_PATH

logger = logging.getLogger("bwkeyring.service")


def emit(bus, path: str, interface: str, member: str, signature: str, body: list) -> None:
    try:
        bus.emit(path, interface, member, signature, body)
    except Exception as err:
        logger.warning("Failed to emit %s.%s on %s: %s", interface, member, path, err)


def item_created(bus, collection_path: str, item_path: str) -> None:
    emit(bus, collection_path, COLLECTION_INTERFACE, "ItemCreated", "o", [item_path])


def item_deleted(bus, collection_path: str, item_path: str) -> None:
    emit(bus, collection_path, COLLECTION_INTERFACE, "ItemDeleted", "o", [item_path])


def item_changed(bus, collection_path: str, item_path: str) -> None:
    emit(bus, collection_path, COLLECTION_INTERFACE, "ItemChanged", "o", [item_path])


def collection_created(bus, collection_path: str) -> None:
    emit(bus, SERVICE_PATH, SERVICE_INTERFACE, "CollectionCreated", "o", [collection_path])


def collection_deleted(bus, collection_path: str) -> None:
    emit(bus, SERVICE_PATH, SERVICE_INTERFACE, "CollectionDeleted", "o", [collection_path])


def collection_changed(bus, collection_path: str) -> None:
    emit(bus, SERVICE_PATH, SERVICE_INTERFACE, "CollectionChanged", "o", [collection_path])


def prompt_completed(bus, prompt_path: str, dismissed: bool, result: list[str]) -> None:
    """``Completed(b dismissed, v result)``; result is always an ``ao``."""
    emit(
        bus, prompt_path, PROMPT_INTERFACE, "Completed", "bv",
        [dismissed, Variant("ao", list(result))],
    )
