"""
Shared fixtures: an in-memory bus and an in-memory vault.

Neither a D-Bus daemon nor ``bw serve`` is needed to run the tests.
"""
import asyncio
import itertools
from collections import Counter
from typing import Optional

import pytest

from bitwarden_keyring.exceptions import APIError, ExportError, VaultError, VaultLocked
from bitwarden_keyring.vault.types import (
    CreateItemRequest,
    Item as VaultItem,
    VaultStatus,
)

ITEM_ID = "12345678-1234-1234-1234-123456789abc"
OTHER_ID = "87654321-4321-4321-4321-cba987654321"
NOTE_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


class FakeBus:
    """Records exports, unexports and signals like an ObjectBus would."""

    def __init__(self):
        self.objects = {}
        self.export_calls = []
        self.signals = []
        self.fail_exports = set()
        self.fail_emit = False

    def export(self, path, obj):
        self.export_calls.append(path)
        if path in self.fail_exports:
            raise ExportError(f"export refused: {path}")
        if path in self.objects:
            raise ExportError(f"object path already exported: {path}")
        self.objects[path] = obj

    def unexport(self, path):
        return self.objects.pop(path, None) is not None

    def emit(self, path, interface, member, signature="", body=None):
        if self.fail_emit:
            raise RuntimeError("bus gone")
        self.signals.append((path, interface, member, signature, list(body or [])))

    def signal_names(self):
        return [s[2] for s in self.signals]

    def signals_named(self, member):
        return [s for s in self.signals if s[2] == member]


class FakeVault:
    """In-memory stand-in for VaultClient."""

    def __init__(self, items=(), locked=False, auto_unlock=True):
        self.items = {i.id: i for i in items}
        self.locked = locked
        self.auto_unlock = auto_unlock
        self.unlock_delay = 0.0
        self.unlock_error: Optional[BaseException] = None
        self.list_error: Optional[BaseException] = None
        self.status_error: Optional[BaseException] = None
        self.last_sync = "2024-01-15T10:30:00.123456789Z"
        self.calls = Counter()
        self.unlock_started = asyncio.Event()
        self._ids = itertools.count(1)

    def _copy(self, item: VaultItem) -> VaultItem:
        return item.model_copy(deep=True)

    async def status(self) -> VaultStatus:
        self.calls["status"] += 1
        if self.status_error is not None:
            raise self.status_error
        return VaultStatus(
            last_sync=self.last_sync,
            status="locked" if self.locked else "unlocked",
        )

    async def is_locked(self) -> bool:
        self.calls["is_locked"] += 1
        return self.locked

    async def is_locked_safe(self) -> bool:
        try:
            return (await self.status()).locked
        except VaultError:
            return True

    async def ensure_unlocked(self) -> None:
        self.calls["ensure_unlocked"] += 1
        if not self.locked:
            return
        if not self.auto_unlock:
            raise VaultLocked()
        self.unlock_started.set()
        await asyncio.sleep(self.unlock_delay)
        if self.unlock_error is not None:
            raise self.unlock_error
        self.locked = False

    async def lock(self) -> None:
        self.calls["lock"] += 1
        self.locked = True

    async def list_items(self) -> list[VaultItem]:
        self.calls["list_items"] += 1
        await self.ensure_unlocked()
        if self.list_error is not None:
            raise self.list_error
        return [self._copy(i) for i in self.items.values()]

    async def search_items(self, url: str) -> list[VaultItem]:
        self.calls["search_items"] += 1
        await self.ensure_unlocked()
        if self.list_error is not None:
            raise self.list_error
        return [self._copy(i) for i in self.items.values()]

    async def get_item(self, item_id: str) -> VaultItem:
        self.calls["get_item"] += 1
        await self.ensure_unlocked()
        if item_id not in self.items:
            raise APIError(404, f"/object/item/{item_id}", '{"message":"not found"}')
        return self._copy(self.items[item_id])

    async def create_item(self, request: CreateItemRequest) -> VaultItem:
        self.calls["create_item"] += 1
        await self.ensure_unlocked()
        item_id = f"00000000-0000-0000-0000-{next(self._ids):012d}"
        item = VaultItem.model_validate({
            **request.to_wire(),
            "id": item_id,
            "creationDate": "2024-02-01T08:00:00Z",
            "revisionDate": "2024-02-01T08:00:00Z",
        })
        self.items[item_id] = item
        return self._copy(item)

    async def update_item(self, item_id: str, request: CreateItemRequest) -> VaultItem:
        self.calls["update_item"] += 1
        await self.ensure_unlocked()
        if item_id not in self.items:
            raise APIError(404, f"/object/item/{item_id}")
        previous = self.items[item_id]
        item = VaultItem.model_validate({
            **request.to_wire(),
            "id": item_id,
            "creationDate": previous.creation_date,
            "revisionDate": "2024-03-01T12:00:00Z",
        })
        self.items[item_id] = item
        return self._copy(item)

    async def delete_item(self, item_id: str) -> None:
        self.calls["delete_item"] += 1
        await self.ensure_unlocked()
        if self.items.pop(item_id, None) is None:
            raise APIError(404, f"/object/item/{item_id}")


def make_login(
    item_id: str = ITEM_ID,
    name: str = "Example",
    username: Optional[str] = "alice",
    password: Optional[str] = "hunter2",
    uri: Optional[str] = "https://example.com/login",
    fields=(),
) -> VaultItem:
    data = {
        "id": item_id,
        "type": 1,
        "name": name,
        "login": {
            "username": username,
            "password": password,
            "uris": [{"uri": uri, "match": None}] if uri else [],
        },
        "fields": [{"name": n, "value": v, "type": 0} for n, v in fields],
        "creationDate": "2024-01-01T00:00:00Z",
        "revisionDate": "2024-01-10T00:00:00.5Z",
    }
    return VaultItem.model_validate(data)


def make_note(item_id: str = NOTE_ID, name: str = "Note") -> VaultItem:
    return VaultItem.model_validate({
        "id": item_id, "type": 2, "name": name, "secureNote": {"type": 0},
    })


@pytest.fixture
def bus():
    """Create a fresh FakeBus."""
    return FakeBus()


@pytest.fixture
def vault():
    """Create an unlocked FakeVault holding two logins and one note."""
    return FakeVault(items=[
        make_login(),
        make_login(
            OTHER_ID, name="Mail", username="bob", password="s3cret",
            uri="https://mail.example.org",
        ),
        make_note(),
    ])
