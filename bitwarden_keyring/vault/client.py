"""
Vault Client — async access to the Bitwarden CLI REST API (``bw serve``).

Every read or write goes through :meth:`VaultClient.ensure_unlocked` first,
which prompts for the master password when the vault is locked and
auto-unlock is enabled.

Security Note:
    Never log passwords, session keys or response bodies. HTTP errors are
    raised as :class:`APIError`, whose message carries only status and path.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

import orjson
from aiohttp import ClientError, ClientSession, ClientTimeout

from ..exceptions import APIError, VaultError, VaultLocked
from .prompter import PasswordPrompter
from .types import CreateItemRequest, Item, VaultStatus

logger = logging.getLogger("bwkeyring.vault")

_MAX_ERROR_BODY = 4096


class VaultClient:
    """Bitwarden CLI REST client.

    Args:
        port: Port ``bw serve`` listens on.
        host: Host ``bw serve`` listens on.
        prompter: Source of the master password for auto-unlock.
        auto_unlock: Prompt for the password when the vault is locked;
            when disabled, locked operations raise :class:`VaultLocked`.
        debug: Log redacted HTTP error bodies.
        timeout: Per-request timeout in seconds.
        health_check: Raises :class:`VaultError` when ``bw serve`` is gone;
            called before prompting for the master password.
    """

    def __init__(
        self,
        port: int,
        host: str = "127.0.0.1",
        prompter: Optional[PasswordPrompter] = None,
        auto_unlock: bool = True,
        debug: bool = False,
        timeout: float = 30.0,
        base_url: Optional[str] = None,
        health_check: Optional[Callable[[], None]] = None,
    ):
        self._base_url = (base_url or f"http://{host}:{port}").rstrip("/")
        self._prompter = prompter or PasswordPrompter()
        self._timeout = ClientTimeout(total=timeout)
        self._http: Optional[ClientSession] = None
        self._unlock_lock = asyncio.Lock()
        self.auto_unlock = auto_unlock
        self.debug = debug
        self.session_key: Optional[str] = None
        self.health_check = health_check

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _session(self) -> ClientSession:
        if self._http is None or self._http.closed:
            self._http = ClientSession(timeout=self._timeout)
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def __aenter__(self) -> "VaultClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        """Perform one API call and return the decoded JSON body.

        Raises:
            APIError: On HTTP status >= 400.
            VaultError: On transport or decoding failures.
        """
        body = orjson.dumps(payload) if payload is not None else None
        headers = {"Content-Type": "application/json"}
        try:
            async with self._session().request(
                method, self._base_url + path,
                data=body, params=params, headers=headers,
            ) as response:
                raw = await response.read()
                if response.status >= 400:
                    text = raw[:_MAX_ERROR_BODY].decode("utf-8", errors="replace")
                    err = APIError(response.status, path, text)
                    if self.debug:
                        logger.debug(
                            "HTTP error %d on %s: %s",
                            response.status, path, err.debug_details(),
                        )
                    raise err
        except ClientError as err:
            raise VaultError(f"request to {path} failed: {type(err).__name__}") from err
        if not raw:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise VaultError(f"failed to decode response from {path}") from err

    @staticmethod
    def _data(result: Any) -> Any:
        if not isinstance(result, dict):
            raise VaultError("unexpected response shape")
        return result.get("data")

    def _items(self, result: Any) -> list[Item]:
        data = self._data(result) or {}
        return [Item.model_validate(entry) for entry in data.get("data") or []]

    # ------------------------------------------------------------------
    # Lock state
    # ------------------------------------------------------------------

    async def status(self) -> VaultStatus:
        result = await self._request("GET", "/status")
        data = self._data(result) or {}
        return VaultStatus.model_validate(data.get("template") or {})

    async def is_locked(self) -> bool:
        return (await self.status()).locked

    async def is_locked_safe(self) -> bool:
        """Lock state for property getters: any error reads as locked."""
        try:
            return await self.is_locked()
        except VaultError as err:
            logger.debug("Lock state unavailable: %s", err)
            return True

    async def unlock(self, password: str) -> str:
        """Unlock the vault and return the session key."""
        result = await self._request("POST", "/unlock", {"password": password})
        if not isinstance(result, dict) or not result.get("success"):
            raise VaultError("unlock failed")
        data = self._data(result) or {}
        self.session_key = data.get("raw")
        logger.info("Vault unlocked")
        return self.session_key or ""

    async def lock(self) -> None:
        await self._request("POST", "/lock")
        self.session_key = None
        logger.info("Vault locked")

    async def ensure_unlocked(self) -> None:
        """Make sure the vault is unlocked, prompting once if needed.

        Concurrent callers share a single prompt: the lock state is checked
        again after acquiring the unlock lock.

        Raises:
            VaultLocked: If locked and auto-unlock is disabled.
            UserCancelled: If the user dismissed the password prompt.
            VaultError: If the health check fails or the unlock is rejected.
        """
        if not await self.is_locked():
            return
        if not self.auto_unlock:
            raise VaultLocked()
        async with self._unlock_lock:
            if not await self.is_locked():
                return
            if self.health_check is not None:
                self.health_check()
            password = await self._prompter.prompt_for_password()
            try:
                await self.unlock(password)
            except VaultError as err:
                raise VaultError("failed to unlock vault") from err

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def sync(self) -> None:
        await self._request("POST", "/sync")

    async def list_items(self) -> list[Item]:
        await self.ensure_unlocked()
        return self._items(await self._request("GET", "/list/object/items"))

    async def search_items(self, url: str) -> list[Item]:
        await self.ensure_unlocked()
        result = await self._request(
            "GET", "/list/object/items", params={"url": url},
        )
        return self._items(result)

    async def get_item(self, item_id: str) -> Item:
        await self.ensure_unlocked()
        result = await self._request("GET", f"/object/item/{item_id}")
        return Item.model_validate(self._data(result))

    async def create_item(self, request: CreateItemRequest) -> Item:
        await self.ensure_unlocked()
        result = await self._request("POST", "/object/item", request.to_wire())
        item = Item.model_validate(self._data(result))
        if not item.id:
            raise VaultError("created item has no ID")
        return item

    async def update_item(self, item_id: str, request: CreateItemRequest) -> Item:
        await self.ensure_unlocked()
        result = await self._request(
            "PUT", f"/object/item/{item_id}", request.to_wire(),
        )
        return Item.model_validate(self._data(result))

    async def delete_item(self, item_id: str) -> None:
        await self.ensure_unlocked()
        await self._request("DELETE", f"/object/item/{item_id}")
