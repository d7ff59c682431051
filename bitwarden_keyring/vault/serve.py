"""
Bitwarden Serve — lifecycle of the ``bw serve`` child process.

The REST API is only reachable while ``bw serve`` runs, so startup is
fail-closed: if the process does not answer ``/status`` within the start
timeout it is stopped and :class:`VaultError` is raised.
"""
import asyncio
import shutil
import logging
from typing import Optional, Sequence

from ..exceptions import VaultError
from .client import VaultClient

logger = logging.getLogger("bwkeyring.vault")

READY_POLL_INTERVAL = 0.1
STOP_GRACE_PERIOD = 3.0


class BitwardenServe:
    """Start, health-check and stop ``bw serve``.

    Args:
        client: Client pointed at the port ``bw serve`` will listen on;
            used to poll readiness.
        port: Listening port.
        host: Listening address.
        start_timeout: Seconds to wait for the API to answer.
        command: Override for the program and leading arguments
            (defaults to ``["bw", "serve"]``).
    """

    def __init__(
        self,
        client: VaultClient,
        port: int,
        host: str = "127.0.0.1",
        start_timeout: float = 10.0,
        command: Optional[Sequence[str]] = None,
    ):
        self._client = client
        self._port = port
        self._host = host
        self._start_timeout = start_timeout
        self._command = list(command or ("bw", "serve"))
        self._proc: Optional[asyncio.subprocess.Process] = None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def _argv(self) -> list[str]:
        return self._command + ["--hostname", self._host, "--port", str(self._port)]

    async def start(self) -> None:
        """Spawn the process and wait until the API answers.

        Raises:
            VaultError: If the program is missing, exits early, or does not
                become ready in time.
        """
        if self.running:
            return
        program = self._command[0]
        if shutil.which(program) is None:
            raise VaultError(
                f"Bitwarden CLI ({program}) not found in PATH. "
                "Please install it: https://bitwarden.com/help/cli/"
            )
        logger.info("Starting bw serve on port %d", self._port)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._argv(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as err:
            raise VaultError(f"failed to start bw serve: {err}") from err
        try:
            await asyncio.wait_for(self._wait_ready(), self._start_timeout)
        except asyncio.TimeoutError:
            await self.stop()
            raise VaultError(
                f"bw serve not ready after {self._start_timeout:g}s"
            ) from None
        except VaultError:
            await self.stop()
            raise
        logger.info("bw serve ready (pid %d)", self._proc.pid)

    async def _wait_ready(self) -> None:
        while True:
            if self._proc is None or self._proc.returncode is not None:
                code = self._proc.returncode if self._proc else None
                raise VaultError(f"bw serve exited with status {code}")
            try:
                await self._client.status()
                return
            except VaultError:
                await asyncio.sleep(READY_POLL_INTERVAL)

    def check_healthy(self) -> None:
        """Raise :class:`VaultError` unless the process is still running."""
        if self._proc is None:
            raise VaultError("bw serve not started")
        if self._proc.returncode is not None:
            raise VaultError(f"bw serve process exited with status {self._proc.returncode}")

    async def stop(self) -> None:
        """Terminate the process: SIGTERM, then SIGKILL after a grace period."""
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), STOP_GRACE_PERIOD)
            return
        except asyncio.TimeoutError:
            logger.warning("bw serve did not exit after SIGTERM, killing it")
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
