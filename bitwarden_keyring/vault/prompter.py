"""
Password Prompter — asks the user for the vault master password.

Tries graphical and console helpers in decreasing order of trust:
systemd-ask-password, zenity, kdialog, rofi and, only when explicitly
allowed, dmenu (which cannot mask input).

Security Note:
    The password is read from the helper's stdout and never logged.
"""
import asyncio
import shutil
import logging
from typing import Optional

from ..exceptions import NoPromptAvailable, UserCancelled, VaultError

logger = logging.getLogger("bwkeyring.vault")

PROMPT_TITLE = "Bitwarden Keyring"
PROMPT_TEXT = "Enter your Bitwarden Master Password:"

# 1 = cancelled for every helper, 5 = zenity timeout
_CANCEL_EXIT_CODES = frozenset({1, 5})


class PasswordPrompter:
    """Run the first available password dialog and return its input."""

    def __init__(
        self,
        allow_insecure: bool = False,
        systemd_ask_password_path: Optional[str] = None,
        timeout: int = 120,
    ):
        self._allow_insecure = allow_insecure
        self._systemd_path = systemd_ask_password_path
        self._timeout = timeout

    def _commands(self) -> list[tuple[str, list[str]]]:
        systemd = self._systemd_path or "systemd-ask-password"
        commands = [
            ("systemd-ask-password", [
                systemd, f"--timeout={self._timeout}",
                "--icon=dialog-password", "Bitwarden Master Password:",
            ]),
            ("zenity", [
                "zenity", "--password", f"--title={PROMPT_TITLE}",
                f"--text={PROMPT_TEXT}", f"--timeout={self._timeout}",
            ]),
            ("kdialog", [
                "kdialog", "--password", PROMPT_TEXT, "--title", PROMPT_TITLE,
            ]),
            ("rofi", [
                "rofi", "-dmenu", "-password", "-p", "Bitwarden Master Password",
                "-theme-str", 'entry { placeholder: ""; }',
            ]),
        ]
        if self._allow_insecure:
            commands.append(("dmenu", [
                "dmenu", "-p", "Bitwarden Master Password:",
                "-nf", "#000000", "-nb", "#000000",
            ]))
        return commands

    @staticmethod
    def _available(program: str) -> bool:
        return shutil.which(program) is not None

    async def _run(self, argv: list[str]) -> str:
        """Run one helper; cancelling the caller kills the dialog."""
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        if proc.returncode in _CANCEL_EXIT_CODES:
            raise UserCancelled()
        if proc.returncode != 0:
            raise VaultError(f"{argv[0]} exited with status {proc.returncode}")
        return stdout.decode("utf-8").strip()

    async def prompt_for_password(self) -> str:
        """Ask for the master password.

        Returns:
            The entered password.

        Raises:
            UserCancelled: If the user dismissed the dialog.
            NoPromptAvailable: If no usable helper is installed.
        """
        for name, argv in self._commands():
            if not self._available(argv[0]):
                continue
            try:
                return await self._run(argv)
            except UserCancelled:
                raise
            except (OSError, VaultError) as err:
                logger.debug("Password prompt %s failed: %s", name, err)
        if not self._allow_insecure and self._available("dmenu"):
            raise NoPromptAvailable(
                "no secure password prompt available (only dmenu found, "
                "enable insecure prompts to use it)"
            )
        raise NoPromptAvailable(
            "no password prompt method available (install zenity, kdialog, "
            "rofi, or systemd-ask-password)"
        )
