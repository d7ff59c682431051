"""
Prompts — the asynchronous "unlock the vault" flow.

State machine::

    CREATED --Prompt()--> RUNNING --unlock ok--------> COMPLETED(unlocked)
       |                     |----unlock failed------> COMPLETED(dismissed)
       +------Dismiss()------+----------------------> COMPLETED(dismissed)

``Prompt()`` spawns the unlock attempt as a task and returns at once.
Every completion path goes through :meth:`Prompt._complete`, a single-fire
latch that emits ``Completed`` exactly once and withdraws the prompt. The
latch is set before the in-flight task is cancelled, so a dismissed
attempt can never complete a second time.
"""
import asyncio
import enum
import itertools
import logging
import weakref
from typing import Optional

from ..exceptions import UserCancelled
from . import signals
from .bus import DBusObject, Method
from .types import PROMPT_INTERFACE, PROMPT_PREFIX

logger = logging.getLogger("bwkeyring.service")


class PromptState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"


class Prompt(DBusObject):
    """One unlock prompt.

    Args:
        path: Object path of the prompt.
        objects: Objects the caller asked to unlock; returned on success.
        vault: Vault client whose ``ensure_unlocked`` drives the unlock.
        bus: Bus the ``Completed`` signal is emitted on.
        manager: Owning manager, notified on completion.
    """

    interface = PROMPT_INTERFACE
    methods = {
        "Prompt": Method("prompt", in_args=(("window-id", "s"),)),
        "Dismiss": Method("dismiss"),
    }
    signals = {
        "Completed": (("dismissed", "b"), ("result", "v")),
    }

    def __init__(self, path: str, objects: list[str], vault, bus, manager: "PromptManager"):
        self.path = path
        self.objects = list(objects)
        self.state = PromptState.CREATED
        self.dismissed: Optional[bool] = None
        self.completed = asyncio.Event()
        self._vault = vault
        self._bus = bus
        self._manager = weakref.ref(manager)
        self._task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def prompt(self, window_id: str = "") -> None:
        self.start()

    async def dismiss(self) -> None:
        self.cancel()

    def start(self) -> None:
        """Launch the unlock attempt; later calls are no-ops."""
        if self.state is not PromptState.CREATED:
            return
        self.state = PromptState.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run_unlock())

    def cancel(self) -> None:
        """Complete as dismissed and cancel any in-flight attempt."""
        if self.state is PromptState.COMPLETED:
            return
        task = self._task
        self._complete(True, [])
        if task is not None and not task.done():
            task.cancel()

    async def _run_unlock(self) -> None:
        try:
            await self._vault.ensure_unlocked()
        except asyncio.CancelledError:
            logger.debug("Prompt %s unlock cancelled", self.path)
            self._complete(True, [])
            raise
        except UserCancelled:
            logger.info("Prompt %s dismissed by user", self.path)
            self._complete(True, [])
        except Exception as err:
            logger.warning("Prompt %s unlock failed: %s", self.path, type(err).__name__)
            self._complete(True, [])
        else:
            self._complete(False, self.objects)

    def _complete(self, dismissed: bool, result: list[str]) -> None:
        if self.state is PromptState.COMPLETED:
            return
        self.state = PromptState.COMPLETED
        self.dismissed = dismissed
        signals.prompt_completed(self._bus, self.path, dismissed, result)
        self.completed.set()
        manager = self._manager()
        if manager is not None:
            manager.remove_prompt(self.path)


class PromptManager:
    """Creates prompts and withdraws them once they complete."""

    def __init__(self, bus, vault):
        self._bus = bus
        self._vault = vault
        self._prompts: dict[str, Prompt] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._prompts)

    def create_unlock_prompt(self, objects: list[str]) -> Prompt:
        path = f"{PROMPT_PREFIX}{next(self._counter)}"
        prompt = Prompt(path, objects, self._vault, self._bus, self)
        self._bus.export(path, prompt)
        self._prompts[path] = prompt
        logger.debug("Created unlock prompt %s", path)
        return prompt

    def get_prompt(self, path: str) -> Optional[Prompt]:
        return self._prompts.get(path)

    def remove_prompt(self, path: str) -> None:
        if self._prompts.pop(path, None) is not None:
            self._bus.unexport(path)

    async def close(self) -> None:
        """Dismiss every open prompt and wait for their attempts to stop."""
        prompts = list(self._prompts.values())
        for prompt in prompts:
            prompt.cancel()
        tasks = [p.task for p in prompts if p.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
