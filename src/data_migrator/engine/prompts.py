"""Interactive yes/no confirmation.

The job asks for confirmation before continuing past recoverable
problems (missing parents, CSV issues, rejected batches). A "no" is
surfaced as ``UserAbortError``, distinct from every other failure.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from rich.prompt import Confirm

from data_migrator.errors import UserAbortError


class Prompt(Protocol):
    """Yes/no question answered by an operator or a fixed policy."""

    def confirm(self, message: str) -> bool:
        ...


class ConsolePrompt:
    """Asks on the terminal with ``rich``."""

    def confirm(self, message: str) -> bool:
        return Confirm.ask(message, default=False)


class StaticPrompt:
    """Always gives the same answer (``--yes`` runs and tests).

    Asked messages are kept in ``messages``.
    """

    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.messages: list[str] = []

    def confirm(self, message: str) -> bool:
        self.messages.append(message)
        return self.answer


async def abort_with_prompt(
    prompt: Prompt,
    message: str,
    enabled: bool,
    before_abort: Callable[[], Awaitable[None]] | None = None,
) -> None:
    """Ask to continue; raise ``UserAbortError`` on "no".

    Args:
        prompt: Where to ask.
        message: Description of the problem; "Continue?" is appended.
        enabled: When False, nothing is asked and the run continues.
        before_abort: Awaited before raising, e.g. to flush reports.

    Raises:
        UserAbortError: If the answer is no.
    """
    if not enabled:
        return
    if prompt.confirm(f"{message} Continue the job?"):
        return
    if before_abort is not None:
        await before_abort()
    raise UserAbortError(f"Aborted by user: {message}")
