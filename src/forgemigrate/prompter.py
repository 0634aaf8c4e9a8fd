"""
User interaction behind a single capability interface.

Orchestrators and the reconciler never call input() directly. They ask a
Prompter, which lets the CLI plug in a terminal implementation and lets
headless callers (cron jobs, tests) plug in one that answers on its own.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)


class Prompter(ABC):
    """Interface for confirmation gates and multiple-choice questions."""

    #: True when answers come from a person. The restore uses this to pick
    #: between interactive and forced conflict resolution.
    interactive: bool = True

    @abstractmethod
    def confirm(self, question: str) -> bool:
        """Ask a yes/no question. Returns True only on an explicit yes."""

    @abstractmethod
    def choose(
        self,
        question: str,
        options: Sequence[str],
        default: str | None = None,
    ) -> str | None:
        """
        Ask the user to pick one of options.

        Returns:
            The chosen option, the default when the user gives no explicit
            answer, or None if there is neither.
        """


class ForcedPrompter(Prompter):
    """
    Non-interactive prompter used with --force.

    Every confirmation gate is answered yes and every choice falls back to
    its default.
    """

    interactive = False

    def confirm(self, question: str) -> bool:
        logger.info(f"{question} -> yes (forced)")
        return True

    def choose(
        self,
        question: str,
        options: Sequence[str],
        default: str | None = None,
    ) -> str | None:
        logger.debug(f"{question} -> {default} (forced)")
        return default


class ConsolePrompter(Prompter):
    """Prompter reading answers from the terminal."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ) -> None:
        self._input = input_func
        self._output = output_func

    def confirm(self, question: str) -> bool:
        try:
            response = self._input(f"{question} [y/N]: ").strip().lower()
        except EOFError:
            return False
        return response in ("y", "yes")

    def choose(
        self,
        question: str,
        options: Sequence[str],
        default: str | None = None,
    ) -> str | None:
        """
        Ask for one of options.

        Accepts the full option text or its first letter when that letter
        is unambiguous. An empty or unknown answer returns the default.
        """
        labels = "/".join(f"[{o[0]}]{o[1:]}" if o else o for o in options)
        suffix = f" (default: {default})" if default else ""
        try:
            response = self._input(f"{question} {labels}{suffix}: ").strip().lower()
        except EOFError:
            return default

        if not response:
            return default

        for option in options:
            if response == option.lower():
                return option

        initials = [o for o in options if o and o[0].lower() == response]
        if len(initials) == 1:
            return initials[0]

        self._output(f"Unrecognised answer {response!r}, using {default}")
        return default
