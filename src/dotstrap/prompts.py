"""Confirmation prompts used before replacing conflicting files."""

from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm


class Confirmer(Protocol):
    def confirm(self, prompt: str) -> bool: ...


class ConsoleConfirmer:
    """Asks on the terminal, defaulting to "no"."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console

    def confirm(self, prompt: str) -> bool:
        return Confirm.ask(prompt, default=False, console=self.console)


class AutoConfirmer:
    """Answers every prompt with a fixed value and remembers what was asked."""

    def __init__(self, answer: bool) -> None:
        self.answer = answer
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answer
