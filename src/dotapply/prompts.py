"""Interactive prompter backed by rich."""

from __future__ import annotations

from typing import Sequence

from rich.console import Console
from rich.prompt import Prompt

from .ports import ConflictChoice, KeySetupChoice, MismatchChoice


class RichPrompter:
    """Asks the user at the terminal. Only the CLI constructs one."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)

    def choose_profile(self, names: Sequence[str], default: str | None) -> str:
        choices = list(names)
        return Prompt.ask(
            "Which profile should be applied?",
            choices=choices,
            default=default if default in choices else None,
            console=self.console,
        )

    def choose_key_setup(self, key_reference: str) -> KeySetupChoice:
        self.console.print(f"[yellow]No age key found at {key_reference}.[/yellow]")
        answer = Prompt.ask(
            "Generate a new key, import an existing one, or cancel?",
            choices=[choice.value for choice in KeySetupChoice],
            default=KeySetupChoice.IMPORT.value,
            console=self.console,
        )
        return KeySetupChoice(answer)

    def ask_key_material(self) -> str:
        return Prompt.ask("Paste the age secret key (AGE-SECRET-KEY-...)", password=True, console=self.console)

    def resolve_key_mismatch(self, file: str) -> MismatchChoice:
        self.console.print(f"[red]The configured key cannot decrypt {file}.[/red]")
        answer = Prompt.ask(
            "Skip this file, cancel the remaining apply, or import the matching key?",
            choices=[choice.value for choice in MismatchChoice],
            default=MismatchChoice.SKIP.value,
            console=self.console,
        )
        return MismatchChoice(answer)

    def resolve_conflict(self, path: str) -> ConflictChoice:
        self.console.print(f"[yellow]{path} exists and is not a symlink.[/yellow]")
        answer = Prompt.ask(
            "Overwrite it, skip it, or cancel the remaining links?",
            choices=[choice.value for choice in ConflictChoice],
            default=ConflictChoice.SKIP.value,
            console=self.console,
        )
        return ConflictChoice(answer)
