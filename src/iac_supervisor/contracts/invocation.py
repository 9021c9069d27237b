# src/iac_supervisor/contracts/invocation.py
"""Invocation identity types.

These types answer: "What was the wrapper asked to run, and where?"
"""

from dataclasses import dataclass, field
from pathlib import Path

from iac_supervisor.contracts.enums import Subcommand

# Subcommands whose console output must land in a durable transcript
CAPTURED_SUBCOMMANDS = frozenset(
    {Subcommand.INIT, Subcommand.PLAN, Subcommand.APPLY, Subcommand.DESTROY}
)


@dataclass(frozen=True)
class NormalizedArgs:
    """Argument vector rebuilt for the real binary.

    Attributes:
        command: Subcommand name exactly as given (first argv element)
        subcommand: Classified kind of the command
        args: Arguments after the command, separator tokens removed
        json_output: Whether -json is present
        plan_file: Value of the last -out flag (plan only)
    """

    command: str
    subcommand: Subcommand
    args: tuple[str, ...] = ()
    json_output: bool = False
    plan_file: str | None = None

    @property
    def argv(self) -> list[str]:
        """Command plus cleaned arguments, ready to append to the binary path."""
        if not self.command:
            return list(self.args)
        return [self.command, *self.args]


@dataclass(frozen=True)
class Invocation:
    """One execution of the wrapper.

    Created at wrapper start. The module directory and binary are resolved
    once, before anything is spawned or written.
    """

    arguments: NormalizedArgs
    binary: str
    cwd: Path
    module_dir: Path
    env_overrides: dict[str, str | None] = field(default_factory=dict)

    @property
    def subcommand(self) -> Subcommand:
        return self.arguments.subcommand

    @property
    def captures_output(self) -> bool:
        """Whether this invocation produces a durable transcript."""
        return self.arguments.subcommand in CAPTURED_SUBCOMMANDS

    @property
    def command_line(self) -> list[str]:
        return [self.binary, *self.arguments.argv]
