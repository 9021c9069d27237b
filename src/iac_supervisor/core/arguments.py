# src/iac_supervisor/core/arguments.py
"""Argument normalization for the wrapped IaC tool.

Terragrunt (v0.67+) may inject a standalone "-" to separate its own flags
from the tool's flags. The real tool rejects it, so it is never forwarded.
"""

from collections.abc import Sequence

from iac_supervisor.contracts import NormalizedArgs, Subcommand

JSON_FLAG = "-json"
OUT_FLAG = "-out"


def strip_separator(args: Sequence[str], separator: str = "-") -> tuple[str, ...]:
    """Remove every standalone separator token, preserving order."""
    return tuple(arg for arg in args if arg != separator)


def find_plan_file(args: Sequence[str]) -> str | None:
    """Value of the output-plan-file flag, last occurrence wins.

    Supports both "-out=tfplan" and "-out tfplan". A trailing "-out" with
    no value is ignored.
    """
    plan_file: str | None = None
    previous: str | None = None
    for arg in args:
        if arg.startswith(f"{OUT_FLAG}="):
            plan_file = arg[len(OUT_FLAG) + 1 :]
        elif previous == OUT_FLAG:
            plan_file = arg
        previous = arg
    return plan_file or None


def normalize_arguments(argv: Sequence[str], *, separator: str = "-") -> NormalizedArgs:
    """Rebuild the argument vector for the real binary.

    Args:
        argv: Arguments handed to the wrapper; the first is the subcommand
        separator: Orchestrator-injected token to strip

    Returns:
        NormalizedArgs with the classified subcommand and cleaned arguments

    Example:
        >>> normalize_arguments(["plan", "-", "-json", "-out=tfplan"]).args
        ('-json', '-out=tfplan')
    """
    if not argv:
        return NormalizedArgs(command="", subcommand=Subcommand.OTHER)

    command, rest = argv[0], argv[1:]
    args = strip_separator(rest, separator)
    subcommand = Subcommand.classify(command)

    return NormalizedArgs(
        command=command,
        subcommand=subcommand,
        args=args,
        json_output=JSON_FLAG in args,
        plan_file=find_plan_file(args) if subcommand is Subcommand.PLAN else None,
    )
