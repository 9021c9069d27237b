# src/iac_supervisor/contracts/enums.py
"""All subcommand kinds, states, and formats used across subsystem boundaries.

The string values of Subcommand are the literal subcommand names the IaC tool
accepts; anything the tool understands beyond the classified set is OTHER.
"""

from enum import Enum


class Subcommand(str, Enum):
    """Classification of an IaC tool invocation.

    Uses (str, Enum) because the value doubles as the transcript file prefix
    (plan -> plan_log.jsonl).
    """

    INIT = "init"
    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"
    SHOW = "show"
    OTHER = "other"

    @classmethod
    def classify(cls, name: str) -> "Subcommand":
        """Map a raw subcommand name to its kind, OTHER if unrecognized."""
        if name == cls.OTHER.value:
            return cls.OTHER
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER


class SupervisorState(Enum):
    """Lifecycle of the supervised child process.

    idle -> spawned -> running -> {exited, signaled}

    EXITED and SIGNALED are terminal. SIGNALED is entered only through the
    signal handler path, regardless of how the child eventually ended.
    """

    IDLE = "idle"
    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"
    SIGNALED = "signaled"

    @property
    def is_terminal(self) -> bool:
        return self in (SupervisorState.EXITED, SupervisorState.SIGNALED)


class RenderFormat(str, Enum):
    """Rendering requested from the IaC tool's show subcommand."""

    JSON = "json"
    RAW = "raw"
