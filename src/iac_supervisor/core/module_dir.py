# src/iac_supervisor/core/module_dir.py
"""Resolution of the durable module directory.

Terragrunt runs the IaC tool from .terragrunt-cache/<hash>/<hash>/..., which
is discarded after the run. Artifacts must land in the module's own source
directory instead.
"""

from pathlib import Path

from iac_supervisor.core.logging import get_logger

logger = get_logger(__name__)


def find_module_dir(start: Path, descriptor: str = "terragrunt.hcl") -> Path | None:
    """Walk upward from start looking for a descriptor one level up.

    At each directory d (the filesystem root excluded), d/../<descriptor>
    is checked; the first hit returns d's parent.
    """
    current = start
    while current != current.parent:
        if (current.parent / descriptor).is_file():
            return current.parent
        current = current.parent
    return None


def resolve_module_dir(
    *,
    cwd: Path,
    hint: Path | None = None,
    descriptor: str = "terragrunt.hcl",
) -> Path:
    """Return the directory artifacts must be written to.

    Priority:
    1. hint (TERRAGRUNT_WORKING_DIR), taken as-is
    2. the nearest directory with a descriptor found by find_module_dir()
    3. cwd

    Never fails; an unresolvable module directory falls back to cwd.
    """
    if hint is not None:
        module_dir = hint if hint.is_absolute() else cwd / hint
        logger.debug("Module directory from orchestrator hint", module_dir=str(module_dir))
        return module_dir

    found = find_module_dir(cwd, descriptor)
    if found is not None:
        logger.debug("Module directory from descriptor", module_dir=str(found))
        return found

    logger.debug("No module descriptor found, using working directory", cwd=str(cwd))
    return cwd
