# src/iac_supervisor/core/locator.py
"""Resolution of the real IaC (or orchestrator) executable.

When the wrapper is installed in place of a binary, the original is renamed
aside with a suffix (terraform -> terraform.real). The locator prefers that
renamed original, then the plain name, and never returns the running wrapper
itself.
"""

import os
import shutil
import sys
from collections.abc import Iterable, Iterator
from pathlib import Path

from iac_supervisor.core.logging import get_logger

logger = get_logger(__name__)


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _same_file(path: Path, others: Iterable[Path]) -> bool:
    try:
        resolved = path.resolve()
    except OSError:
        return False
    return any(resolved == other for other in others)


def running_wrapper_paths() -> tuple[Path, ...]:
    """Paths that refer to the running wrapper (never a valid target)."""
    if not sys.argv or not sys.argv[0]:
        return ()
    argv0 = sys.argv[0]
    candidates = [Path(argv0)]
    if os.sep not in argv0:
        found = shutil.which(argv0)
        if found:
            candidates.append(Path(found))
    resolved = []
    for candidate in candidates:
        try:
            resolved.append(candidate.resolve())
        except OSError:
            continue
    return tuple(resolved)


def _candidates(name: str, search_dirs: Iterable[Path], real_suffix: str) -> Iterator[Path]:
    dirs = list(search_dirs)
    if real_suffix:
        for directory in dirs:
            yield directory / f"{name}{real_suffix}"
    for directory in dirs:
        yield directory / name


def locate_binary(
    name: str,
    *,
    override: Path | None = None,
    search_dirs: Iterable[Path] = (),
    real_suffix: str = ".real",
    exclude: Iterable[Path] = (),
    path_env: str | None = None,
) -> str:
    """Resolve the executable to spawn.

    Resolution order:
    1. override, if it exists and is executable
    2. <dir>/<name><real_suffix> for each search dir
    3. <dir>/<name> for each search dir
    4. PATH lookup of <name><real_suffix>, then <name>
    5. the bare name (spawn reports "not found")

    Args:
        name: Binary name (terraform, tofu, terragrunt)
        override: Explicit path from the environment
        search_dirs: Well-known installation directories, in order
        real_suffix: Suffix of a renamed-aside original
        exclude: Resolved paths to skip (the running wrapper)
        path_env: PATH value for the fallback lookup (os.environ PATH)

    Returns:
        Absolute path of the binary, or the bare name as a last resort
    """
    excluded = tuple(exclude)

    if override is not None:
        if _is_executable(override) and not _same_file(override, excluded):
            return str(override)
        logger.warning("Binary override is not executable, ignoring", override=str(override))

    for candidate in _candidates(name, search_dirs, real_suffix):
        if _is_executable(candidate) and not _same_file(candidate, excluded):
            return str(candidate)

    lookups = [f"{name}{real_suffix}", name] if real_suffix else [name]
    for lookup in lookups:
        found = shutil.which(lookup, path=path_env)
        if found and not _same_file(Path(found), excluded):
            return found

    logger.warning("Binary not found, falling back to bare name", binary=name)
    return name
