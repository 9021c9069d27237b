# tests/conftest.py
"""Shared test fixtures and helpers.

Most engine tests drive a stand-in IaC tool (see `fake_tool`): a small
executable script whose behaviour is controlled through FAKE_TOOL_*
environment variables, so the supervisor can be exercised against real
child processes without terraform installed.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
import stat
import sys
import time
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Stand-in IaC tool
# =============================================================================

# Behaviour switches (all optional):
#   FAKE_TOOL_EXIT            exit code for plan/apply/other commands
#   FAKE_TOOL_RECORD          file that receives one JSON line per call
#   FAKE_TOOL_SKIP_PLAN_FILE  plan does not write its -out file
#   FAKE_TOOL_SHOW_FAIL       show always fails
#   FAKE_TOOL_SHOW_FAIL_UNLESS_CONTAINS
#                             show fails unless the plan path contains this
#   FAKE_TOOL_HANG            run until signalled (or 30s)
#   FAKE_TOOL_IGNORE          comma list of signals ignored while hanging
#   FAKE_TOOL_READY_FILE      touched once signal handling is in place
#   FAKE_TOOL_SHOW_HANG       show hangs like FAKE_TOOL_HANG instead of rendering
#   FAKE_TOOL_LINES           extra output lines printed before "ran <command>"
FAKE_TOOL_SOURCE = """\
import json
import os
import signal
import sys
import time

args = sys.argv[1:]
command = args[0] if args else ""

record = os.environ.get("FAKE_TOOL_RECORD")
if record:
    with open(record, "a") as f:
        f.write(json.dumps({"argv": args, "tf_cli_args": os.environ.get("TF_CLI_ARGS")}) + "\\n")


def out_file(argv):
    found = None
    for i, arg in enumerate(argv):
        if arg.startswith("-out="):
            found = arg[len("-out="):]
        elif arg == "-out" and i + 1 < len(argv):
            found = argv[i + 1]
    return found


if command == "show" and not os.environ.get("FAKE_TOOL_SHOW_HANG"):
    target = args[-1]
    needle = os.environ.get("FAKE_TOOL_SHOW_FAIL_UNLESS_CONTAINS")
    if (
        os.environ.get("FAKE_TOOL_SHOW_FAIL")
        or (needle and needle not in target)
        or not os.path.isfile(target)
    ):
        sys.stderr.write("Error: Failed to read plan from plan file\\n")
        sys.exit(1)
    with open(target) as f:
        content = f.read()
    if "-json" in args:
        sys.stdout.write(json.dumps({"format_version": "1.2", "plan": content}, sort_keys=True))
        sys.stdout.write("\\n")
    else:
        sys.stdout.write("Plan: 1 to add, 0 to change, 0 to destroy.\\n")
    sys.exit(0)

if os.environ.get("FAKE_TOOL_HANG") or command == "show":
    ignored = {
        name.strip().upper()
        for name in os.environ.get("FAKE_TOOL_IGNORE", "").split(",")
        if name.strip()
    }

    def on_interrupt(signum, frame):
        sys.stdout.write("Interrupt received. Gracefully shutting down...\\n")
        sys.stdout.flush()
        sys.exit(1)

    for name in ("TERM", "INT"):
        signum = getattr(signal, "SIG" + name)
        if name in ignored:
            signal.signal(signum, signal.SIG_IGN)
        else:
            signal.signal(signum, on_interrupt)

    sys.stdout.write("Acquiring state lock. This may take a few moments...\\n")
    sys.stdout.flush()
    ready = os.environ.get("FAKE_TOOL_READY_FILE")
    if ready:
        with open(ready, "w") as f:
            f.write(str(os.getpid()))
    deadline = time.monotonic() + 30
    while time.monotonic() < deadline:
        time.sleep(0.05)
    sys.exit(0)

if command == "plan":
    sys.stdout.write(json.dumps({"@level": "info", "@message": "Terraform plan", "type": "version"}))
    sys.stdout.write("\\n")
    sys.stderr.write("Warning: fake provider in use\\n")
    plan_file = out_file(args)
    if plan_file and not os.environ.get("FAKE_TOOL_SKIP_PLAN_FILE"):
        with open(plan_file, "w") as f:
            f.write("fake-plan:" + " ".join(args))
    sys.stdout.write(json.dumps({"@level": "info", "@message": "Plan: 1 to add", "type": "change_summary"}))
    sys.stdout.write("\\n")
    sys.exit(int(os.environ.get("FAKE_TOOL_EXIT", "0")))

for number in range(int(os.environ.get("FAKE_TOOL_LINES", "0"))):
    sys.stdout.write("output line " + str(number) + "\\n")
sys.stdout.write("ran " + command + "\\n")
sys.exit(int(os.environ.get("FAKE_TOOL_EXIT", "0")))
"""


def write_executable(path: Path, source: str) -> Path:
    """Write an executable Python script using the running interpreter."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{source}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def wait_for_file(path: Path, timeout: float = 10.0) -> None:
    """Block until path exists (child signalled readiness)."""
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"timed out waiting for {path}")
        time.sleep(0.02)


@pytest.fixture
def fake_tool(tmp_path: Path) -> Path:
    """Executable stand-in for terraform/tofu."""
    return write_executable(tmp_path / "bin" / "terraform", FAKE_TOOL_SOURCE)


@pytest.fixture
def module_dir(tmp_path: Path) -> Path:
    """Durable module directory with a terragrunt.hcl descriptor."""
    directory = tmp_path / "live" / "vpc"
    directory.mkdir(parents=True)
    (directory / "terragrunt.hcl").write_text('terraform {\n  source = "../modules/vpc"\n}\n')
    return directory


@pytest.fixture
def cache_dir(module_dir: Path) -> Path:
    """Ephemeral orchestrator cache directory below the module."""
    directory = module_dir / ".terragrunt-cache" / "abc123" / "def456"
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def tool_env(tmp_path: Path) -> dict[str, str]:
    """Base environment for child processes, with a call record file."""
    env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith(("FAKE_TOOL_", "IAC_SUPERVISOR_", "TF_"))
    }
    env["FAKE_TOOL_RECORD"] = str(tmp_path / "calls.jsonl")
    return env


@pytest.fixture
def wait_ready():
    """Helper that blocks until a readiness file appears."""
    return wait_for_file


@pytest.fixture
def make_executable():
    """Helper that writes an executable Python script."""
    return write_executable
