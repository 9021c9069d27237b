# src/iac_supervisor/cli.py
"""IaC Supervisor Command Line Interface.

Entry points:
- iac-supervisor         the full CLI (wrap, orchestrate, locate, module-dir)
- iac-wrapper            drop-in replacement for terraform/tofu
- orchestrator-wrapper   drop-in replacement for terragrunt

The drop-in entry points forward their arguments after "--", so tool flags
such as -json or -out=tfplan never reach the option parser.
"""

import sys
from pathlib import Path

import typer
from pydantic import ValidationError

from iac_supervisor import __version__
from iac_supervisor.contracts import ConfigurationError, SpawnError
from iac_supervisor.core.config import SupervisorSettings, load_settings, resolve_config
from iac_supervisor.core.logging import configure_logging, get_logger

EXIT_USAGE = 2

# Tool arguments are collected verbatim, including unknown dash-options
PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}

app = typer.Typer(
    name="iac-supervisor",
    help="Signal-relaying, log-capturing wrapper for IaC tools under terragrunt.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"iac-supervisor version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Signal-relaying, log-capturing wrapper for IaC tools under terragrunt."""
    pass


def _load(settings_file: Path | None) -> SupervisorSettings:
    """Load settings and configure logging, exiting on configuration errors."""
    try:
        settings = load_settings(settings_file)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(EXIT_USAGE) from None

    configure_logging(settings.logging.level, settings.logging.json_output)
    get_logger(__name__).debug("Settings loaded", settings=resolve_config(settings))
    return settings


SETTINGS_OPTION = typer.Option(
    None,
    "--settings",
    envvar="IAC_SUPERVISOR_CONFIG",
    help="Optional settings file (YAML/TOML).",
)


@app.command(context_settings=PASSTHROUGH)
def wrap(
    args: list[str] | None = typer.Argument(
        None,
        help="IaC subcommand and its arguments (put them after --).",
    ),
    settings_file: Path | None = SETTINGS_OPTION,
) -> None:
    """Run one IaC tool invocation under supervision.

    Captures init/plan/apply/destroy output into <module>/<cmd>_log.jsonl,
    relays termination signals to the tool immediately, and writes plan
    artifacts after a successful plan with -out.
    """
    from iac_supervisor.engine.invocation import (
        InvocationRunner,
        build_invocation,
        log_startup,
    )

    settings = _load(settings_file)
    argv = list(args or [])
    log_startup(argv, role="iac")

    invocation = build_invocation(argv, settings)
    try:
        result = InvocationRunner(settings).run(invocation)
    except SpawnError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(e.exit_code) from None

    raise typer.Exit(result.exit_code)


@app.command(context_settings=PASSTHROUGH)
def orchestrate(
    args: list[str] | None = typer.Argument(
        None,
        help="Orchestrator arguments (put them after --).",
    ),
    settings_file: Path | None = SETTINGS_OPTION,
) -> None:
    """Run the orchestrator (terragrunt) with immediate signal forwarding.

    Works around the orchestrator's own signal-forwarding delay, which is
    longer than a CI runner's escalation to SIGKILL.
    """
    from iac_supervisor.engine.invocation import log_startup, run_orchestrator

    settings = _load(settings_file)
    argv = list(args or [])
    log_startup(argv, role="orchestrator")

    try:
        result = run_orchestrator(argv, settings)
    except SpawnError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(e.exit_code) from None

    raise typer.Exit(result.exit_code)


@app.command()
def locate(
    orchestrator: bool = typer.Option(
        False,
        "--orchestrator",
        help="Resolve the orchestrator binary instead of the IaC tool.",
    ),
    settings_file: Path | None = SETTINGS_OPTION,
) -> None:
    """Print the binary the wrapper would execute."""
    from iac_supervisor.core.locator import locate_binary, running_wrapper_paths

    settings = _load(settings_file)
    if orchestrator:
        name, override = settings.orchestrator.binary, settings.orchestrator.binary_path
    else:
        name, override = settings.binary, settings.binary_path

    typer.echo(
        locate_binary(
            name,
            override=override,
            search_dirs=settings.search_dirs,
            real_suffix=settings.real_suffix,
            exclude=running_wrapper_paths(),
        )
    )


@app.command("module-dir")
def module_dir(
    settings_file: Path | None = SETTINGS_OPTION,
) -> None:
    """Print the durable module directory artifacts would be written to."""
    from iac_supervisor.core.module_dir import resolve_module_dir

    settings = _load(settings_file)
    typer.echo(
        str(
            resolve_module_dir(
                cwd=Path.cwd(),
                hint=settings.working_dir_hint,
                descriptor=settings.module_descriptor,
            )
        )
    )


def wrapper_main() -> None:
    """Console entry point installed in place of terraform/tofu."""
    app(args=["wrap", "--", *sys.argv[1:]], prog_name="iac-wrapper")


def orchestrator_main() -> None:
    """Console entry point installed in place of terragrunt."""
    app(args=["orchestrate", "--", *sys.argv[1:]], prog_name="orchestrator-wrapper")


if __name__ == "__main__":
    app()
