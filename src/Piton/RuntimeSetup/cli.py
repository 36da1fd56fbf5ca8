# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.cli",
#   "purpose": "Typer command-line entry point for the runtime bootstrapper",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "errors", "name": "Error Presentation", "anchor": "function-report-error", "kind": "function"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "commands", "name": "run / setup / check / target", "anchor": "commands", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command-line entry point for the runtime bootstrapper.

Commands:
- ``run APP [ARGS...]``: reuse or provision the runtime, then launch ``APP``
  and exit with its exit code
- ``setup``: provision the runtime without launching anything
- ``check``: print the compatibility classification of each runtime directory
- ``target``: print the target identifier of this machine

Exit codes: ``0`` on success or when the user cancelled the setup, ``1`` on
any bootstrap failure, and the application's own code for ``run``.

Example:
    $ piton-bootstrap --install-dir ./app run ./app/MyApp.dll --verbose
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from . import __version__
from .bootstrap import BootstrapResult, find_compatible_runtime, launch_app, prepare_runtime
from .descriptors import current_target_id, load_descriptor
from .errors import RuntimeSetupError, ServerUnreachable, UnsupportedTargetError
from .launcher import AppLauncher, DotnetLauncher
from .logging_utils import setup_logging
from .settings import BootstrapSettings, UIDriver

_console = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILURE = 1


class CliContext:
    """Per-invocation state shared by the commands."""

    def __init__(self, settings: BootstrapSettings, install_dir: Optional[Path]) -> None:
        self.settings = settings
        self.install_dir = install_dir
        self.console = _console
        self.logger = setup_logging(
            level=settings.log_level,
            log_dir=settings.log_dir,
            quiet=settings.quiet,
        )

    def resolve_install_dir(self, fallback: Optional[Path] = None) -> Path:
        """Explicit ``--install-dir`` wins, then ``fallback``, then the working directory."""

        if self.install_dir is not None:
            return self.install_dir
        if fallback is not None:
            return fallback
        return Path.cwd()


app = typer.Typer(
    name="piton-bootstrap",
    help="Provision the bundled .NET runtime and launch managed applications with it",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _make_launcher() -> AppLauncher:
    return DotnetLauncher()


def _error_message(exc: RuntimeSetupError) -> str:
    if isinstance(exc, ServerUnreachable):
        return (
            f"Unable to connect to the runtime download server '{exc.server}'. "
            "Please check your internet connection and try again."
        )
    if isinstance(exc, UnsupportedTargetError):
        return f"This application does not ship a runtime for target '{exc.target}'."
    return str(exc)


def report_error(exc: RuntimeSetupError, console: Optional[Console] = None) -> None:
    """Print a user-facing message for ``exc``."""

    out = console or _console
    out.print(f"[red]Error ({exc.kind}):[/red] {escape(_error_message(exc))}")


def _finish_setup(ctx: CliContext, result: BootstrapResult) -> None:
    """Exit for cancelled or failed setups; return normally when the runtime is ready."""

    outcome = result.outcome
    if outcome is None or outcome.ok:
        return
    if outcome.cancelled:
        ctx.console.print("[yellow]Runtime setup cancelled.[/yellow]")
        raise typer.Exit(EXIT_OK)
    assert outcome.error is not None
    report_error(outcome.error, ctx.console)
    raise typer.Exit(EXIT_FAILURE)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"piton-bootstrap {__version__}")
        raise typer.Exit(EXIT_OK)


@app.callback(invoke_without_command=False)
def main(
    install_dir: Optional[Path] = typer.Option(
        None,
        "--install-dir",
        "-d",
        help="Directory holding the runtime descriptor and runtime directory",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR); overrides PITON_LOG_LEVEL",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress console log output",
    ),
    ui: Optional[UIDriver] = typer.Option(
        None,
        "--ui",
        case_sensitive=False,
        help="Progress presentation while setting up (none, cli)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Runtime bootstrapper: keep the bundled runtime in sync with its descriptor."""

    global _context

    overrides: Dict[str, Any] = {}
    if log_level is not None:
        overrides["log_level"] = log_level
    if quiet:
        overrides["quiet"] = True
    if ui is not None:
        overrides["ui"] = ui
    try:
        settings = BootstrapSettings(**overrides)
    except ValidationError as exc:
        _console.print(f"[red]Invalid settings:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_FAILURE)

    _context = CliContext(settings, install_dir.resolve() if install_dir else None)


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run(
    app_path: Path = typer.Argument(..., help="Managed application entry point (.dll)"),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments passed to the application"),
    force: bool = typer.Option(False, "--force", help="Rebuild the runtime even if it is compatible"),
) -> None:
    """Make sure the runtime is ready, then launch APP_PATH with it."""

    ctx = get_context()
    app_path = app_path.resolve()
    install_dir = ctx.resolve_install_dir(app_path.parent)
    try:
        result = prepare_runtime(install_dir, settings=ctx.settings, force=force, logger=ctx.logger)
        _finish_setup(ctx, result)
        code = launch_app(result, app_path, args or [], launcher=_make_launcher())
    except RuntimeSetupError as exc:
        report_error(exc, ctx.console)
        raise typer.Exit(EXIT_FAILURE)
    ctx.logger.info("application exited", extra={"stage": "launch", "exit_code": code})
    raise typer.Exit(code)


@app.command()
def setup(
    force: bool = typer.Option(False, "--force", help="Rebuild the runtime even if it is compatible"),
    target: Optional[str] = typer.Option(None, "--target", help="Override the detected target id"),
) -> None:
    """Provision the runtime without launching an application."""

    ctx = get_context()
    install_dir = ctx.resolve_install_dir()
    try:
        result = prepare_runtime(
            install_dir, target=target, settings=ctx.settings, force=force, logger=ctx.logger
        )
    except RuntimeSetupError as exc:
        report_error(exc, ctx.console)
        raise typer.Exit(EXIT_FAILURE)
    _finish_setup(ctx, result)
    state = "reused" if result.reused else "installed"
    typer.echo(f"{state} {result.target} {result.descriptor.version} {result.runtime_dir}")


@app.command()
def check(
    target: Optional[str] = typer.Option(None, "--target", help="Override the detected target id"),
) -> None:
    """Print how each candidate runtime directory compares to the descriptor.

    Exits with 0 when a compatible runtime exists and 1 otherwise.
    """

    ctx = get_context()
    install_dir = ctx.resolve_install_dir()
    target_id = target or current_target_id()
    try:
        descriptor = load_descriptor(ctx.settings.descriptor_path(install_dir), target_id)
    except RuntimeSetupError as exc:
        report_error(exc, ctx.console)
        raise typer.Exit(EXIT_FAILURE)

    compatible, checks = find_compatible_runtime(
        ctx.settings.runtime_dirs(install_dir), descriptor, target_id, logger=ctx.logger
    )
    for runtime_dir, result in checks:
        typer.echo(f"{runtime_dir}: {result.status.value} ({result.describe()})")
    raise typer.Exit(EXIT_OK if compatible is not None else EXIT_FAILURE)


@app.command("target")
def target_cmd() -> None:
    """Print the target identifier of this machine."""

    typer.echo(current_target_id())


__all__ = ["app", "CliContext", "get_context", "report_error", "main"]
