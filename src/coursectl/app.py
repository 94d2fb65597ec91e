"""The ``coursectl`` command line.

Global options (output format, colour, verbosity, ``--instance``) are taken
by :func:`main_callback`, which installs the process-wide
:class:`~coursectl.output.OutputManager` and logging bridge before any
sub-command runs.  :func:`main` is the console-script entry point: it maps
:class:`~coursectl.exceptions.CoursectlError` to the error's exit code and
writes a crash log for anything else.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from coursectl import __version__
from coursectl.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="coursectl",
    help="Administer a Canvas-style learning management system from the command line.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"coursectl {__version__}")
        raise typer.Exit()


def _log_level_from_settings() -> str:
    from coursectl.config import load_global_config
    from coursectl.exceptions import ConfigError

    try:
        return load_global_config().settings.log_level
    except ConfigError:
        # A broken config file is reported by the command that needs it.
        return "warning"


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_show_version, is_eager=True,
        help="Show version and exit.",
    ),
    instance: Optional[str] = typer.Option(
        None, "--instance", help="Configured instance to talk to."
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON on stdout."),
    plain_output: bool = typer.Option(False, "--plain", help="Emit tab-separated text."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colour."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Only print results, warnings and errors."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log requests, retries and cache activity."
    ),
) -> None:
    """Set up output and logging, then hand shared options to sub-commands.

    ``--instance`` and ``--verbose`` are stored in ``ctx.obj``.  The log
    level is ``debug`` under ``--verbose`` and ``settings.log_level``
    otherwise.
    """
    from coursectl.output import OutputFormat, OutputManager, configure_logging, set_output

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    configure_logging("debug" if verbose else _log_level_from_settings())

    ctx.ensure_object(dict)
    ctx.obj.update(instance=instance, verbose=verbose)


def _register_commands() -> None:
    from coursectl.commands.api import api_command
    from coursectl.commands.auth import auth_app
    from coursectl.commands.cache import cache_app

    app.add_typer(cache_app, name="cache", help="Inspect and prune the response cache.")
    app.add_typer(auth_app, name="auth", help="Manage stored tokens.")
    app.command("api", help="Send a raw API request.")(api_command)


_register_commands()


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _cancel() -> None:
    sys.stderr.write("\nCancelled.\n")
    sys.exit(EXIT_CANCELLED)


def _setup_signal_handlers() -> None:
    def _on_sigint(signum: int, frame: Any) -> None:
        _cancel()

    signal.signal(signal.SIGINT, _on_sigint)


def _write_crash_log(exc: Exception) -> str:
    """Save the traceback of *exc* under ``<data_dir>/logs`` and return the path."""
    from coursectl.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    log_path.write_text("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return str(log_path)


def main() -> None:
    """Run the CLI and always leave through :class:`SystemExit`."""
    from coursectl.exceptions import CoursectlError
    from coursectl.output import error

    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        _cancel()
    except CoursectlError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        error(f"Unexpected error. Debug log: {_write_crash_log(exc)}")
        sys.exit(EXIT_GENERIC_FAILURE)
