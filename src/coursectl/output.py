"""Terminal output for coursectl: data on stdout, diagnostics on stderr.

The rules follow `clig.dev <https://clig.dev/>`_:

* stdout only ever carries the result of a command (a response body, a
  status record, a table), so it can be piped into ``jq`` or a script.
* Status lines, warnings, errors, hints, and log records go to stderr.
* Rich styling is used only when stdout is a terminal; ``NO_COLOR``,
  ``TERM=dumb``, and ``--no-color`` turn it off.

:class:`OutputManager` holds the chosen format and the quiet/verbose flags.
:func:`~coursectl.app.main_callback` builds one per invocation and installs
it with :func:`set_output`; everything else reaches it via
:func:`get_output` or the small helpers at the bottom of this module.
:class:`OutputLogHandler` sends ``coursectl.*`` log records through the same
manager, so library warnings obey the same colour and quiet rules.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table


class OutputFormat(str, Enum):
    """How command results are rendered on stdout.

    ``AUTO`` becomes ``RICH`` on an interactive, colour-capable terminal and
    ``PLAIN`` everywhere else.
    """

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """``True`` if ``NO_COLOR`` is set (to anything) or ``TERM`` is ``dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


class OutputManager:
    """Routes command output to stdout and diagnostics to stderr.

    Args:
        format: Result format; ``AUTO`` is resolved at construction time.
        no_color: Disable Rich styling for both streams.
        quiet: Hide info, success, and suggestion lines.  Warnings and errors
            are always shown.
        verbose: Show debug lines.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            interactive = _is_tty() and not self._no_color
            format = OutputFormat.RICH if interactive else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    # ------------------------------------------------------------------ #
    # Results (stdout)
    # ------------------------------------------------------------------ #

    def format_response(self, data: Any, content_type: str = "application/json") -> None:
        """Render a response body or record in the active format.

        Args:
            data: Decoded JSON (dict or list), raw text, or any scalar.
            content_type: Used in Rich mode to decide whether a string is
                JSON worth highlighting.
        """
        if self._format == OutputFormat.JSON:
            self._print_json(data)
        elif self._format == OutputFormat.PLAIN:
            self._print_plain(data)
        else:
            self._print_rich(data, content_type)

    def print_data(self, text: str) -> None:
        """Write one raw line to stdout."""
        print(text, file=sys.stdout, flush=True)

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Render rows as a JSON array of objects, tab-separated text, or a Rich table.

        ``title`` is only shown in Rich mode.
        """
        if self._format == OutputFormat.JSON:
            records = [dict(zip(headers, row)) for row in rows]
            self.print_data(json.dumps(records, indent=2, ensure_ascii=False))
            return
        if self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self.print_data("\t".join(line))
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    def _print_json(self, data: Any) -> None:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError:
                self.print_data(data)
                return
        self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))

    def _print_plain(self, data: Any) -> None:
        if isinstance(data, dict):
            lines = [f"{key}\t{value}" for key, value in data.items()]
        elif isinstance(data, list):
            lines = [
                "\t".join(str(v) for v in item.values()) if isinstance(item, dict) else str(item)
                for item in data
            ]
        else:
            lines = [str(data)]
        for line in lines:
            self.print_data(line)

    def _print_rich(self, data: Any, content_type: str) -> None:
        if isinstance(data, str) and "json" in content_type:
            try:
                data = json.loads(data)
            except ValueError:
                pass
        if not isinstance(data, (dict, list)):
            self._stdout.print(str(data))
            return
        body = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        self._stdout.print(Syntax(body, "json", theme="monokai", word_wrap=True))

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def _diagnostic(
        self,
        message: str,
        label: str = "",
        label_style: str = "",
        style: str = "",
    ) -> None:
        if self._no_color:
            print(f"{label}{message}", file=sys.stderr, flush=True)
            return
        head = escape(label)
        if label and label_style:
            head = f"[{label_style}]{head.rstrip()}[/{label_style}] "
        line = head + escape(message)
        self._stderr.print(f"[{style}]{line}[/{style}]" if style else line)

    def info(self, message: str) -> None:
        """Status line, hidden by ``--quiet``."""
        if not self._quiet:
            self._diagnostic(message)

    def success(self, message: str) -> None:
        """Green confirmation, hidden by ``--quiet``."""
        if not self._quiet:
            self._diagnostic(message, style="green")

    def warning(self, message: str) -> None:
        """``Warning:`` line; shown even with ``--quiet``."""
        self._diagnostic(message, label="Warning: ", label_style="yellow")

    def error(self, message: str) -> None:
        """``Error:`` line; always shown."""
        self._diagnostic(message, label="Error: ", label_style="bold red")

    def suggest(self, message: str) -> None:
        """Dimmed ``→ next step`` hint, hidden by ``--quiet``."""
        if not self._quiet:
            self._diagnostic(message, label="→ ", style="dim")

    def debug(self, message: str) -> None:
        """``[debug]`` line, shown only with ``--verbose``."""
        if self._verbose:
            self._diagnostic(message, label="[debug] ", style="dim")


# ------------------------------------------------------------------ #
# Logging bridge
# ------------------------------------------------------------------ #


class OutputLogHandler(logging.Handler):
    """Hand ``logging`` records to the current :class:`OutputManager` by level."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            output = get_output()
            if record.levelno >= logging.ERROR:
                output.error(message)
            elif record.levelno >= logging.WARNING:
                output.warning(message)
            elif record.levelno >= logging.INFO:
                output.info(message)
            else:
                output.debug(message)
        except Exception:
            self.handleError(record)


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "warning") -> None:
    """Set the ``coursectl`` logger level and attach :class:`OutputLogHandler` once.

    Unknown level names fall back to ``warning``.
    """
    logger = logging.getLogger("coursectl")
    logger.setLevel(_LEVELS.get(level.lower(), logging.WARNING))
    if not any(isinstance(h, OutputLogHandler) for h in logger.handlers):
        logger.addHandler(OutputLogHandler())


# ------------------------------------------------------------------ #
# Process-wide manager
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating an ``AUTO`` one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager (tests use this between CLI runs)."""
    global _output
    _output = None


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def error(message: str) -> None:
    get_output().error(message)
