from __future__ import annotations

import argparse
import logging
from dataclasses import fields
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from swoop import RenderOptions, RenderResult, SwoopError, render, render_html

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m swr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for swoop render operations.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m swr",
        description=(
            "swoop CLI\n"
            "Run a page's scripts in an isolated QuickJS context and print the settled DOM.\n"
            "Rendering is best-effort: script errors are reported, never fatal."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m swr render https://example.com/\n"
            "  python -m swr render https://example.com/ --wait-strategy timeout --timeout 2000\n"
            "  python -m swr render https://example.com/app/ --file ./page.html\n"
            "  python -m swr render https://example.com/ --report --output snapshot.html\n"
            "  python -m swr options --config ./swoop.toml"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log renderer activity to stderr through Rich.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    render_cmd = sub.add_parser(
        "render",
        help="Render one URL (or a local HTML file served as that URL).",
        description=(
            "Fetch a page, execute its scripts, wait for it to settle and print the DOM snapshot.\n"
            "With --file the document is read from disk and the URL is only used for resolution."
        ),
        epilog=(
            "Examples:\n"
            "  python -m swr render https://example.com/\n"
            "  python -m swr render https://example.com/ --no-scripts\n"
            "  python -m swr render https://example.com/ --debug-probes --report"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    render_cmd.add_argument("url", help="Document URL; relative script URLs resolve against it.")
    render_cmd.add_argument(
        "--file",
        help="Read the document from this local HTML file instead of fetching the URL.",
    )
    render_cmd.add_argument(
        "--config",
        help="Options TOML file with an [options] table.",
    )
    render_cmd.add_argument(
        "--timeout",
        type=int,
        help="Call budget in milliseconds (clamped to the configured budget_cap).",
    )
    render_cmd.add_argument(
        "--wait-strategy",
        choices=("networkidle", "timeout"),
        help="Settle strategy after scripts ran (default: networkidle).",
    )
    render_cmd.add_argument(
        "--idle-time",
        type=int,
        help="Quiet window in milliseconds required by networkidle.",
    )
    render_cmd.add_argument(
        "--max-scripts",
        type=int,
        help="Maximum number of <script> elements to execute.",
    )
    render_cmd.add_argument(
        "--no-scripts",
        action="store_true",
        help="Skip script execution and return the parsed document.",
    )
    render_cmd.add_argument(
        "--no-permissive",
        action="store_true",
        help="Do not install permissive API fallbacks.",
    )
    render_cmd.add_argument(
        "--forward-console",
        action="store_true",
        help="Forward sandbox console calls to the swoop.sandbox.console logger.",
    )
    render_cmd.add_argument(
        "--debug-fetch",
        action="store_true",
        help="Record one console entry per sandbox fetch.",
    )
    render_cmd.add_argument(
        "--debug-probes",
        action="store_true",
        help="Record DOM, listener and mount-root probe statistics.",
    )
    render_cmd.add_argument(
        "--output",
        "-o",
        help="Write the snapshot to this file instead of stdout.",
    )
    render_cmd.add_argument(
        "--report",
        action="store_true",
        help="Print timing, console entries and errors after the snapshot.",
    )

    options_cmd = sub.add_parser(
        "options",
        help="Show the effective render options.",
        description="Show bundled defaults, or the options resolved from --config.",
        formatter_class=_HELP_FORMATTER,
    )
    options_cmd.add_argument(
        "--config",
        help="Options TOML file with an [options] table.",
    )

    return parser


def _configure_logging(verbose: bool) -> None:
    """Install a Rich log handler on the `swoop` logger when verbose.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    if not verbose:
        return
    handler = RichHandler(console=_ERR_CONSOLE, show_path=False, rich_tracebacks=True)
    logger = logging.getLogger("swoop")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


def build_options(args: argparse.Namespace) -> RenderOptions:
    """Create RenderOptions from `render` flags, layered over --config.

    Example:
        ```python
        options = build_options(build_parser().parse_args(["render", "https://example.com/", "--timeout", "900"]))
        ```
    """
    overrides: dict[str, Any] = {}
    for name in ("timeout", "wait_strategy", "idle_time", "max_scripts"):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    if getattr(args, "no_scripts", False):
        overrides["execute_scripts"] = False
    if getattr(args, "no_permissive", False):
        overrides["permissive_shims"] = False
    for flag in ("forward_console", "debug_fetch", "debug_probes"):
        if getattr(args, flag, False):
            overrides[flag] = True
    if args.config:
        return RenderOptions.from_file(args.config, **overrides)
    return RenderOptions(**overrides)


def _print_options(options: RenderOptions) -> None:
    """Render effective options in a rich table.

    Example:
        ```python
        _print_options(RenderOptions())
        ```
    """
    table = Table(title="Render Options")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="magenta")
    for field in fields(options):
        table.add_row(field.name, repr(getattr(options, field.name)))
    table.add_row("total_budget_ms", repr(options.total_budget_ms))
    _CONSOLE.print(table)


def _print_report(result: RenderResult) -> None:
    """Render timing, console entries and recovered errors.

    Example:
        ```python
        _print_report(render_html("<p></p>", "https://example.com/"))
        ```
    """
    timing = result.timing
    if timing is not None:
        _ERR_CONSOLE.print(
            Panel.fit(
                f"{result.url}\n{timing.duration}ms, {len(result.console)} console entries, "
                f"{len(result.errors)} error(s)",
                title="Render",
                border_style="cyan",
            )
        )
    if result.console:
        table = Table(title="Console")
        table.add_column("Level", style="cyan")
        table.add_column("Message")
        for entry in result.console:
            table.add_row(entry.level, entry.message)
        _ERR_CONSOLE.print(table)
    if result.errors:
        table = Table(title="Errors")
        table.add_column("Stage", style="cyan")
        table.add_column("Script", style="magenta")
        table.add_column("Message")
        for error in result.errors:
            table.add_row(error.stage, error.script_url or "-", error.message)
        _ERR_CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `swr` CLI command handler.

    Example:
        ```python
        code = main(["render", "https://example.com/", "--wait-strategy", "timeout"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    if args.command == "options":
        try:
            resolved = RenderOptions.from_file(args.config) if args.config else RenderOptions()
        except (OSError, ValueError) as exc:
            _CONSOLE.print(Panel.fit(f"Invalid options: {exc}", style="bold red"))
            return 2
        _print_options(resolved)
        return 0
    if args.command == "render":
        try:
            options = build_options(args)
        except (OSError, ValueError) as exc:
            _CONSOLE.print(Panel.fit(f"Invalid options: {exc}", style="bold red"))
            return 2
        try:
            if args.file:
                html = Path(args.file).read_text(encoding="utf-8")
                result = render_html(html, args.url, options)
            else:
                result = render(args.url, options)
        except OSError as exc:
            _CONSOLE.print(Panel.fit(f"Cannot read {args.file}: {exc}", style="bold red"))
            return 1
        except SwoopError as exc:
            _CONSOLE.print(Panel.fit(Pretty(exc), title=type(exc).__name__, border_style="red"))
            return 1
        if args.output:
            Path(args.output).write_text(result.html, encoding="utf-8")
            _CONSOLE.print(Panel.fit(f"Wrote snapshot of {result.url} to {args.output}", style="bold green"))
        else:
            _CONSOLE.print(result.html, markup=False, highlight=False, soft_wrap=True)
        if args.report:
            _print_report(result)
        return 0

    parser.error("Unhandled command")
    return 2
