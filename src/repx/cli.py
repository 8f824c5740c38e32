from __future__ import annotations

import argparse
import json
import logging
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from replicant_exec import Client, ClientSettings, CommandResult, FileEngine, MemoryEngine, run_command

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)
HELLO_MESSAGE = '"Hello, from Replicant!"'


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
        parser = _RichArgumentParser(prog="python -m repx")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running commands against a replicant store.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m repx",
        description=(
            "replicant-exec CLI\n"
            "Open a store, run one command against it and stream the output back."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m repx put obj1 '\"Hello, from Replicant!\"'\n"
            "  python -m repx get obj1\n"
            "  python -m repx scan --prefix obj --limit 10\n"
            "  python -m repx exec '{\"get\": {\"id\": \"obj1\"}}' --chunk-size 4\n"
            "  python -m repx hello\n\n"
            "Store Examples:\n"
            "  python -m repx --store /tmp/foo get obj1\n"
            "  python -m repx --engine memory hello"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--store",
        default="/tmp/foo",
        help="Store location passed to the engine unchanged (default: /tmp/foo).",
    )
    parser.add_argument(
        "--engine",
        choices=["file", "memory"],
        default="file",
        help=(
            "Engine that backs the store.\n"
            "file keeps one file per object under --store; memory lasts for one invocation."
        ),
    )
    parser.add_argument(
        "--config",
        help="Path to a client settings TOML file with a client table.",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        help="Bytes requested per output read (default: settings default_chunk_size).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log handle lifecycle to stderr.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    exec_cmd = sub.add_parser(
        "exec",
        help="Run a raw JSON command.",
        description=(
            "Run one JSON command and print its output verbatim.\n"
            "Input, when given, is written once before any output is read."
        ),
        epilog=(
            "Examples:\n"
            "  python -m repx exec '{\"put\": {\"id\": \"obj1\"}}' --input '\"hi\"' --no-read\n"
            "  python -m repx exec '{\"has\": {\"id\": \"obj1\"}}'"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    exec_cmd.add_argument("payload", metavar="COMMAND")
    input_group = exec_cmd.add_mutually_exclusive_group()
    input_group.add_argument("--input", help="Input payload text.")
    input_group.add_argument("--input-file", help="Read the input payload from a file.")
    exec_cmd.add_argument(
        "--no-read",
        action="store_true",
        help="Skip reading output; the execution is still finalized.",
    )

    put_cmd = sub.add_parser(
        "put",
        help="Store a JSON value under an id.",
        description="Store a JSON value under an id.",
        formatter_class=_HELP_FORMATTER,
    )
    put_cmd.add_argument("id")
    put_cmd.add_argument("value", help="JSON value, e.g. '\"text\"' or '{\"a\": 1}'.")

    for verb, text in (
        ("get", "Print the value stored under an id."),
        ("has", "Report whether an id is stored."),
        ("del", "Delete an id."),
    ):
        verb_cmd = sub.add_parser(verb, help=text, description=text, formatter_class=_HELP_FORMATTER)
        verb_cmd.add_argument("id")

    scan_cmd = sub.add_parser(
        "scan",
        help="List stored objects in id order.",
        description=(
            "List stored objects in id order.\n"
            "At most one start option (--prefix, --start-at, --start-after,\n"
            "--start-at-index, --start-after-index) may be given."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    scan_cmd.add_argument("--prefix", default="")
    scan_cmd.add_argument("--start-at", default="")
    scan_cmd.add_argument("--start-after", default="")
    scan_cmd.add_argument("--start-at-index", type=int, help="Start at this zero-based position.")
    scan_cmd.add_argument("--start-after-index", type=int, help="Start after this zero-based position.")
    scan_cmd.add_argument("--limit", type=int, default=0, help="Maximum items (default: 50).")

    sub.add_parser(
        "hello",
        help="Store and read back the greeting object.",
        description=(
            "Put \"Hello, from Replicant!\" under obj1, then read it back\n"
            "through the chunked reader and print it."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_client(args: argparse.Namespace) -> Client:
    """Create a Client from global CLI engine and settings flags.

    Example:
        ```python
        client = build_client(args)
        ```
    """
    settings = ClientSettings.from_file(args.config) if args.config else ClientSettings()
    engine = MemoryEngine() if args.engine == "memory" else FileEngine()
    return Client(engine, settings)


def _configure_logging(verbose: bool) -> None:
    """Route library logging through Rich when --verbose is set.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False)],
        force=True,
    )


def _print_failure(result: CommandResult) -> int:
    """Report a failed command sequence verbatim and return the exit code.

    Example:
        ```python
        code = _print_failure(CommandResult(ok=False, error="Invalid id", stage="begin"))
        ```
    """
    _CONSOLE.print(
        Panel.fit(
            f"[bold red]{result.stage} failed:[/bold red] {escape(result.error or '')}",
            border_style="red",
        )
    )
    return 1


def _print_raw(data: bytes) -> None:
    """Print command output without markup or highlighting.

    Example:
        ```python
        _print_raw(b'"Hello"')
        ```
    """
    _CONSOLE.print(data.decode("utf-8", errors="replace"), markup=False, highlight=False, soft_wrap=True)


def _print_scan(items: list[dict[str, Any]]) -> None:
    """Render scan results in a rich table.

    Example:
        ```python
        _print_scan([{"id": "obj1", "value": "Hello"}])
        ```
    """
    table = Table(title="Stored Objects")
    table.add_column("ID", style="cyan")
    table.add_column("Value")
    for item in items:
        table.add_row(escape(str(item["id"])), escape(json.dumps(item["value"])))
    _CONSOLE.print(table)


def _dispatch(args: argparse.Namespace, client: Client, conn: int) -> int:
    """Run the selected subcommand on an open connection.

    Example:
        ```python
        code = _dispatch(args, client, conn)
        ```
    """
    run = partial(run_command, client, conn, chunk_size=args.chunk_size)

    if args.command == "exec":
        input_data: bytes | str | None = args.input
        if args.input_file:
            try:
                input_data = Path(args.input_file).read_bytes()
            except OSError as exc:
                _CONSOLE.print(
                    Panel.fit(f"[bold red]input failed:[/bold red] {escape(str(exc))}", border_style="red")
                )
                return 2
        result = run(args.payload, input_data, read=not args.no_read)
        if not result.ok:
            return _print_failure(result)
        if result.output:
            _print_raw(result.output)
        return 0
    if args.command == "put":
        result = run(json.dumps({"put": {"id": args.id}}), args.value, read=False)
        if not result.ok:
            return _print_failure(result)
        _CONSOLE.print(Panel.fit(f"Stored {escape(args.id)}", style="bold green"))
        return 0
    if args.command == "get":
        result = run(json.dumps({"get": {"id": args.id}}))
        if not result.ok:
            return _print_failure(result)
        if not result.output:
            _CONSOLE.print(Panel.fit(f"No object stored under {escape(args.id)}", style="bold yellow"))
            return 1
        _print_raw(result.output)
        return 0
    if args.command in {"has", "del"}:
        result = run(json.dumps({args.command: {"id": args.id}}))
        if not result.ok:
            return _print_failure(result)
        _print_raw(result.output)
        return 0
    if args.command == "scan":
        params: dict[str, Any] = {}
        for key, value in (
            ("prefix", args.prefix),
            ("startAtID", args.start_at),
            ("startAfterID", args.start_after),
            ("startAtIndex", args.start_at_index),
            ("startAfterIndex", args.start_after_index),
            ("limit", args.limit),
        ):
            if value:
                params[key] = value
        result = run(json.dumps({"scan": params}))
        if not result.ok:
            return _print_failure(result)
        _print_scan(json.loads(result.output or b"[]"))
        return 0
    if args.command == "hello":
        put = run('{"put": {"id": "obj1"}}', HELLO_MESSAGE, read=False)
        if not put.ok:
            return _print_failure(put)
        got = run('{"get": {"id": "obj1"}}')
        if not got.ok:
            return _print_failure(got)
        _print_raw(got.output)
        return 0
    return 2


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `repx` CLI command handler.

    Example:
        ```python
        code = main(["--engine", "memory", "hello"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.chunk_size is not None and args.chunk_size < 1:
        parser.error("--chunk-size must be positive")
    _configure_logging(args.verbose)
    try:
        client = build_client(args)
    except (OSError, ValueError) as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]settings failed:[/bold red] {escape(str(exc))}", border_style="red"))
        return 2

    opened = client.open(args.store.encode("utf-8"))
    if opened.error is not None:
        return _print_failure(CommandResult(ok=False, error=opened.error, stage="open"))
    try:
        return _dispatch(args, client, opened.handle)
    finally:
        client.close(opened.handle)
