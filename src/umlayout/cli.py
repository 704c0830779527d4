"""Command-line interface for umlayout layout workflows."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from . import hierarchy_layout, timeline_layout
from .errors import ModelError
from .hierarchy import HierarchyModel
from .measure import FontMeasurer
from .resources import load_model_format
from .serialize import layout_to_dict, model_from_dict
from .theme import (
    DEFAULT_HIERARCHY_THEME,
    DEFAULT_TIMELINE_THEME,
    HierarchyTheme,
    TimelineTheme,
    theme_from_mapping,
    with_measurer,
)


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="umlayout",
        description="Compute pixel layouts for timeline and hierarchy diagram models.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    layout_parser = subparsers.add_parser("layout", help="Compute geometry for a timeline or hierarchy model")
    layout_parser.add_argument("input", nargs="?", help="Model file; the layout lands beside it as NAME.layout.json")
    layout_parser.add_argument("--text", help="Inline JSON model instead of a file")
    layout_parser.add_argument("--stdout", action="store_true", help="Print the layout instead of saving it")
    layout_parser.add_argument("-o", "--output", help="Where to save the layout JSON")
    layout_parser.add_argument("--theme", help="JSON file of size, spacing and colour overrides")
    layout_parser.add_argument("--font", help="TrueType font for label widths (default: fixed advance)")
    layout_parser.add_argument(
        "--avoid-obstacles",
        action="store_true",
        help="Bend hierarchy connectors around boxes they would cross",
    )
    layout_parser.add_argument("--indent", type=int, default=2, help="JSON indent; 0 prints one line")
    layout_parser.set_defaults(handler=_handle_layout)

    format_parser = subparsers.add_parser("format", help="Print the model and theme reference")
    format_parser.set_defaults(handler=_handle_format)

    return parser


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text and a model FILE were both given",
            hint="Pass the model as a FILE argument or inline with --text, not both.",
            exit_code=2,
        )

    if text is not None:
        return text, "<text>", None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"model file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            return input_path.read_text(), str(input_path), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"cannot read model file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no diagram model given",
            hint="Give `umlayout layout` a model path or pipe the JSON model into it.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe a JSON object with a \"type\" of timeline or hierarchy.",
            exit_code=2,
        )
    return data, "<stdin>", None


def _parse_json(text: str, source_name: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise CliError(
            "E_PARSE_JSON",
            f"failed to parse JSON: {exc.msg}",
            hint="Models and themes are single JSON objects; check the reported line.",
            exit_code=2,
            file=source_name,
            line=exc.lineno,
            column=exc.colno,
        )


def _load_theme(
    path: Optional[str], model: object
) -> Union[TimelineTheme, HierarchyTheme]:
    is_hierarchy = isinstance(model, HierarchyModel)
    theme_cls = HierarchyTheme if is_hierarchy else TimelineTheme
    if not path:
        return DEFAULT_HIERARCHY_THEME if is_hierarchy else DEFAULT_TIMELINE_THEME

    theme_path = Path(path)
    try:
        text = theme_path.read_text()
    except OSError as exc:
        raise CliError(
            "E_IO_READ",
            f"cannot read theme file: {theme_path}",
            hint=str(exc),
            exit_code=2,
            file=str(theme_path),
        )
    data = _parse_json(text, str(theme_path))
    if not isinstance(data, dict):
        raise ModelError("E_THEME", "theme file must contain a JSON object")
    section = "hierarchy" if is_hierarchy else "timeline"
    if section in data:
        data = data[section]
        if not isinstance(data, dict):
            raise ModelError("E_THEME", f"theme section '{section}' must be a JSON object")
    return theme_from_mapping(theme_cls, data)


def _font_measurer(path: str, size: float) -> FontMeasurer:
    measurer = FontMeasurer(path, size)
    try:
        measurer.font()
    except OSError as exc:
        raise CliError(
            "E_IO_READ",
            f"cannot load measuring font: {path}",
            hint=str(exc),
            exit_code=2,
            file=path,
        )
    return measurer


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content)
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"cannot write layout file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, ModelError):
        if exc.code == "E_THEME":
            return CliError(
                "E_THEME",
                exc.message,
                hint="Check theme keys against `umlayout format`.",
                exit_code=3,
            )
        return CliError(
            exc.code,
            exc.message,
            hint="Check the model against `umlayout format`.",
            exit_code=3,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to print the layout engine traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "line": err.line,
            "column": err.column,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_layout(args: argparse.Namespace) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Print the layout with --stdout or save it with --output.",
            exit_code=2,
        )
    if args.indent < 0:
        raise CliError(
            "E_ARGS",
            "--indent must be >= 0",
            hint="Use --indent 0 for a single-line layout.",
            exit_code=2,
        )

    source, source_name, source_path = _read_input(args.input, args.text)
    model = model_from_dict(_parse_json(source, source_name))
    theme = _load_theme(args.theme, model)
    if args.font:
        theme = with_measurer(theme, _font_measurer(args.font, theme.font_size))

    if isinstance(model, HierarchyModel):
        layout = hierarchy_layout.calculate_layout(model, theme, avoid_obstacles=args.avoid_obstacles)
    else:
        layout = timeline_layout.calculate_layout(model, theme)
    payload = json.dumps(layout_to_dict(layout), indent=args.indent or None)

    if args.stdout or source_path is None:
        sys.stdout.write(payload + "\n")
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".layout.json")
    _write_text(output_path, payload + "\n")
    print(f"Wrote {output_path}")
    return 0


def _handle_format(args: argparse.Namespace) -> int:
    print(load_model_format())
    return 0


def _missing_command() -> CliError:
    return CliError(
        "E_ARGS",
        "missing subcommand",
        hint="Run `umlayout layout MODEL` or `umlayout format`.",
        exit_code=2,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = _missing_command()
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("UMLAYOUT_DEBUG") == "1"
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    if debug_enabled:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format

        handler = getattr(args, "handler", None)
        if handler is None:
            raise _missing_command()
        return handler(args)
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="See `umlayout --help` for the layout and format commands.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
