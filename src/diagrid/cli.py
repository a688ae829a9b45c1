"""Command-line interface for diagrid compile/geometry workflows."""
from __future__ import annotations

import argparse
import glob
import json
import logging
import os
import sys
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .compiler import CompileOptions, CompileResult, compile_document, shared_registry
from .errors import (
    DiagridError,
    LayoutStateError,
    LayoutWarning,
    SourceError,
    UnsupportedPrimitiveError,
)
from .reader import load_document
from .resources import load_cheatsheet
from .svg import render_svg
from .templates import TemplateRegistry

logger = logging.getLogger(__name__)

_HINTS = {
    "E_STRUCTURE": "Check element names, attributes and grid placements.",
    "E_TEMPLATE_DUPLICATE": "Give every template in <defs> a distinct id.",
    "E_TEMPLATE_UNRESOLVED": "Define the template in <defs> or pass it with --templates.",
    "E_TEMPLATE_CYCLE": "Break the chain of templates that use each other.",
    "E_STYLE_UNRESOLVED": "Declare the <style> a rule refers to.",
    "E_LAYOUT_OVERCONSTRAINED": "Relax a minx/miny floor or make an interval size 0 or +weight.",
}


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


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--text", help="Raw diagram source")
    parser.add_argument(
        "--templates",
        nargs="+",
        metavar="GLOB",
        help="Template file globs (loaded left-to-right)",
    )
    parser.add_argument("--width", type=float, help="Width of the box given to the diagram")
    parser.add_argument("--height", type=float, help="Height of the box given to the diagram")
    parser.add_argument(
        "--anchor",
        type=float,
        nargs=2,
        metavar=("AX", "AY"),
        help="Default anchor for nodes without one (-1..1 per axis)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="diagrid",
        description="Lay out grid diagrams and compile them to SVG.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    compile_parser = subparsers.add_parser("compile", help="Compile diagrams to SVG")
    compile_parser.add_argument("inputs", nargs="*", metavar="FILE", help="Input diagram files")
    compile_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    compile_parser.add_argument("-o", "--output", help="Output .svg path (single input only)")
    compile_parser.add_argument(
        "--jobs", type=int, default=1, help="Number of diagrams compiled concurrently"
    )
    _add_source_arguments(compile_parser)

    geometry_parser = subparsers.add_parser(
        "geometry", help="Print laid-out primitives as JSON"
    )
    geometry_parser.add_argument("input", nargs="?", help="Input diagram file")
    _add_source_arguments(geometry_parser)

    subparsers.add_parser("cheatsheet", help="Print diagram markup quick reference")

    return parser


def _read_stdin() -> str:
    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Use a subcommand with FILE, --text, or pipe stdin.",
            exit_code=2,
        )
    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe diagram content into stdin.",
            exit_code=2,
        )
    return data


def _read_file(path: str) -> Tuple[str, Path]:
    input_path = Path(path)
    if not input_path.exists():
        raise CliError(
            "E_IO_READ",
            f"input file not found: {input_path}",
            exit_code=2,
            file=str(input_path),
        )
    try:
        return input_path.read_text(), input_path
    except OSError as exc:
        raise CliError(
            "E_IO_READ",
            f"failed to read input file: {input_path}",
            hint=str(exc),
            exit_code=2,
            file=str(input_path),
        )


def _read_inputs(
    paths: Sequence[str], text: Optional[str]
) -> List[Tuple[str, str, Optional[Path]]]:
    """Return ``(source, name, path)`` per input; path is None for text/stdin."""
    if paths and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )
    if text is not None:
        return [(text, "<text>", None)]
    if paths:
        inputs = []
        for path in paths:
            source, input_path = _read_file(path)
            inputs.append((source, str(input_path), input_path))
        return inputs
    return [(_read_stdin(), "<stdin>", None)]


def _resolve_template_sources(patterns: Optional[List[str]]) -> List[str]:
    if not patterns:
        return []

    paths: List[Path] = []
    for pattern in patterns:
        matches = [Path(match) for match in glob.glob(pattern)]
        if not matches:
            raise CliError(
                "E_TEMPLATE",
                f"template glob matched no files: {pattern}",
                hint="Provide at least one existing template file.",
                exit_code=3,
            )
        paths.extend(sorted(matches))

    sources: List[str] = []
    for path in paths:
        try:
            sources.append(path.read_text())
        except OSError as exc:
            raise CliError(
                "E_TEMPLATE",
                f"failed to read template file: {path}",
                hint=str(exc),
                exit_code=3,
                file=str(path),
            )
    return sources


def _options_from_args(args: argparse.Namespace) -> CompileOptions:
    if (args.width is None) != (args.height is None):
        raise CliError(
            "E_ARGS",
            "--width and --height must be given together",
            hint="Pass both, e.g. --width 400 --height 300.",
            exit_code=2,
        )
    options = CompileOptions()
    if args.width is not None:
        if args.width < 0 or args.height < 0:
            raise CliError(
                "E_ARGS",
                "--width and --height must be >= 0",
                exit_code=2,
            )
        options.size = (args.width, args.height)
    if args.anchor is not None:
        ax, ay = args.anchor
        if not (-1.0 <= ax <= 1.0 and -1.0 <= ay <= 1.0):
            raise CliError(
                "E_ARGS",
                "--anchor values must be between -1 and 1",
                exit_code=2,
            )
        options.default_anchor = (ax, ay)
    return options


def _template_registry(
    args: argparse.Namespace, options: CompileOptions
) -> Optional[TemplateRegistry]:
    template_sources = _resolve_template_sources(args.templates)
    return shared_registry(template_sources, max_depth=options.max_template_depth)


def _compile_one(
    source: str, options: CompileOptions, parent: Optional[TemplateRegistry]
) -> Tuple[CompileResult, str]:
    result = compile_document(load_document(source), options, parent)
    svg_text = render_svg(
        result, measurer=options.measurer, default_font_family=options.default_font_family
    )
    return result, svg_text


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content)
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _error_from_exception(exc: Exception, *, file: Optional[str] = None) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, SourceError):
        return CliError(
            exc.code,
            str(exc),
            hint="Ensure input is well-formed XML and escape &, <, > in text.",
            exit_code=2,
            file=file,
            line=exc.line,
            column=exc.column,
        )
    if isinstance(exc, (LayoutStateError, UnsupportedPrimitiveError)):
        return CliError(
            exc.code,
            str(exc),
            hint="This is a bug in diagrid; re-run with --debug to see traceback.",
            exit_code=1,
            file=file,
            retryable=False,
        )
    if isinstance(exc, DiagridError):
        return CliError(
            exc.code,
            str(exc),
            hint=_HINTS.get(exc.code, "Check diagram semantics and template usage."),
            exit_code=3,
            file=file,
        )
    if isinstance(exc, ValueError):
        return CliError(
            "E_SEMANTIC",
            str(exc),
            hint="Check diagram semantics and template usage.",
            exit_code=3,
            file=file,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        file=file,
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

    prefix = f"{err.file}: " if err.file else ""
    sys.stderr.write(f"error[{err.code}]: {prefix}{err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _emit_warnings(
    warnings: Sequence[LayoutWarning], *, name: str, error_format: str
) -> None:
    for warning in warnings:
        if error_format == "json":
            payload = {
                "ok": True,
                "code": warning.code,
                "message": warning.message,
                "file": name,
                "node_path": warning.node_path,
            }
            sys.stderr.write(json.dumps(payload) + "\n")
        else:
            sys.stderr.write(f"warning[{warning.code}]: {warning}\n")


def _handle_compile(args: argparse.Namespace, *, error_format: str, debug: bool) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )
    if args.output and len(args.inputs) > 1:
        raise CliError(
            "E_ARGS",
            "--output can only be used with a single input file",
            hint="Drop --output to write FILE.svg next to each input.",
            exit_code=2,
        )
    if args.jobs < 1:
        raise CliError("E_ARGS", "--jobs must be >= 1", exit_code=2)

    options = _options_from_args(args)
    inputs = _read_inputs(args.inputs, args.text)
    parent = _template_registry(args, options)
    logger.debug("compiling %d input(s) with %d job(s)", len(inputs), args.jobs)

    with ThreadPoolExecutor(max_workers=args.jobs) as pool:
        futures = [
            pool.submit(_compile_one, source, options, parent) for source, _name, _path in inputs
        ]

    exit_code = 0
    for (_source, name, source_path), future in zip(inputs, futures):
        try:
            result, svg_text = future.result()
        except Exception as exc:
            err = _error_from_exception(exc, file=name if source_path else None)
            _emit_error(err, error_format=error_format)
            if debug:
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
            exit_code = exit_code or err.exit_code
            continue

        _emit_warnings(result.warnings, name=name, error_format=error_format)
        if args.stdout or source_path is None:
            sys.stdout.write(svg_text)
            if not svg_text.endswith("\n"):
                sys.stdout.write("\n")
            continue

        output_path = Path(args.output) if args.output else source_path.with_suffix(".svg")
        _write_text(output_path, svg_text)
        print(f"Wrote {output_path}")
    return exit_code


def _handle_geometry(args: argparse.Namespace, *, error_format: str) -> int:
    options = _options_from_args(args)
    paths = [args.input] if args.input else []
    [(source, name, _path)] = _read_inputs(paths, args.text)
    parent = _template_registry(args, options)
    try:
        result = compile_document(load_document(source), options, parent)
    except DiagridError as exc:
        raise _error_from_exception(exc, file=args.input) from exc
    _emit_warnings(result.warnings, name=name, error_format=error_format)
    payload = {
        "width": result.width,
        "height": result.height,
        "primitives": [primitive.to_dict() for primitive in result.primitives],
        "warnings": [
            {"code": w.code, "message": w.message, "node_path": w.node_path}
            for w in result.warnings
        ],
    }
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


def _configure_logging(debug: bool) -> None:
    # layout warnings are reported from the compile result, not the log
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.ERROR,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: compile, geometry, cheatsheet.",
            exit_code=2,
        )
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("DIAGRID_DEBUG") == "1"
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format
        _configure_logging(debug_enabled)

        if args.command == "compile":
            return _handle_compile(args, error_format=error_format, debug=debug_enabled)
        if args.command == "geometry":
            return _handle_geometry(args, error_format=error_format)
        if args.command == "cheatsheet":
            print(load_cheatsheet())
            return 0

        raise CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: compile, geometry, cheatsheet.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="Use subcommands: compile, geometry, cheatsheet.",
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
