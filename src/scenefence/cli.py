"""Command-line interface for scenefence check/render/fix workflows."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .diagnostics import (
    apply_auto_fixes,
    export_diagnostic_report,
    format_diagnostic_summary,
    generate_auto_fix_suggestions,
    generate_diagnostic_report,
    report_from_result,
)
from .enforcement import enforce_boundaries
from .render import render_scene_with_diagnostics
from .resources import load_format_reference
from .scene import SceneStructureError, load_scene, scene_to_dict

SUBCOMMANDS_HINT = "Use one of: check, render, fix, format."


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", nargs="?", help="Input scene .json file")
    parser.add_argument("--text", help="Raw scene JSON")


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="scenefence",
        description="Check scene boundaries and render scenes to SVG.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    check_parser = subparsers.add_parser("check", help="Report boundary violations")
    _add_input_arguments(check_parser)
    check_parser.add_argument("--format", choices=["json", "text"], default="text")
    check_parser.add_argument("-o", "--output", help="Write the report to this path")
    check_parser.add_argument(
        "--strict", action="store_true", help="Exit with status 1 when errors are found"
    )

    render_parser = subparsers.add_parser("render", help="Render a scene to SVG")
    _add_input_arguments(render_parser)
    render_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    render_parser.add_argument("-o", "--output", help="Output .svg path")
    render_parser.add_argument("--report", help="Also write the JSON diagnostic report here")

    fix_parser = subparsers.add_parser("fix", help="Apply suggested moves and write the scene")
    _add_input_arguments(fix_parser)
    fix_parser.add_argument("--stdout", action="store_true", help="Write fixed scene to stdout")
    fix_parser.add_argument("-o", "--output", help="Output .json path")
    fix_parser.add_argument("--min-confidence", choices=["high", "low"], default="high")

    subparsers.add_parser("format", help="Print the scene JSON reference")

    return parser


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"input file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            return input_path.read_text(encoding="utf-8"), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Pass a scene FILE, --text, or pipe JSON on stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe scene JSON into stdin.",
            exit_code=2,
        )
    return data, None


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _check_output_flags(args: argparse.Namespace) -> None:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, SceneStructureError):
        if exc.code == "E_PARSE_JSON":
            return CliError(
                exc.code,
                str(exc),
                hint="Ensure the scene is valid JSON.",
                exit_code=2,
            )
        return CliError(
            exc.code,
            str(exc),
            hint="Fix the scene structure; run `scenefence format` for the reference.",
            exit_code=3,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
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
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_check(args: argparse.Namespace) -> int:
    source, _source_path = _read_input(args.input, args.text)
    try:
        data = json.loads(source)
    except json.JSONDecodeError as exc:
        raise CliError(
            "E_PARSE_JSON",
            f"failed to parse scene JSON at line {exc.lineno}, column {exc.colno}",
            hint="Ensure the scene is valid JSON.",
            exit_code=2,
        )

    report = generate_diagnostic_report(data)
    if args.format == "json":
        content = export_diagnostic_report(report) + "\n"
    else:
        content = format_diagnostic_summary(report)

    if args.output:
        output_path = Path(args.output)
        _write_text(output_path, content)
        print(f"Wrote {output_path}")
    else:
        sys.stdout.write(content)

    if args.strict and report.summary.errors:
        return 1
    return 0


def _handle_render(args: argparse.Namespace) -> int:
    _check_output_flags(args)
    source, source_path = _read_input(args.input, args.text)
    scene = load_scene(source)
    svg_text, result = render_scene_with_diagnostics(scene)

    if args.report:
        _write_text(Path(args.report), export_diagnostic_report(report_from_result(result)) + "\n")

    if args.stdout or (source_path is None and not args.output):
        sys.stdout.write(svg_text)
        if not svg_text.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".svg")
    _write_text(output_path, svg_text + "\n")
    print(f"Wrote {output_path}")
    return 0


def _handle_fix(args: argparse.Namespace) -> int:
    _check_output_flags(args)
    source, source_path = _read_input(args.input, args.text)
    scene = load_scene(source)
    suggestions = generate_auto_fix_suggestions(enforce_boundaries(scene))
    fixed = apply_auto_fixes(scene, suggestions, min_confidence=args.min_confidence)
    content = json.dumps(scene_to_dict(fixed), indent=2) + "\n"

    if args.stdout or (source_path is None and not args.output):
        sys.stdout.write(content)
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".fixed.json")
    _write_text(output_path, content)
    print(f"Wrote {output_path}")
    return 0


def _configure_logging(debug_enabled: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug_enabled else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError("E_ARGS", "missing subcommand", hint=SUBCOMMANDS_HINT, exit_code=2)
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("SCENEFENCE_DEBUG") == "1"
    _configure_logging(debug_enabled)
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format

        if args.command == "check":
            return _handle_check(args)
        if args.command == "render":
            return _handle_render(args)
        if args.command == "fix":
            return _handle_fix(args)
        if args.command == "format":
            print(load_format_reference())
            return 0

        raise CliError("E_ARGS", "missing subcommand", hint=SUBCOMMANDS_HINT, exit_code=2)
    except UsageError as exc:
        err = CliError("E_ARGS", str(exc), hint=SUBCOMMANDS_HINT, exit_code=2)
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in acceptance tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
