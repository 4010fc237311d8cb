from __future__ import annotations

import argparse
import logging
import sys

from .core import TOOL_NAME, TOOL_VERSION, BindgenError
from .commands import command_classify, command_generate, command_layout, command_validate_idl


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=TOOL_NAME,
        description="Generate Python host bindings that marshal values across the canonical ABI.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {TOOL_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    generate = sub.add_parser("generate", help="Generate binding modules from IDL.")
    generate.add_argument(
        "--repo-root",
        default=".",
        help="Repository root used to resolve relative paths (default: current directory).",
    )
    generate.add_argument("--idl", help="Path to a resolved IDL JSON file.")
    generate.add_argument("--output", help="Output path of the generated module (with --idl).")
    generate.add_argument("--wasm-path", help="Module file name stored in the generated loader (with --idl).")
    generate.add_argument("--class-name", help="Name of the generated world class (with --idl).")
    generate.add_argument("--config", help="Path to bindgen config JSON.")
    generate.add_argument("--target", help="Target name from config (default: all targets).")
    generate.add_argument("--dry-run", action="store_true", help="Report what would change without writing.")
    generate.add_argument("--check", action="store_true", help="Fail if generated output differs from disk.")
    generate.add_argument("--print-diff", action="store_true", help="Print unified diff for changed outputs.")
    generate.set_defaults(func=command_generate)

    classify = sub.add_parser("classify", help="Print the binding strategy of every function.")
    classify.add_argument("--idl", required=True, help="Path to a resolved IDL JSON file.")
    classify.add_argument("--json", action="store_true", help="Print JSON instead of text.")
    classify.set_defaults(func=command_classify)

    layout = sub.add_parser("layout", help="Print size, alignment and flat types of every type.")
    layout.add_argument("--idl", required=True, help="Path to a resolved IDL JSON file.")
    layout.add_argument("--json", action="store_true", help="Print JSON instead of text.")
    layout.set_defaults(func=command_layout)

    validate_idl = sub.add_parser("validate-idl", help="Validate an IDL file against schema and type rules.")
    validate_idl.add_argument("--idl", required=True, help="Path to a resolved IDL JSON file.")
    validate_idl.set_defaults(func=command_validate_idl)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return int(args.func(args))
    except BindgenError as exc:
        print(f"{TOOL_NAME} error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
