from __future__ import annotations

import argparse
import json

from ..core import *  # noqa: F401,F403
from .common import load_resolve_from_args


def _qualified_name(interface: str | None, name: str) -> str:
    return f"{interface}#{name}" if interface else name


def command_classify(args: argparse.Namespace) -> int:
    resolve = load_resolve_from_args(args)
    rows: list[dict[str, str]] = []
    for direction, items in (("import", resolve.imports), ("export", resolve.exports)):
        for interface, functions in items.groups():
            for func in functions:
                rows.append(
                    {
                        "direction": direction,
                        "function": _qualified_name(interface, func.name),
                        "classification": classify(func).value,
                    }
                )
    if args.json:
        print(json.dumps(rows, indent=2))
        return 0
    for row in rows:
        print(f"{row['direction']:<6} {row['function']}: {row['classification']}")
    return 0


def command_layout(args: argparse.Namespace) -> int:
    resolve = load_resolve_from_args(args)
    sizes = SizeAlign()
    sizes.fill(resolve)
    entries = sizes.entries()
    rows: list[dict[str, Any]] = []
    for type_id, typedef in enumerate(resolve.types):
        row: dict[str, Any] = {"id": type_id, "type": typedef.describe(type_id)}
        if type_id in entries:
            size, align = entries[type_id]
            row.update({"size": size, "align": align, "flat": flatten_type(resolve, type_id)})
        else:
            row["unsupported"] = True
        rows.append(row)
    if args.json:
        print(json.dumps(rows, indent=2))
        return 0
    for row in rows:
        if row.get("unsupported"):
            print(f"#{row['id']:<3} {row['type']}: unsupported")
            continue
        print(f"#{row['id']:<3} {row['type']}: size={row['size']} align={row['align']} flat=[{', '.join(row['flat'])}]")
    return 0


def command_validate_idl(args: argparse.Namespace) -> int:
    resolve = load_resolve_from_args(args)
    print(
        f"[{resolve.world}] valid: types={len(resolve.types)} "
        f"imports={len(resolve.imports.functions) + sum(len(iface.functions) for iface in resolve.imports.interfaces)} "
        f"exports={len(resolve.exports.functions) + sum(len(iface.functions) for iface in resolve.exports.interfaces)}"
    )
    return 0
