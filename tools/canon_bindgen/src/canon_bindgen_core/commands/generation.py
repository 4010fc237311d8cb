from __future__ import annotations

import argparse
import logging

from canon_codegen_core import write_artifact_if_changed

from ..core import *  # noqa: F401,F403
from .common import resolve_targets_from_args

logger = logging.getLogger(__name__)


def build_bindings_for_target(
    options: TargetOptions,
    *,
    dry_run: bool,
    check: bool,
) -> dict[str, Any]:
    resolve = load_idl(options.idl_path)
    content = generate_bindings(resolve, class_name=options.class_name, wasm_path=options.wasm_path)
    status, diff = write_artifact_if_changed(
        path=options.output_path,
        content=content,
        dry_run=dry_run,
        check=check,
    )
    logger.debug("target '%s': %s -> %s (%s)", options.name, options.idl_path, options.output_path, status)
    return {
        "target": options.as_dict(),
        "status": status,
        "diff": diff,
        "has_drift": status == "drift",
    }


def command_generate(args: argparse.Namespace) -> int:
    targets = resolve_targets_from_args(args)
    exit_code = 0
    for options in targets:
        result = build_bindings_for_target(options, dry_run=bool(args.dry_run), check=bool(args.check))
        print(f"[{options.name}] generate: output={result['status']}")
        if args.print_diff and result["diff"]:
            print(result["diff"])
        if args.check and result["has_drift"]:
            exit_code = 1
    return exit_code
