from __future__ import annotations

import argparse

from ..core import *  # noqa: F401,F403


def resolve_targets_from_args(args: argparse.Namespace) -> list[TargetOptions]:
    """Targets selected on the command line, either a single --idl/--output pair or config entries."""
    repo_root = Path(args.repo_root).resolve()
    if args.idl:
        if args.config:
            raise BindgenError("--idl cannot be combined with --config.")
        if not args.output:
            raise BindgenError("--output is required together with --idl.")
        idl_path = ensure_relative_path(repo_root, args.idl).resolve()
        return [
            TargetOptions(
                name=idl_path.name.split(".")[0],
                idl_path=idl_path,
                output_path=ensure_relative_path(repo_root, args.output).resolve(),
                wasm_path=args.wasm_path,
                class_name=args.class_name,
            )
        ]
    if not args.config:
        raise BindgenError("Either --idl or --config is required.")
    config = load_config(ensure_relative_path(repo_root, args.config).resolve())
    return [
        resolve_target_options(config, target_name, repo_root)
        for target_name in resolve_target_names(config=config, target_name=args.target)
    ]


def load_resolve_from_args(args: argparse.Namespace) -> Resolve:
    return load_idl(Path(args.idl).resolve())
