from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema

TOOL_NAME = "canon-bindgen"
TOOL_VERSION = "0.1.0"
IDL_SCHEMA_VERSION = 1
ROOT_INTERFACE = "$root"
REALLOC_EXPORT = "cabi_realloc"
MEMORY_EXPORT = "memory"
POST_RETURN_PREFIX = "cabi_post_"

logger = logging.getLogger(__name__)


class BindgenError(Exception):
    pass


class IdlError(BindgenError):
    pass


class LayoutError(BindgenError):
    pass


class UnsupportedTypeError(BindgenError):
    pass


@dataclass(frozen=True)
class TargetOptions:
    name: str
    idl_path: Path
    output_path: Path
    wasm_path: str | None
    class_name: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "idl_path": str(self.idl_path),
            "output_path": str(self.output_path),
            "wasm_path": self.wasm_path,
            "class_name": self.class_name,
        }


def load_json(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise IdlError(f"Unable to read JSON file '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise IdlError(f"Invalid JSON in '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise IdlError(f"JSON root in '{path}' must be an object")
    return payload


def get_schema_path(kind: str) -> Path:
    base = Path(__file__).resolve().parent / "schemas"
    mapping = {
        "config": base / "config.schema.json",
        "idl_v1": base / "idl.schema.v1.json",
    }
    if kind not in mapping:
        raise BindgenError(f"Unknown schema kind: {kind}")
    return mapping[kind]


def validate_with_jsonschema(kind: str, payload: dict[str, Any], label: str) -> None:
    schema_path = get_schema_path(kind)
    schema_payload = load_json(schema_path)
    validator = jsonschema.Draft202012Validator(schema_payload)
    error = jsonschema.exceptions.best_match(validator.iter_errors(payload))
    if error is not None:
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        raise IdlError(f"{label} failed JSON schema validation at {location}: {error.message}")
    logger.debug("%s passed %s schema validation", label, kind)


def ensure_relative_path(root: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return root / path


def load_config(path: Path) -> dict[str, Any]:
    config = load_json(path)
    validate_with_jsonschema("config", config, f"config '{path}'")
    return config


def resolve_target_names(config: dict[str, Any], target_name: str | None) -> list[str]:
    targets = config.get("targets") or {}
    if target_name:
        if target_name not in targets:
            raise BindgenError(f"Unknown target '{target_name}'. Available: {', '.join(sorted(targets)) or '<none>'}")
        return [target_name]
    if not targets:
        raise BindgenError("Config has no targets.")
    return sorted(targets)


def resolve_target_options(config: dict[str, Any], target_name: str, repo_root: Path) -> TargetOptions:
    targets = config.get("targets") or {}
    target = targets.get(target_name)
    if not isinstance(target, dict):
        raise BindgenError(f"Unknown target '{target_name}'.")
    return TargetOptions(
        name=target_name,
        idl_path=ensure_relative_path(repo_root, target["idl_path"]).resolve(),
        output_path=ensure_relative_path(repo_root, target["output_path"]).resolve(),
        wasm_path=target.get("wasm_path"),
        class_name=target.get("class_name"),
    )
