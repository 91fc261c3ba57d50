from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ENV_VAR = "ASSEMBLER_CONFIG"


def find_repo_root(start: str | os.PathLike[str] | None = None) -> str:
    start_path = Path(start or os.getcwd()).resolve()
    if start_path.is_file():
        start_path = start_path.parent

    markers = ("pyproject.toml", ".git")
    for candidate in (start_path, *start_path.parents):
        if any((candidate / marker).exists() for marker in markers):
            return str(candidate)

    raise FileNotFoundError(
        f"Cannot locate repo root: searched from {start_path} for {', '.join(markers)}"
    )


def load_yaml_mapping(path: str | os.PathLike[str]) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def deep_merge(base: Any, overlay: Any, *, path: str = "") -> Any:
    """Overlay `overlay` on `base`: mappings merge, lists and scalars replace."""

    if overlay is None:
        return None
    if base is None:
        return overlay

    where = path or "<root>"
    if isinstance(base, Mapping):
        if not isinstance(overlay, Mapping):
            raise ValueError(
                f"Invalid config overlay merge at {where}: base is mapping but overlay is {type(overlay).__name__}"
            )
        merged: dict[str, Any] = dict(base)
        for key, overlay_value in overlay.items():
            next_path = f"{path}.{key}" if path else str(key)
            merged[key] = (
                deep_merge(base[key], overlay_value, path=next_path) if key in base else overlay_value
            )
        return merged

    if isinstance(base, (list, tuple)):
        if not isinstance(overlay, (list, tuple)):
            raise ValueError(
                f"Invalid config overlay merge at {where}: base is list but overlay is {type(overlay).__name__}"
            )
        return list(overlay)

    if isinstance(overlay, (Mapping, list, tuple)):
        raise ValueError(
            f"Invalid config overlay merge at {where}: base is {type(base).__name__} but overlay is {type(overlay).__name__}"
        )
    return overlay


def load_config(
    *,
    config_path: str | os.PathLike[str] | None = None,
    env_var: str | None = DEFAULT_ENV_VAR,
    start_dir: str | os.PathLike[str] | None = None,
    config_dir: str = "config",
    config_name: str = "assembler",
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Load the assembler config and describe where it came from.

    An explicit `config_path` (or the file named by `env_var`) is loaded on its
    own. Otherwise `<repo>/config/assembler.yaml` is used when present, with
    `assembler.local.yaml` beside it merged on top. A repo without a base
    config yields an empty mapping so every option falls back to its default.
    """

    explicit_path = None
    if config_path is not None:
        explicit_path = str(config_path).strip() or None
    elif env_var:
        explicit_path = os.environ.get(env_var, "").strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        if not os.path.exists(expanded):
            raise FileNotFoundError(f"Missing config file: {expanded}")
        meta = {
            "mode": "explicit" if config_path is not None else "env",
            "paths": [expanded],
            "env_var": env_var,
            "repo_root": None,
        }
        return load_yaml_mapping(expanded), meta

    if os.path.isabs(config_dir):
        directory = config_dir
        repo_root = None
    else:
        repo_root = find_repo_root(start_dir)
        directory = os.path.join(repo_root, config_dir)

    base_path = os.path.join(directory, f"{config_name}.yaml")
    local_path = os.path.join(directory, f"{config_name}.local.yaml")

    cfg: dict[str, Any] = {}
    loaded: list[str] = []
    mode = "defaults"
    if os.path.exists(base_path):
        cfg = load_yaml_mapping(base_path)
        loaded.append(os.path.abspath(base_path))
        mode = "base"
        if os.path.exists(local_path):
            cfg = deep_merge(cfg, load_yaml_mapping(local_path))
            loaded.append(os.path.abspath(local_path))
            mode = "base+local"

    meta = {"mode": mode, "paths": loaded, "env_var": env_var, "repo_root": repo_root}
    return cfg, meta
