from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from assembler.archive.orchestrator import AssemblyArchiver
from assembler.foundation.config_io import DEFAULT_ENV_VAR, load_config, load_yaml_mapping
from assembler.foundation.logging_utils import setup_build_logger
from assembler.framework.config import AssemblerConfig
from assembler.framework.context import BuildContext
from assembler.framework.errors import InvalidConfiguration
from assembler.framework.model import AssemblyDescriptor, load_descriptor
from assembler.framework.project import ProjectModel
from assembler.resolution.repository import ProjectGraphRepository

__all__ = [
    "BuildRequest",
    "generate_run_id",
    "load_assembler_config",
    "load_project",
    "load_reactor",
    "load_repository",
    "parse_properties",
    "run_build",
    "setup_build_logger",
]


@dataclass(frozen=True)
class BuildRequest:
    descriptor_path: str
    config_path: str | None = None
    project_path: str | None = None
    repository_path: str | None = None
    formats: tuple[str, ...] = ()
    properties: tuple[str, ...] = ()
    run_id: str | None = None


def generate_run_id(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{os.getpid()}"


def parse_properties(pairs: Iterable[str]) -> dict[str, str]:
    """Parse `-D key=value` pairs; a bare `key` maps to "true"."""

    out: dict[str, str] = {}
    for raw in pairs:
        text = (raw or "").strip()
        if not text:
            continue
        key, sep, value = text.partition("=")
        key = key.strip()
        if not key:
            raise InvalidConfiguration(f"Invalid property definition: {raw!r}")
        out[key] = value if sep else "true"
    return out


def load_project(path: str | os.PathLike[str] | None, *, default_basedir: Path) -> ProjectModel:
    """Project model from YAML; with no file, an anonymous project rooted at `default_basedir`."""

    if path is None:
        return ProjectModel(
            group_id="local",
            artifact_id=default_basedir.resolve().name or "project",
            version="0",
            basedir=default_basedir,
            packaging="pom",
        )
    project_path = Path(path)
    payload = _read_mapping(project_path)
    payload.pop("reactor", None)
    return ProjectModel.from_dict(payload, base_dir=project_path.parent)


def load_reactor(
    path: str | os.PathLike[str] | None, project: ProjectModel
) -> tuple[ProjectModel, ...]:
    """The reactor projects listed under `reactor:` in the project file, root first."""

    if path is None:
        return (project,)
    project_path = Path(path)
    payload = _read_mapping(project_path)
    entries = payload.get("reactor") or []
    if not isinstance(entries, list):
        raise InvalidConfiguration(f"project.reactor must be a list ({project_path})")

    reactor: list[ProjectModel] = [project]
    for idx, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise InvalidConfiguration(f"project.reactor[{idx}] must be a mapping ({project_path})")
        reactor.append(ProjectModel.from_dict(entry, base_dir=project_path.parent))
    return tuple(reactor)


def load_repository(
    path: str | os.PathLike[str] | None, reactor: Sequence[ProjectModel]
) -> ProjectGraphRepository:
    if path is None:
        repository = ProjectGraphRepository()
    else:
        repository_path = Path(path)
        repository = ProjectGraphRepository.from_dict(
            _read_mapping(repository_path), base_dir=repository_path.parent
        )
    for project in reactor:
        repository.register_project(project)
    return repository


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        return load_yaml_mapping(path)
    except FileNotFoundError as exc:
        raise InvalidConfiguration(f"Missing file: {path}") from exc
    except ValueError as exc:
        raise InvalidConfiguration(str(exc)) from exc


def load_assembler_config(
    config_path: str | None, start_dir: Path
) -> tuple[AssemblerConfig, dict[str, Any]]:
    explicit = config_path is not None or bool(os.environ.get(DEFAULT_ENV_VAR, "").strip())
    try:
        cfg_dict, meta = load_config(config_path=config_path, start_dir=start_dir)
    except FileNotFoundError as exc:
        if explicit:
            raise InvalidConfiguration(str(exc)) from exc
        # No repo root above the project: run on defaults.
        cfg_dict, meta = {}, {"mode": "defaults", "paths": []}
    except ValueError as exc:
        raise InvalidConfiguration(str(exc)) from exc
    return AssemblerConfig.from_dict(cfg_dict), meta


def _log_config_source(logger: logging.Logger, meta: Mapping[str, Any]) -> None:
    paths = meta.get("paths") or []
    if paths:
        logger.info("Loaded config (%s) from %s", meta.get("mode"), ", ".join(paths))
    else:
        logger.info("No config file found; using defaults")


def run_build(request: BuildRequest, *, environ: Mapping[str, str] | None = None) -> list[Path]:
    """Load every input named by `request` and build the requested archives."""

    run_id = request.run_id or generate_run_id()
    descriptor: AssemblyDescriptor = load_descriptor(request.descriptor_path)

    default_basedir = Path.cwd()
    project = load_project(request.project_path, default_basedir=default_basedir)
    config, config_meta = load_assembler_config(request.config_path, project.basedir)

    log_dir = config.log_dir
    if log_dir is not None and not os.path.isabs(log_dir):
        log_dir = str(project.basedir / log_dir)
    logger, log_file = setup_build_logger(log_dir, run_id)

    logger.info("Build started for run %s (descriptor=%s)", run_id, request.descriptor_path)
    _log_config_source(logger, config_meta)

    reactor = load_reactor(request.project_path, project)
    repository = load_repository(request.repository_path, reactor)
    context = BuildContext(
        project=project,
        config=config,
        reactor_projects=reactor,
        repository=repository,
        properties=parse_properties(request.properties),
        environ=environ,
        logger=logger,
    )

    archiver = AssemblyArchiver()
    built = archiver.create_archive(descriptor, context, formats=request.formats or None)
    logger.info("Build completed for run %s: %d archive(s)", run_id, len(built))
    if log_file:
        logger.info("Build log stored at %s", log_file)
    return built
