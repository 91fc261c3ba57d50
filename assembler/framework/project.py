from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from phasekit import ConfigNamespace

from assembler.framework.artifacts import Artifact
from assembler.framework.errors import InvalidConfiguration


@dataclass(frozen=True)
class ProjectModel:
    """One buildable project: coordinates, layout and the artifacts it produced."""

    group_id: str
    artifact_id: str
    version: str
    basedir: Path
    packaging: str = "jar"
    name: str | None = None
    build_directory: Path | None = None
    final_name: str | None = None
    properties: dict[str, str] = field(default_factory=dict)
    artifact: Artifact | None = None
    attached_artifacts: tuple[Artifact, ...] = ()
    dependencies: tuple[Artifact, ...] = ()
    modules: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "basedir", Path(self.basedir))
        if self.build_directory is None:
            object.__setattr__(self, "build_directory", self.basedir / "target")
        else:
            object.__setattr__(self, "build_directory", Path(self.build_directory))
        if not self.final_name:
            object.__setattr__(self, "final_name", f"{self.artifact_id}-{self.version}")
        object.__setattr__(self, "attached_artifacts", tuple(self.attached_artifacts))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "modules", tuple(self.modules))

    @property
    def id(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.packaging}:{self.version}"

    def placeholder_artifact(self) -> Artifact:
        """Coordinates-only artifact for a project that has not been packaged."""

        return Artifact(
            group_id=self.group_id,
            artifact_id=self.artifact_id,
            version=self.version,
            type=self.packaging,
        )

    def project_artifact(self) -> Artifact:
        return self.artifact if self.artifact is not None else self.placeholder_artifact()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, base_dir: Path | str | None = None) -> "ProjectModel":
        """Parse a project mapping; relative paths resolve against `base_dir`."""

        root = Path(base_dir) if base_dir is not None else Path.cwd()
        ns = ConfigNamespace(data, path="project")
        try:
            group_id = ns.get_str("group_id") or ""
            artifact_id = ns.get_str("artifact_id") or ""
            version = ns.get_str("version") or ""
            packaging = ns.get_str("packaging", default="jar") or "jar"
            basedir = _resolve(root, ns.get_str("basedir", default=".")) or root
            build_directory = _resolve(basedir, ns.get_str("build_directory", default=None))
            raw_artifact = ns.get_mapping("artifact", default=None)
            artifact = None
            if raw_artifact:
                raw_artifact.setdefault("group_id", group_id)
                raw_artifact.setdefault("artifact_id", artifact_id)
                raw_artifact.setdefault("version", version)
                raw_artifact.setdefault("type", packaging)
                artifact = _artifact_with_base(raw_artifact, basedir)
            project = cls(
                group_id=group_id,
                artifact_id=artifact_id,
                version=version,
                basedir=basedir,
                packaging=packaging,
                name=ns.get_str("name", default=None),
                build_directory=build_directory,
                final_name=ns.get_str("final_name", default=None),
                properties={
                    str(k): str(v) for k, v in ns.get_mapping("properties", default=None).items()
                },
                artifact=artifact,
                attached_artifacts=tuple(
                    _artifact_with_base(item, basedir)
                    for item in ns.get_list_mapping("attached_artifacts", default=[])
                ),
                dependencies=tuple(
                    _artifact_with_base(item, basedir)
                    for item in ns.get_list_mapping("dependencies", default=[])
                ),
                modules=tuple(ns.get_list_str("modules", default=[])),
            )
            ns.assert_consumed()
        except (TypeError, ValueError) as exc:
            if isinstance(exc, InvalidConfiguration):
                raise
            raise InvalidConfiguration(f"Invalid project definition: {exc}") from exc
        return project


def _resolve(root: Path, value: str | None) -> Path | None:
    if value is None:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else (root / path)


def _artifact_with_base(data: Mapping[str, Any], basedir: Path) -> Artifact:
    artifact = Artifact.from_dict(data)
    if artifact.file is not None and not artifact.file.is_absolute():
        artifact = artifact.with_file(basedir / artifact.file)
    return artifact
