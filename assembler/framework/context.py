from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from assembler.framework.config import AssemblerConfig
from assembler.framework.interpolation import ExpressionEvaluator
from assembler.framework.project import ProjectModel
from assembler.resolution.repository import ArtifactRepository


@dataclass(frozen=True)
class BuildContext:
    """Everything one assembly run reads besides the descriptor itself."""

    project: ProjectModel
    config: AssemblerConfig = field(default_factory=AssemblerConfig)
    reactor_projects: tuple[ProjectModel, ...] = ()
    repository: ArtifactRepository | None = None
    properties: Mapping[str, str] = field(default_factory=dict)
    overrides: Mapping[str, str] = field(default_factory=dict)
    environ: Mapping[str, str] | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("assembler"))

    def __post_init__(self) -> None:
        if not self.reactor_projects:
            object.__setattr__(self, "reactor_projects", (self.project,))
        else:
            object.__setattr__(self, "reactor_projects", tuple(self.reactor_projects))

    def _under_basedir(self, value: str | None) -> Path | None:
        if value is None:
            return None
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.project.basedir / path

    @property
    def basedir(self) -> Path:
        return self.project.basedir

    @property
    def output_directory(self) -> Path:
        return self._under_basedir(self.config.output_directory) or self.basedir

    @property
    def working_directory(self) -> Path:
        return self._under_basedir(self.config.working_directory) or self.basedir

    @property
    def temporary_root(self) -> Path:
        return self._under_basedir(self.config.temporary_directory) or self.basedir

    @property
    def archive_base_directory(self) -> Path | None:
        return self._under_basedir(self.config.archive_base_directory)

    @property
    def final_name(self) -> str:
        return self.project.final_name or f"{self.project.artifact_id}-{self.project.version}"

    def evaluator(self, project: ProjectModel | None = None) -> ExpressionEvaluator:
        return ExpressionEvaluator(
            project=project or self.project,
            overrides=dict(self.overrides),
            properties=dict(self.properties),
            environ=self.environ,
        )
