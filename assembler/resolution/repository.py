from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol

from phasekit import ConfigNamespace

from assembler.framework.artifacts import Artifact
from assembler.framework.errors import DependencyResolutionFailure, InvalidConfiguration
from assembler.framework.project import ProjectModel
from assembler.resolution.scopes import transitive_scope


class ArtifactRepository(Protocol):
    def resolve(self, artifact: Artifact) -> Artifact:
        """Return `artifact` with its file attached, or raise `DependencyResolutionFailure`."""
        ...

    def dependencies(self, artifact: Artifact) -> list[Artifact]:
        """Declared direct dependencies of `artifact` (scope and optional flag set)."""
        ...


@dataclass
class _Node:
    artifact: Artifact
    dependencies: list[Artifact] = field(default_factory=list)


class ProjectGraphRepository:
    """In-memory repository: a fixed graph of artifacts, their files and dependencies."""

    def __init__(self, nodes: Iterable[tuple[Artifact, Iterable[Artifact]]] = ()):
        self._nodes: dict[tuple[str, str, str, str, str | None], _Node] = {}
        for artifact, deps in nodes:
            self.register(artifact, deps)

    def register(self, artifact: Artifact, dependencies: Iterable[Artifact] = ()) -> None:
        node = self._nodes.get(artifact.key)
        if node is None:
            self._nodes[artifact.key] = _Node(artifact=artifact, dependencies=list(dependencies))
            return
        if artifact.file is not None and node.artifact.file is None:
            node.artifact = artifact
        for dep in dependencies:
            if dep not in node.dependencies:
                node.dependencies.append(dep)

    def register_project(self, project: ProjectModel) -> None:
        """Make a reactor project's own outputs resolvable."""

        artifact = project.project_artifact()
        self.register(artifact, project.dependencies)
        for attached in project.attached_artifacts:
            self.register(attached, ())

    def __contains__(self, artifact: object) -> bool:
        return isinstance(artifact, Artifact) and artifact.key in self._nodes

    def resolve(self, artifact: Artifact) -> Artifact:
        if artifact.file is not None:
            return artifact
        node = self._nodes.get(artifact.key)
        if node is None:
            raise DependencyResolutionFailure(f"Artifact not found in repository: {artifact.id}")
        if node.artifact.file is None:
            raise DependencyResolutionFailure(f"Artifact has no file in repository: {artifact.id}")
        return artifact.with_file(node.artifact.file)

    def dependencies(self, artifact: Artifact) -> list[Artifact]:
        node = self._nodes.get(artifact.key)
        return list(node.dependencies) if node is not None else []

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, base_dir: Path | str | None = None) -> "ProjectGraphRepository":
        """Build from `{artifacts: [{group_id, ..., file, dependencies: [...]}]}`."""

        root = Path(base_dir) if base_dir is not None else Path.cwd()
        repo = cls()
        ns = ConfigNamespace(data, path="repository")
        try:
            for idx, raw in enumerate(ns.get_list_mapping("artifacts", default=[])):
                raw = dict(raw)
                deps = raw.pop("dependencies", None) or []
                if not isinstance(deps, list):
                    raise TypeError(f"repository.artifacts[{idx}].dependencies must be a list")
                artifact = Artifact.from_dict(raw)
                if artifact.file is not None and not artifact.file.is_absolute():
                    artifact = artifact.with_file(root / artifact.file)
                repo.register(artifact, [Artifact.from_dict(dep) for dep in deps])
            ns.assert_consumed()
        except (TypeError, ValueError) as exc:
            if isinstance(exc, InvalidConfiguration):
                raise
            raise InvalidConfiguration(f"Invalid repository definition: {exc}") from exc
        return repo


def transitive_closure(
    repository: ArtifactRepository,
    roots: Iterable[Artifact],
    *,
    root_trail: str,
    include: Callable[[Artifact], bool] | None = None,
) -> list[Artifact]:
    """Walk dependencies breadth-first; the nearest version of each artifact wins.

    Optional and test/provided-only transitive dependencies are not inherited.
    Artifacts rejected by `include` are neither resolved nor walked into.
    Every returned artifact carries its dependency trail, starting at `root_trail`.
    """

    found: list[Artifact] = []
    nearest: dict[str, str] = {}
    queue: deque[tuple[Artifact, tuple[str, ...]]] = deque(
        (artifact, (root_trail,)) for artifact in roots
    )

    while queue:
        artifact, trail = queue.popleft()
        if include is not None and not include(artifact):
            continue
        chosen = nearest.get(artifact.conflict_id)
        if chosen is not None and chosen != artifact.version:
            continue
        first_visit = chosen is None
        nearest[artifact.conflict_id] = artifact.version

        resolved = repository.resolve(artifact).with_trail(trail + (artifact.id,))
        found.append(resolved)
        if not first_visit:
            continue

        for dep in repository.dependencies(artifact):
            if dep.optional:
                continue
            scope = transitive_scope(artifact.scope, dep.scope)
            if scope is None:
                continue
            queue.append((dep.with_scope(scope), trail + (artifact.id,)))

    return found
