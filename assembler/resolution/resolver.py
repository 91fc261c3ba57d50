from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from assembler.framework.artifacts import Artifact, ResolutionAccumulator
from assembler.framework.context import BuildContext
from assembler.framework.errors import DependencyResolutionFailure
from assembler.framework.model import AssemblyDescriptor, DependencySet, ModuleSet
from assembler.framework.project import ProjectModel
from assembler.resolution.modules import get_module_projects
from assembler.resolution.repository import (
    ArtifactRepository,
    ProjectGraphRepository,
    transitive_closure,
)
from assembler.resolution.scopes import ScopeFilter


class DependencyResolver:
    """Resolves the artifacts each dependency set may draw from.

    Results are keyed by `DependencySet` identity. Every set gets a fresh
    `ResolutionAccumulator`, so the same artifact reached through several
    projects keeps the highest scope any of them gave it.
    """

    def __init__(self, repository: ArtifactRepository | None = None):
        self._repository = repository

    def _repository_for(self, context: BuildContext) -> ArtifactRepository:
        if self._repository is not None:
            return self._repository
        if context.repository is not None:
            return context.repository
        fallback = ProjectGraphRepository()
        for project in context.reactor_projects:
            fallback.register_project(project)
        return fallback

    def resolve_for_dependency_sets(
        self,
        descriptor: AssemblyDescriptor,
        dependency_sets: Sequence[DependencySet],
        context: BuildContext,
    ) -> dict[DependencySet, list[Artifact]]:
        repository = self._repository_for(context)
        result: dict[DependencySet, list[Artifact]] = {}
        for dependency_set in dependency_sets:
            accumulator = ResolutionAccumulator()
            accumulator.add_all(
                self.dependency_artifacts(
                    context.project,
                    transitive=dependency_set.use_transitive_dependencies,
                    repository=repository,
                    scope=dependency_set.scope,
                )
            )
            result[dependency_set] = accumulator.artifacts()
            context.logger.debug(
                "Resolved %d artifact(s) for a dependency set of assembly %s",
                len(result[dependency_set]),
                descriptor.id,
            )
        return result

    def resolve_for_module_set(
        self,
        descriptor: AssemblyDescriptor,
        module_set: ModuleSet,
        dependency_sets: Sequence[DependencySet],
        context: BuildContext,
    ) -> dict[DependencySet, list[Artifact]]:
        repository = self._repository_for(context)
        modules: list[ProjectModel] = []
        binaries = module_set.binaries
        if binaries is not None:
            modules = [_with_placeholder(p) for p in get_module_projects(module_set, context)]

        result: dict[DependencySet, list[Artifact]] = {}
        for dependency_set in dependency_sets:
            accumulator = ResolutionAccumulator()
            transitive = dependency_set.use_transitive_dependencies
            scope = dependency_set.scope
            accumulator.add_all(
                self.dependency_artifacts(
                    context.project, transitive=transitive, repository=repository, scope=scope
                )
            )
            if binaries is not None and binaries.include_dependencies:
                for module in modules:
                    accumulator.add_all(
                        self.dependency_artifacts(
                            module, transitive=transitive, repository=repository, scope=scope
                        )
                    )
            result[dependency_set] = accumulator.artifacts()
        return result

    def dependency_artifacts(
        self,
        project: ProjectModel,
        *,
        transitive: bool,
        repository: ArtifactRepository,
        scope: str | None = None,
    ) -> list[Artifact]:
        """Resolve `project`'s dependencies, skipping those outside `scope` when given."""

        include = ScopeFilter(scope) if scope is not None else None
        root_trail = project.project_artifact().id
        try:
            if transitive:
                return transitive_closure(
                    repository, project.dependencies, root_trail=root_trail, include=include
                )
            return [
                repository.resolve(dep).with_trail((root_trail, dep.id))
                for dep in project.dependencies
                if include is None or include(dep)
            ]
        except DependencyResolutionFailure as exc:
            raise DependencyResolutionFailure(
                f"Failed to resolve dependencies for project {project.id}: {exc}"
            ) from exc


def _with_placeholder(project: ProjectModel) -> ProjectModel:
    """Give an unpackaged module a coordinates-only artifact."""

    if project.artifact is not None:
        return project
    return replace(project, artifact=project.placeholder_artifact())
