from __future__ import annotations

import logging
from pathlib import Path

from assembler.framework.context import BuildContext
from assembler.framework.model import ModuleSet
from assembler.framework.project import ProjectModel
from assembler.resolution.filters import filter_projects


def _same_dir(left: Path, right: Path) -> bool:
    return left.resolve() == right.resolve()


def project_modules(
    project: ProjectModel,
    reactor_projects: tuple[ProjectModel, ...],
    *,
    include_sub_modules: bool,
    logger: logging.Logger,
) -> list[ProjectModel]:
    """Reactor projects living in `project`'s module directories, in reactor order."""

    found: list[ProjectModel] = []
    pending = [project]
    seen: set[str] = {project.id}
    while pending:
        parent = pending.pop(0)
        module_dirs = [parent.basedir / module for module in parent.modules]
        for candidate in reactor_projects:
            if candidate.id in seen:
                continue
            if any(_same_dir(candidate.basedir, module_dir) for module_dir in module_dirs):
                logger.debug("Found module %s of %s", candidate.id, parent.id)
                seen.add(candidate.id)
                found.append(candidate)
                if include_sub_modules:
                    pending.append(candidate)
    return found


def get_module_projects(module_set: ModuleSet, context: BuildContext) -> list[ProjectModel]:
    """Select the projects a module set applies to, after include/exclude patterns."""

    project = context.project
    reactor = context.reactor_projects
    candidates: list[ProjectModel] | None = None

    if module_set.use_all_reactor_projects:
        if not module_set.include_sub_modules:
            candidates = list(reactor)
        project = reactor[0]

    if candidates is None:
        candidates = project_modules(
            project,
            reactor,
            include_sub_modules=module_set.include_sub_modules,
            logger=context.logger,
        )

    return filter_projects(
        candidates,
        includes=module_set.includes,
        excludes=module_set.excludes,
        logger=context.logger,
    )
