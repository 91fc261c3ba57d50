from __future__ import annotations

from assembler.archive.tasks import add_dependency_set
from assembler.archive.writers import ArchiveWriter
from assembler.framework.context import BuildContext
from assembler.framework.model import AssemblyDescriptor
from assembler.resolution.resolver import DependencyResolver

PHASE_ID = "dependency-sets"
ORDER = 40


def apply(
    descriptor: AssemblyDescriptor,
    writer: ArchiveWriter,
    context: BuildContext,
    *,
    resolver: DependencyResolver,
) -> None:
    if not descriptor.dependency_sets:
        context.logger.debug("No dependency sets specified.")
        return
    if not context.project.dependencies:
        context.logger.debug(
            "Project %s has no dependencies. Only its own artifacts can be added.", context.project.id
        )

    resolved = resolver.resolve_for_dependency_sets(descriptor, descriptor.dependency_sets, context)
    for dependency_set, artifacts in resolved.items():
        add_dependency_set(writer, dependency_set, artifacts, context)
