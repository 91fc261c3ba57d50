from __future__ import annotations

from assembler.archive.tasks import add_file_sets
from assembler.archive.writers import ArchiveWriter
from assembler.framework.context import BuildContext
from assembler.framework.model import AssemblyDescriptor
from assembler.resolution.resolver import DependencyResolver

PHASE_ID = "file-sets"
ORDER = 20


def apply(
    descriptor: AssemblyDescriptor,
    writer: ArchiveWriter,
    context: BuildContext,
    *,
    resolver: DependencyResolver,
) -> None:
    if not descriptor.file_sets:
        return
    add_file_sets(writer, descriptor.file_sets, context)
