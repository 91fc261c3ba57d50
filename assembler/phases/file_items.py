from __future__ import annotations

from pathlib import Path
from typing import Sequence

from assembler.archive.writers import ArchiveWriter
from assembler.framework.context import BuildContext
from assembler.framework.errors import ArchiveCreationFailure, ArchiverError, InvalidConfiguration
from assembler.framework.formatting import Transformer, make_transformer, mode_to_int
from assembler.framework.interpolation import archive_path, output_directory
from assembler.framework.model import AssemblyDescriptor, FileItem
from assembler.resolution.resolver import DependencyResolver

PHASE_ID = "file-items"
ORDER = 10


def _absolute(path: str, basedir: Path) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else basedir / candidate


def _concatenating(sources: Sequence[Path], then: Transformer | None) -> Transformer:
    def _transform(content: bytes, name: str) -> bytes:
        joined = b"".join(source.read_bytes() for source in sources)
        return then(joined, name) if then is not None else joined

    return _transform


def add_file_item(writer: ArchiveWriter, item: FileItem, context: BuildContext) -> str:
    """Add one `files` entry; returns its archive path."""

    if (item.source is not None) == bool(item.sources):
        raise InvalidConfiguration("Misconfigured file: one of source or sources must be set")
    if item.source is None and item.dest_name is None:
        raise InvalidConfiguration("Misconfigured file: specify dest_name when using sources")

    basedir = context.basedir
    source_path = item.source if item.source is not None else item.sources[0]
    source = _absolute(source_path, basedir)
    dest_name = item.dest_name or Path(source_path).name

    evaluator = context.evaluator().for_artifact(None, module=context.project)
    target = archive_path(output_directory(item.output_directory, evaluator), dest_name)

    transformer = make_transformer(
        filtered=item.filtered,
        line_ending=item.line_ending,
        evaluator=context.evaluator(),
    )
    if item.sources:
        transformer = _concatenating([_absolute(p, basedir) for p in item.sources], transformer)

    try:
        writer.add_file(
            source,
            target,
            mode=mode_to_int(item.file_mode, context.logger),
            transformer=transformer,
        )
    except ArchiverError as exc:
        raise ArchiveCreationFailure(f"Error adding file to archive: {exc}") from exc
    return target


def apply(
    descriptor: AssemblyDescriptor,
    writer: ArchiveWriter,
    context: BuildContext,
    *,
    resolver: DependencyResolver,
) -> None:
    for item in descriptor.files:
        add_file_item(writer, item, context)
