"""Reusable steps that turn descriptor sections into writer calls.

Phases decide *which* file sets, artifacts and dependency sets go into an
assembly; the tasks here decide *where* they land and how their content is
transformed on the way in.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, Sequence

from assembler.archive.writers import ArchiveSource, ArchiveWriter, DirectorySource
from assembler.framework.artifacts import Artifact
from assembler.framework.context import BuildContext
from assembler.framework.errors import (
    ArchiveCreationFailure,
    ArchiverError,
    FormattingFailure,
)
from assembler.framework.formatting import Transformer, make_transformer, mode_to_int
from assembler.framework.interpolation import file_name_mapping, output_directory
from assembler.framework.model import DependencySet, FileSet, UnpackOptions
from assembler.framework.project import ProjectModel
from assembler.resolution.filters import filter_artifacts
from assembler.resolution.scopes import ScopeFilter

DEFAULT_INCLUDES = ("**/*",)
NON_ARCHIVE_TYPES = ("pom",)


def _is_absolute(path: str) -> bool:
    return Path(path).is_absolute() or path.startswith(("/", "\\"))


def file_set_directory(file_set: FileSet, basedir: Path, archive_base_dir: Path | None) -> Path:
    """Where a file set reads from: project basedir, or the archive base directory when set."""

    source = file_set.directory
    if source is None or not source.strip():
        source = str(basedir.absolute())
    if archive_base_dir is not None:
        return archive_base_dir / source
    if _is_absolute(source):
        return Path(source)
    return basedir / source


def check_archive_base_directory(context: BuildContext) -> Path | None:
    base = context.archive_base_directory
    if base is None:
        return None
    if not base.exists():
        raise ArchiveCreationFailure(f"The archive base directory '{base.absolute()}' does not exist")
    if not base.is_dir():
        raise ArchiveCreationFailure(
            f"The archive base directory '{base.absolute()}' exists, but it is not a directory"
        )
    return base


def add_file_sets(
    writer: ArchiveWriter,
    file_sets: Iterable[FileSet],
    context: BuildContext,
    *,
    project: ProjectModel | None = None,
    module: ProjectModel | None = None,
) -> None:
    archive_base_dir = check_archive_base_directory(context)
    for file_set in file_sets:
        add_file_set(
            writer,
            file_set,
            context,
            archive_base_dir=archive_base_dir,
            project=project,
            module=module,
        )


def add_file_set(
    writer: ArchiveWriter,
    file_set: FileSet,
    context: BuildContext,
    *,
    archive_base_dir: Path | None = None,
    project: ProjectModel | None = None,
    module: ProjectModel | None = None,
) -> None:
    project = project or context.project
    evaluator = context.evaluator(project).for_artifact(None, module=module)

    dest = file_set.output_directory
    if dest is None:
        dest = file_set.directory
        if dest and _is_absolute(dest):
            context.logger.warning(
                "File set directory %s is absolute and no output_directory is set; "
                "the archive layout will depend on the build machine",
                dest,
            )
    dest_directory = output_directory(dest, evaluator)

    source_dir = file_set_directory(file_set, project.basedir, archive_base_dir)
    context.logger.debug("The archive base directory is '%s'", archive_base_dir)
    if not source_dir.exists():
        context.logger.debug("File set directory %s does not exist; skipping", source_dir)
        return
    if source_dir.absolute() == Path(source_dir.absolute().anchor):
        raise FormattingFailure(
            f"Your assembly descriptor specifies a directory of {source_dir}, which is your "
            "*entire* file system. These are not the files you are looking for"
        )

    transformer = make_transformer(
        filtered=file_set.filtered,
        line_ending=file_set.line_ending,
        evaluator=context.evaluator(project),
        non_filtered_extensions=file_set.non_filtered_file_extensions,
    )
    if transformer is None:
        context.logger.debug("NOT reformatting any files in %s", source_dir)

    context.logger.debug(
        "FileSet[%s] dir perms: %s file perms: %s%s",
        dest_directory,
        file_set.directory_mode or "-",
        file_set.file_mode or "-",
        f" lineEndings: {file_set.line_ending}" if file_set.line_ending else "",
    )
    try:
        writer.add_file_set(
            DirectorySource(
                directory=source_dir,
                prefix=dest_directory,
                includes=file_set.includes,
                excludes=file_set.excludes,
                use_default_excludes=file_set.use_default_excludes,
                file_mode=mode_to_int(file_set.file_mode, context.logger),
                directory_mode=mode_to_int(file_set.directory_mode, context.logger),
                transformer=transformer,
            )
        )
    except ArchiverError as exc:
        raise ArchiveCreationFailure(f"Error adding directory to archive: {exc}") from exc


def _relocate_if_destination(writer: ArchiveWriter, artifact: Artifact, context: BuildContext) -> Artifact:
    destination = writer.destination
    if artifact.file is None or destination is None:
        return artifact
    if artifact.file.absolute() != Path(destination).absolute():
        return artifact

    temp_root = context.temporary_root
    relocated = temp_root / artifact.file.name
    context.logger.warning(
        "Artifact: %s references the same file as the assembly destination file. "
        "Moving it to a temporary location for inclusion.",
        artifact.id,
    )
    try:
        temp_root.mkdir(parents=True, exist_ok=True)
        shutil.copy2(artifact.file, relocated)
    except OSError as exc:
        raise ArchiveCreationFailure(
            f"Error moving artifact file: '{artifact.file}' to temporary location: {relocated}. "
            f"Reason: {exc}"
        ) from exc
    return artifact.with_file(relocated)


def add_artifact(
    writer: ArchiveWriter,
    artifact: Artifact,
    context: BuildContext,
    *,
    output_dir: str | None,
    name_mapping: str,
    file_mode: str | None = None,
    directory_mode: str | None = None,
    unpack: bool = False,
    unpack_options: UnpackOptions | None = None,
    transformer: Transformer | None = None,
    module: ProjectModel | None = None,
) -> None:
    """Copy an artifact file into the archive, or unpack its contents."""

    artifact = _relocate_if_destination(writer, artifact, context)
    evaluator = context.evaluator().for_artifact(artifact, module=module)
    dest_directory = output_directory(output_dir, evaluator)
    fmode = mode_to_int(file_mode, context.logger)
    dmode = mode_to_int(directory_mode, context.logger)

    if unpack:
        _add_unpacked(
            writer,
            artifact,
            context,
            dest_directory=dest_directory,
            file_mode=fmode,
            directory_mode=dmode,
            options=unpack_options,
            transformer=transformer,
        )
        return

    target = dest_directory + file_name_mapping(name_mapping, evaluator)
    if artifact.file is None:
        raise ArchiveCreationFailure(
            f"Error adding file '{artifact.id}' to archive: it has no associated file"
        )
    context.logger.debug(
        "Adding artifact: %s with file: %s to assembly location: %s.", artifact.id, artifact.file, target
    )
    try:
        writer.add_file(artifact.file, target, mode=fmode)
    except ArchiverError as exc:
        raise ArchiveCreationFailure(f"Error adding file '{artifact.id}' to archive: {exc}") from exc


def _add_unpacked(
    writer: ArchiveWriter,
    artifact: Artifact,
    context: BuildContext,
    *,
    dest_directory: str,
    file_mode: int | None,
    directory_mode: int | None,
    options: UnpackOptions | None,
    transformer: Transformer | None,
) -> None:
    includes = tuple(options.includes) if options and options.includes else DEFAULT_INCLUDES
    excludes = tuple(options.excludes) if options else ()
    use_default_excludes = options.use_default_excludes if options else True

    if artifact.file is None:
        context.logger.warning(
            "Skipping artifact: %s; it does not have an associated file or directory.", artifact.id
        )
        return
    try:
        if artifact.file.is_dir():
            context.logger.debug("Adding artifact directory contents for: %s to: %s", artifact, dest_directory)
            writer.add_file_set(
                DirectorySource(
                    directory=artifact.file,
                    prefix=dest_directory,
                    includes=includes,
                    excludes=excludes,
                    use_default_excludes=use_default_excludes,
                    file_mode=file_mode,
                    directory_mode=directory_mode,
                    transformer=transformer,
                )
            )
        else:
            context.logger.debug("Unpacking artifact contents for: %s to: %s", artifact, dest_directory)
            writer.add_archived_file_set(
                ArchiveSource(
                    archive=artifact.file,
                    prefix=dest_directory,
                    includes=includes,
                    excludes=excludes,
                    use_default_excludes=use_default_excludes,
                    file_mode=file_mode,
                    directory_mode=directory_mode,
                    transformer=transformer,
                )
            )
    except ArchiverError as exc:
        raise ArchiveCreationFailure(f"Error adding file-set for '{artifact.id}' to archive: {exc}") from exc


def _unpack_transformer(dependency_set: DependencySet, context: BuildContext) -> Transformer | None:
    options = dependency_set.unpack_options
    if not dependency_set.unpack or options is None:
        return None
    return make_transformer(
        filtered=options.filtered,
        line_ending=options.line_ending,
        evaluator=context.evaluator(),
        encoding=options.encoding,
    )


def _warn_concrete_output(
    dependency_set: DependencySet,
    default_output_directory: str | None,
    default_file_name_mapping: str | None,
    log: logging.Logger,
) -> None:
    directory = dependency_set.output_directory
    if directory is None:
        directory = default_output_directory
    mapping = dependency_set.output_file_name_mapping or default_file_name_mapping
    if (directory is None or "${" not in directory) and (mapping is None or "${" not in mapping):
        log.warning(
            "NOTE: Your assembly specifies a dependency set that matches multiple artifacts, but "
            "specifies a concrete output format. THIS MAY RESULT IN ONE OR MORE ARTIFACTS BEING "
            "OBSCURED!\n\nOutput directory: '%s'\nOutput filename mapping: '%s'",
            directory,
            mapping,
        )


def dependency_set_artifacts(
    dependency_set: DependencySet,
    resolved: Sequence[Artifact],
    project: ProjectModel,
    log: logging.Logger,
) -> list[Artifact]:
    """Resolved artifacts plus the project's own outputs, filtered for `dependency_set`."""

    candidates: dict[Artifact, Artifact] = {artifact: artifact for artifact in resolved}

    if dependency_set.use_project_artifact:
        artifact = project.artifact
        if artifact is not None and artifact.file is not None:
            candidates.setdefault(artifact, artifact)
        else:
            log.warning(
                "Cannot include project artifact: %s; it doesn't have an associated file or directory.",
                artifact or project.id,
            )

    if dependency_set.use_project_attachments:
        for attachment in project.attached_artifacts:
            if attachment.file is not None:
                candidates.setdefault(attachment, attachment)
            else:
                log.warning(
                    "Cannot include attached artifact: %s for project: %s; "
                    "it doesn't have an associated file or directory.",
                    attachment.id,
                    project.id,
                )

    if dependency_set.use_transitive_filtering:
        log.debug("Filtering dependency artifacts USING transitive dependency path information.")
    else:
        log.debug("Filtering dependency artifacts WITHOUT transitive dependency path information.")

    return filter_artifacts(
        candidates.values(),
        includes=dependency_set.includes,
        excludes=dependency_set.excludes,
        strict=dependency_set.use_strict_filtering,
        transitive=dependency_set.use_transitive_filtering,
        logger=log,
        additional=[ScopeFilter(dependency_set.scope)],
    )


def add_dependency_set(
    writer: ArchiveWriter,
    dependency_set: DependencySet,
    resolved: Sequence[Artifact],
    context: BuildContext,
    *,
    project: ProjectModel | None = None,
    module: ProjectModel | None = None,
    default_output_directory: str | None = None,
    default_file_name_mapping: str | None = None,
) -> list[Artifact]:
    """Add every artifact `dependency_set` selects; returns the artifacts added."""

    project = project or context.project
    log = context.logger
    log.debug("Processing DependencySet (output=%s)", dependency_set.output_directory)

    if not dependency_set.use_transitive_dependencies and dependency_set.use_transitive_filtering:
        log.warning(
            "DependencySet has nonsensical configuration: use_transitive_dependencies == false "
            "AND use_transitive_filtering == true. Transitive filtering flag will be ignored."
        )

    artifacts = dependency_set_artifacts(dependency_set, resolved, project, log)

    options = dependency_set.unpack_options
    rewrites_content = (
        dependency_set.unpack
        and options is not None
        and (options.filtered or options.line_ending is not None)
    )
    if not rewrites_content and len(artifacts) > 1:
        _warn_concrete_output(dependency_set, default_output_directory, default_file_name_mapping, log)

    log.debug("Adding %d dependency artifacts.", len(artifacts))
    transformer = _unpack_transformer(dependency_set, context)
    out_dir = dependency_set.output_directory
    if out_dir is None:
        out_dir = default_output_directory
    mapping = dependency_set.output_file_name_mapping or default_file_name_mapping or ""

    for artifact in artifacts:
        if artifact.type in NON_ARCHIVE_TYPES:
            add_artifact(
                writer,
                artifact,
                context,
                output_dir=out_dir,
                name_mapping=mapping,
                file_mode=dependency_set.file_mode,
                module=module,
            )
            continue
        log.debug("Adding dependency artifact %s.", artifact.id)
        add_artifact(
            writer,
            artifact,
            context,
            output_dir=out_dir,
            name_mapping=mapping,
            file_mode=dependency_set.file_mode,
            directory_mode=dependency_set.directory_mode,
            unpack=dependency_set.unpack,
            unpack_options=options if dependency_set.unpack else None,
            transformer=transformer,
            module=module,
        )
    return artifacts
