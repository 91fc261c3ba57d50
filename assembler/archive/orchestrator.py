"""Builds one archive per (descriptor, format).

`AssemblyArchiver.build()` is the single entry point the CLI and tests use:

1. validate the descriptor id,
2. skip the build when the destination is newer than the working directory,
3. create a format writer, wrap it in the proxy (and dry-run) layers,
4. run the ordered phases, then materialize the archive.

Writer and I/O failures surface as `ArchiveCreationFailure`; resolution failures
as `DependencyResolutionFailure`. Both carry the assembly id.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from phasekit import PhaseRecorder, PhaseRegistry, PhaseRunner

from assembler.archive.dry_run import DryRunWriter
from assembler.archive.manifest import JarSecurityFileSelector, ManifestCreationFinalizer
from assembler.archive.proxy import AssemblyProxyWriter
from assembler.archive.writers import (
    ArchiveFinalizer,
    ArchiveWriter,
    FileSelector,
    JarWriter,
    TarWriter,
    WarWriter,
    ZipWriter,
    get_writer,
)
from assembler.framework.configurator import configure_component
from assembler.framework.context import BuildContext
from assembler.framework.errors import (
    ArchiveCreationFailure,
    ArchiverError,
    DependencyResolutionFailure,
    InvalidConfiguration,
)
from assembler.framework.interpolation import distribution_name, output_directory
from assembler.framework.model import AssemblyDescriptor
from assembler.handlers import select_handlers
from assembler.phases.registry import default_phase_registry
from assembler.resolution.resolver import DependencyResolver

WriterFactory = Callable[[str], ArchiveWriter]


def destination_name(output_name: str, format: str, *, ignore_dir_format_extensions: bool) -> str:
    if ignore_dir_format_extensions and format.startswith("dir"):
        return output_name
    return f"{output_name}.{format}"


def has_newer_files(directory: Path, since: float) -> bool:
    """True when any file below `directory` was modified after `since`.

    A missing or unreadable directory has no newer files.
    """

    if not directory.is_dir():
        return False
    for root, _dirs, files in os.walk(directory):
        for name in files:
            try:
                if os.stat(os.path.join(root, name)).st_mtime > since:
                    return True
            except OSError:
                continue
    return False


def should_recreate(destination: Path, working_directory: Path) -> bool:
    if not destination.exists():
        return True
    return has_newer_files(working_directory, destination.stat().st_mtime)


def _carry_phase(target: Exception, source: Exception) -> None:
    for attr in ("phase_id", "phase_order"):
        if hasattr(source, attr) and not hasattr(target, attr):
            setattr(target, attr, getattr(source, attr))


class AssemblyArchiver:
    def __init__(
        self,
        *,
        phase_registry: PhaseRegistry | None = None,
        resolver: DependencyResolver | None = None,
        recorder: PhaseRecorder | None = None,
        writer_factory: WriterFactory = get_writer,
    ):
        self.phase_registry = phase_registry or default_phase_registry()
        self.resolver = resolver or DependencyResolver()
        self.writer_factory = writer_factory
        self._runner = PhaseRunner(recorder=recorder)

    def build(
        self,
        descriptor: AssemblyDescriptor,
        output_name: str,
        format: str,
        context: BuildContext,
        timestamp: datetime | None = None,
    ) -> Path:
        assembly_id = descriptor.id
        if assembly_id is None or not assembly_id.strip():
            raise InvalidConfiguration("Assembly ID must be present and non-empty.")

        options = context.config.archiver
        destination = context.output_directory / destination_name(
            output_name, format, ignore_dir_format_extensions=options.ignore_dir_format_extensions
        )

        if not should_recreate(destination, context.working_directory):
            context.logger.info(
                "Skipping archive creation - no source files have been modified since last archive creation"
            )
            return destination

        try:
            writer = self.create_writer(
                descriptor,
                format,
                context,
                destination=destination,
                timestamp=timestamp or options.output_timestamp,
            )
            self._runner.run(context, self.phase_registry, descriptor, writer, context, resolver=self.resolver)
            return writer.create_archive()
        except DependencyResolutionFailure as exc:
            wrapped = DependencyResolutionFailure(
                f"Unable to resolve dependencies for assembly '{assembly_id}': {exc}",
                assembly_id=assembly_id,
            )
            _carry_phase(wrapped, exc)
            raise wrapped from exc
        except ArchiveCreationFailure as exc:
            if exc.assembly_id is None:
                exc.assembly_id = assembly_id
            if exc.format is None:
                exc.format = format
            raise
        except (ArchiverError, OSError) as exc:
            wrapped_failure = ArchiveCreationFailure(
                f"Error creating assembly archive {assembly_id}: {exc}",
                assembly_id=assembly_id,
                format=format,
            )
            _carry_phase(wrapped_failure, exc)
            raise wrapped_failure from exc

    def base_directory(self, descriptor: AssemblyDescriptor, context: BuildContext) -> str:
        if descriptor.base_directory is None:
            return context.final_name
        evaluator = context.evaluator().for_artifact(None, module=context.project)
        return output_directory(descriptor.base_directory, evaluator)

    def create_writer(
        self,
        descriptor: AssemblyDescriptor,
        format: str,
        context: BuildContext,
        *,
        destination: Path,
        timestamp: datetime | None = None,
    ) -> ArchiveWriter:
        """Format writer wrapped in the proxy layer, with handlers and defaults applied."""

        options = context.config.archiver
        evaluator = context.evaluator()
        handlers = select_handlers(
            descriptor.container_descriptor_handlers, evaluator, logger=context.logger
        )

        writer = self.writer_factory(format)
        if isinstance(writer, TarWriter):
            writer.long_file_mode = options.tar_long_file_mode
        if isinstance(writer, WarWriter):
            writer.expect_web_xml = False
        if isinstance(writer, ZipWriter):
            writer.recompress_added_zips = options.recompress_zipped_files

        extra_selectors: list[FileSelector] = []
        finalizers: list[ArchiveFinalizer] = list(handlers)
        if isinstance(writer, JarWriter):
            if options.merge_manifest_mode is not None:
                writer.merge_manifest_mode = options.merge_manifest_mode
            extra_selectors.append(JarSecurityFileSelector())
            finalizers.append(
                ManifestCreationFinalizer(
                    jar_config=context.config.jar,
                    basedir=context.basedir,
                    evaluator=evaluator,
                )
            )

        if options.archiver_config is not None:
            context.logger.debug("Configuring archiver: '%s'", type(writer).__name__)
            configure_component(
                writer, options.archiver_config, evaluator, path="archiver.archiver_config"
            )

        prefix = self.base_directory(descriptor, context) if descriptor.include_base_directory else ""
        wrapped: ArchiveWriter = AssemblyProxyWriter(
            writer,
            prefix=prefix,
            selectors=[*handlers, *extra_selectors],
            working_directory=context.working_directory,
            logger=context.logger,
        )
        for finalizer in finalizers:
            wrapped.add_finalizer(finalizer)
        if options.dry_run:
            wrapped = DryRunWriter(wrapped, context.logger)

        wrapped.destination = destination
        writer.ignore_permissions = options.ignore_permissions
        writer.forced = not options.update_only
        if timestamp is not None:
            writer.last_modified = timestamp
        writer.override_uid = options.override_uid
        writer.override_gid = options.override_gid
        if options.override_user_name and options.override_user_name.strip():
            writer.override_user_name = options.override_user_name.strip()
        if options.override_group_name and options.override_group_name.strip():
            writer.override_group_name = options.override_group_name.strip()
        return wrapped

    def create_archive(
        self,
        descriptor: AssemblyDescriptor,
        context: BuildContext,
        formats: Iterable[str] | None = None,
    ) -> list[Path]:
        """Build the descriptor once per format; returns the archive paths in order."""

        requested = tuple(formats or ()) or descriptor.formats or context.config.formats
        if not requested:
            raise InvalidConfiguration(
                f"No archive formats requested for assembly {descriptor.id!r}"
            )
        name = distribution_name(
            context.final_name, descriptor.id, append_assembly_id=context.config.append_assembly_id
        )
        timestamp = context.config.archiver.output_timestamp
        built: list[Path] = []
        for format in requested:
            path = self.build(descriptor, name, format, context, timestamp=timestamp)
            context.logger.info("Built %s archive: %s", format, path)
            built.append(path)
        return built
