from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from assembler.archive.writers import (
    ArchiveEntry,
    ArchiveFinalizer,
    ArchiveSource,
    ArchiveWriter,
    DirectorySource,
    FileInfo,
    FileSelector,
    all_selected,
)
from assembler.framework.formatting import Transformer
from assembler.framework.interpolation import archive_path


class SelectionGuard:
    """Runs a selector chain at most once per (source, name).

    Handlers accumulate content as a side effect of selection, and the entry
    list is enumerated more than once per build. The memo keeps each file from
    being merged twice.
    """

    def __init__(self, selectors: Iterable[FileSelector]):
        self.selectors = tuple(selectors)
        self._verdicts: dict[tuple[str, str], bool] = {}

    def is_selected(self, info: FileInfo) -> bool:
        key = (info.source, info.name)
        verdict = self._verdicts.get(key)
        if verdict is None:
            verdict = all_selected(self.selectors, info)
            self._verdicts[key] = verdict
        return verdict


class AssemblyProxyWriter(ArchiveWriter):
    """Wraps the real writer with base-directory prefixing and selection.

    File sets rooted at the working directory are skipped, and file sets rooted
    above it get the working directory excluded, so an assembly never packs its
    own intermediate output.
    """

    def __init__(
        self,
        delegate: ArchiveWriter,
        *,
        prefix: str = "",
        selectors: Iterable[FileSelector] = (),
        working_directory: Path | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__()
        self.delegate = delegate
        self.prefix = prefix.replace("\\", "/")
        if self.prefix and not self.prefix.endswith("/"):
            self.prefix += "/"
        self.guard = SelectionGuard(selectors)
        self.working_directory = Path(working_directory) if working_directory is not None else None
        self.logger = logger or logging.getLogger(__name__)
        self._in_public_api = False
        delegate.set_finalizer_target(self)

    @property
    def destination(self) -> Path | None:  # type: ignore[override]
        return self.delegate.destination

    @destination.setter
    def destination(self, value: Path | None) -> None:
        if hasattr(self, "delegate"):
            self.delegate.destination = value

    def unwrap(self) -> ArchiveWriter:
        return self.delegate.unwrap()

    def _accept(self, info: FileInfo) -> bool:
        if self._in_public_api:
            return True
        return self.guard.is_selected(info)

    def _forward(self, action, *args, **kwargs) -> None:
        self._in_public_api = True
        try:
            action(*args, **kwargs)
        finally:
            self._in_public_api = False

    def add_file(
        self,
        path: Path | str,
        dest_name: str,
        *,
        mode: int | None = None,
        transformer: Transformer | None = None,
    ) -> None:
        source = Path(path)
        info = FileInfo(name=dest_name, source=str(source), is_file=True, opener=source.read_bytes)
        if not self._accept(info):
            self.logger.debug("Not adding %s: rejected by a file selector", dest_name)
            return
        target = archive_path(self.prefix, dest_name)
        self.logger.debug("Adding file: %s to archive location: %s", source, target)
        self._forward(self.delegate.add_file, source, target, mode=mode, transformer=transformer)

    def add_file_set(self, file_set: DirectorySource) -> None:
        directory = Path(file_set.directory)
        includes = file_set.includes
        excludes = file_set.excludes

        if self.working_directory is not None:
            source_dir = directory.resolve()
            work_dir = self.working_directory.resolve()
            if source_dir == work_dir:
                self.logger.debug(
                    "Not adding file set %s: it is the assembly working directory", directory
                )
                return
            if work_dir.is_relative_to(source_dir):
                work_rel = work_dir.relative_to(source_dir).as_posix()
                self.logger.debug("Excluding assembly working directory %s from %s", work_rel, directory)
                excludes = excludes + (work_rel,)
                includes = tuple(p for p in includes if not p.replace("\\", "/").startswith(work_rel))

        selectors = file_set.selectors if self._in_public_api else (self.guard,) + file_set.selectors
        forwarded = file_set.with_changes(
            prefix=archive_path(self.prefix, file_set.prefix) if file_set.prefix else self.prefix,
            includes=includes,
            excludes=excludes,
            selectors=selectors,
        )
        self.logger.debug("Adding directory %s under %s", directory, forwarded.prefix or "<root>")
        self._forward(self.delegate.add_file_set, forwarded)

    def add_archived_file_set(self, archived: ArchiveSource) -> None:
        selectors = archived.selectors if self._in_public_api else (self.guard,) + archived.selectors
        forwarded = archived.with_changes(
            prefix=archive_path(self.prefix, archived.prefix) if archived.prefix else self.prefix,
            selectors=selectors,
        )
        self.logger.debug("Adding archive %s under %s", archived.archive, forwarded.prefix or "<root>")
        self._forward(self.delegate.add_archived_file_set, forwarded)

    def add_finalizer(self, finalizer: ArchiveFinalizer) -> None:
        self.delegate.add_finalizer(finalizer)

    def set_finalizer_target(self, writer: ArchiveWriter) -> None:
        self.delegate.set_finalizer_target(writer)

    def virtual_paths(self) -> list[str]:
        return self.delegate.virtual_paths()

    def new_scratch_file(self, prefix: str = "assembly-", suffix: str = ".tmp") -> Path:
        return self.delegate.new_scratch_file(prefix, suffix)

    def resources(self) -> list[ArchiveEntry]:
        return self.delegate.resources()

    def create_archive(self) -> Path:
        return self.delegate.create_archive()
