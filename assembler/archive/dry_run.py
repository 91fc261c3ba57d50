from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from assembler.archive.writers import (
    ArchiveEntry,
    ArchiveFinalizer,
    ArchiveSource,
    ArchiveWriter,
    DirectorySource,
)
from assembler.framework.formatting import Transformer


class DryRunWriter(ArchiveWriter):
    """Logs and records every call it receives; never touches the filesystem."""

    def __init__(self, delegate: ArchiveWriter, logger: logging.Logger | None = None):
        super().__init__()
        self.delegate = delegate
        self.logger = logger or logging.getLogger(__name__)
        self.calls: list[tuple[str, Any]] = []

    def _record(self, method: str, detail: Any) -> None:
        self.calls.append((method, detail))
        self.logger.info("DRY RUN: %s %s", method, detail)

    @property
    def destination(self) -> Path | None:  # type: ignore[override]
        return self.delegate.destination

    @destination.setter
    def destination(self, value: Path | None) -> None:
        if hasattr(self, "delegate"):
            self.delegate.destination = value

    def unwrap(self) -> ArchiveWriter:
        return self.delegate.unwrap()

    def add_file(
        self,
        path: Path | str,
        dest_name: str,
        *,
        mode: int | None = None,
        transformer: Transformer | None = None,
    ) -> None:
        self._record("add_file", f"{path} -> {dest_name}")

    def add_file_set(self, file_set: DirectorySource) -> None:
        self._record("add_file_set", f"{file_set.directory} -> {file_set.prefix or '<root>'}")

    def add_archived_file_set(self, archived: ArchiveSource) -> None:
        self._record("add_archived_file_set", f"{archived.archive} -> {archived.prefix or '<root>'}")

    def add_finalizer(self, finalizer: ArchiveFinalizer) -> None:
        self._record("add_finalizer", type(finalizer).__name__)

    def set_finalizer_target(self, writer: ArchiveWriter) -> None:
        self._record("set_finalizer_target", type(writer).__name__)

    def virtual_paths(self) -> list[str]:
        return []

    def resources(self) -> list[ArchiveEntry]:
        return []

    def create_archive(self) -> Path:
        destination = self.destination
        generated = self.delegate.virtual_paths()
        if generated:
            self._record("generated_entries", generated)
        self._record("create_archive", destination)
        if destination is None:
            return Path()
        return destination
