from __future__ import annotations


class AssemblyError(Exception):
    """Base class for every failure the assembler reports."""


class InvalidConfiguration(AssemblyError, ValueError):
    pass


class NoMatchingWriter(AssemblyError):
    def __init__(self, format: str):
        super().__init__(f"No archive writer available for format: {format!r}")
        self.format = format


class DependencyResolutionFailure(AssemblyError):
    def __init__(self, message: str, *, assembly_id: str | None = None):
        super().__init__(message)
        self.assembly_id = assembly_id


class ArchiveCreationFailure(AssemblyError):
    def __init__(
        self,
        message: str,
        *,
        assembly_id: str | None = None,
        format: str | None = None,
    ):
        super().__init__(message)
        self.assembly_id = assembly_id
        self.format = format


class FormattingFailure(AssemblyError):
    pass


class ArchiverError(AssemblyError):
    """Raised by writers; the orchestrator reports it as `ArchiveCreationFailure`."""
