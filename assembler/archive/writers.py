"""Archive writers and the format dispatch table.

A writer collects *sources* (single files, directory file sets, archived file
sets), expands them into entries on demand and materializes them in
`create_archive()`. Materialization runs the registered finalizers first, then
writes to a temporary sibling of the destination and moves it into place, so a
failed build never leaves a partial archive behind.
"""

from __future__ import annotations

import dataclasses
import io
import logging
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Protocol

from phasekit import ConfigNamespace

from assembler.archive.manifest import MANIFEST_PATH, Manifest
from assembler.foundation.paths import PathMatcher, scan_directory
from assembler.framework.config import MERGE_MANIFEST_MODES, TAR_LONG_FILE_MODES
from assembler.framework.errors import ArchiverError, InvalidConfiguration, NoMatchingWriter
from assembler.framework.formatting import Transformer
from assembler.framework.interpolation import archive_path

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755
_TAR_NAME_LIMIT = 100
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_NESTED_ARCHIVE_SUFFIXES = (".zip", ".jar", ".war", ".ear", ".rar", ".sar", ".har", ".par")


@dataclass(frozen=True)
class FileInfo:
    """What selectors see: the entry name plus lazy access to its content."""

    name: str
    source: str
    is_file: bool = True
    opener: Callable[[], bytes] | None = field(default=None, repr=False, compare=False)

    @property
    def is_dir(self) -> bool:
        return not self.is_file

    def read(self) -> bytes:
        if self.opener is None:
            return b""
        return self.opener()


class FileSelector(Protocol):
    def is_selected(self, info: FileInfo) -> bool: ...


class ArchiveFinalizer(Protocol):
    def finalize_creation(self, writer: "ArchiveWriter") -> None: ...

    def virtual_paths(self) -> list[str]: ...


@dataclass(frozen=True)
class SingleFile:
    path: Path
    dest_name: str
    mode: int | None = None
    transformer: Transformer | None = None


@dataclass(frozen=True)
class DirectorySource:
    """A directory scanned with include/exclude patterns (a "file set")."""

    directory: Path
    prefix: str = ""
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    use_default_excludes: bool = True
    file_mode: int | None = None
    directory_mode: int | None = None
    include_empty_dirs: bool = True
    selectors: tuple[FileSelector, ...] = ()
    transformer: Transformer | None = None

    def with_changes(self, **changes) -> "DirectorySource":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ArchiveSource:
    """The contents of an existing zip/jar/tar archive (an "archived file set")."""

    archive: Path
    prefix: str = ""
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    use_default_excludes: bool = True
    file_mode: int | None = None
    directory_mode: int | None = None
    selectors: tuple[FileSelector, ...] = ()
    transformer: Transformer | None = None

    def with_changes(self, **changes) -> "ArchiveSource":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    is_dir: bool
    mode: int
    mtime: float
    source: str
    opener: Callable[[], bytes] | None = field(default=None, repr=False, compare=False)

    def read(self) -> bytes:
        if self.is_dir or self.opener is None:
            return b""
        return self.opener()


def _file_reader(
    path: Path, transformer: Transformer | None, name: str = ""
) -> Callable[[], bytes]:
    def _read() -> bytes:
        content = path.read_bytes()
        return transformer(content, name) if transformer is not None else content

    return _read


def _member_reader(
    archive: Path, member: str, transformer: Transformer | None
) -> Callable[[], bytes]:
    def _read() -> bytes:
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                content = zf.read(member)
        else:
            with tarfile.open(archive) as tf:
                extracted = tf.extractfile(member)
                content = extracted.read() if extracted is not None else b""
        return transformer(content, member) if transformer is not None else content

    return _read


def _archive_members(archive: Path) -> Iterator[tuple[str, bool]]:
    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                yield info.filename.rstrip("/"), info.is_dir()
        return
    if tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            for member in tf.getmembers():
                if member.isdir() or member.isfile():
                    yield member.name.rstrip("/"), member.isdir()
        return
    raise ArchiverError(f"Unsupported archive, cannot unpack: {archive}")


class ArchiveWriter:
    """Base writer: source bookkeeping, entry expansion and materialization."""

    format_name = "archive"

    def __init__(self) -> None:
        self.destination: Path | None = None
        self.forced = True
        self.ignore_permissions = False
        self.last_modified: datetime | None = None
        self.override_uid: int | None = None
        self.override_gid: int | None = None
        self.override_user_name: str | None = None
        self.override_group_name: str | None = None
        self._sources: list[SingleFile | DirectorySource | ArchiveSource] = []
        self._finalizers: list[ArchiveFinalizer] = []
        self._finalizer_target: ArchiveWriter | None = None
        self._scratch_dir: Path | None = None

    def configure(self, cfg: ConfigNamespace) -> None:
        """Apply format-specific options; the base writer has none."""

    def unwrap(self) -> "ArchiveWriter":
        return self

    def add_file(
        self,
        path: Path | str,
        dest_name: str,
        *,
        mode: int | None = None,
        transformer: Transformer | None = None,
    ) -> None:
        source = Path(path)
        if not source.is_file():
            raise ArchiverError(f"{source} isn't a file.")
        self._sources.append(
            SingleFile(path=source, dest_name=dest_name, mode=mode, transformer=transformer)
        )

    def add_file_set(self, file_set: DirectorySource) -> None:
        if not Path(file_set.directory).is_dir():
            raise ArchiverError(f"{file_set.directory} isn't a directory.")
        self._sources.append(file_set)

    def add_archived_file_set(self, archived: ArchiveSource) -> None:
        if not Path(archived.archive).is_file():
            raise ArchiverError(f"{archived.archive} isn't a file.")
        self._sources.append(archived)

    def add_finalizer(self, finalizer: ArchiveFinalizer) -> None:
        self._finalizers.append(finalizer)

    def set_finalizer_target(self, writer: "ArchiveWriter") -> None:
        """Finalizers receive `writer` (usually a wrapping proxy) instead of this writer."""

        self._finalizer_target = writer

    def virtual_paths(self) -> list[str]:
        """Entries the finalizers will generate at materialization, before any prefix."""

        paths: list[str] = []
        for finalizer in self._finalizers:
            paths.extend(finalizer.virtual_paths())
        return paths

    def new_scratch_file(self, prefix: str = "assembly-", suffix: str = ".tmp") -> Path:
        """A temporary file that lives until materialization finishes."""

        if self._scratch_dir is None:
            raise ArchiverError("Scratch files are only available while the archive is being created")
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=self._scratch_dir)
        os.close(fd)
        return Path(name)

    def resources(self) -> list[ArchiveEntry]:
        """Expand every source into entries. Later entries replace earlier ones by name."""

        entries: dict[str, ArchiveEntry] = {}
        for source in list(self._sources):
            for entry in self._expand(source):
                if entry.name in entries:
                    logger.debug("Entry %s is overwritten by %s", entry.name, entry.source)
                entries[entry.name] = entry
        return list(entries.values())

    def _expand(self, source: SingleFile | DirectorySource | ArchiveSource) -> Iterator[ArchiveEntry]:
        if isinstance(source, SingleFile):
            yield ArchiveEntry(
                name=archive_path("", source.dest_name),
                is_dir=False,
                mode=source.mode if source.mode is not None else DEFAULT_FILE_MODE,
                mtime=source.path.stat().st_mtime,
                source=str(source.path),
                opener=_file_reader(source.path, source.transformer, source.dest_name),
            )
            return

        matcher = PathMatcher.of(
            source.includes, source.excludes, use_default_excludes=source.use_default_excludes
        )
        file_mode = source.file_mode if source.file_mode is not None else DEFAULT_FILE_MODE
        dir_mode = source.directory_mode if source.directory_mode is not None else DEFAULT_DIR_MODE

        if isinstance(source, DirectorySource):
            for rel, path, is_dir in scan_directory(source.directory, matcher):
                if is_dir and not source.include_empty_dirs:
                    continue
                info = FileInfo(
                    name=rel,
                    source=str(path),
                    is_file=not is_dir,
                    opener=None if is_dir else _file_reader(path, None),
                )
                if not all_selected(source.selectors, info):
                    continue
                yield ArchiveEntry(
                    name=archive_path(source.prefix, rel),
                    is_dir=is_dir,
                    mode=dir_mode if is_dir else file_mode,
                    mtime=path.stat().st_mtime,
                    source=str(path),
                    opener=None if is_dir else _file_reader(path, source.transformer, rel),
                )
            return

        archive = Path(source.archive)
        mtime = archive.stat().st_mtime
        for member, is_dir in _archive_members(archive):
            if not member or not matcher.matches(member):
                continue
            info = FileInfo(
                name=member,
                source=f"{archive}!{member}",
                is_file=not is_dir,
                opener=None if is_dir else _member_reader(archive, member, None),
            )
            if not all_selected(source.selectors, info):
                continue
            yield ArchiveEntry(
                name=archive_path(source.prefix, member),
                is_dir=is_dir,
                mode=dir_mode if is_dir else file_mode,
                mtime=mtime,
                source=info.source,
                opener=None if is_dir else _member_reader(archive, member, source.transformer),
            )

    def _finalize_entries(self, entries: list[ArchiveEntry]) -> list[ArchiveEntry]:
        """Hook for writers that post-process the entry list (manifests, checks)."""

        return entries

    def _apply_options(self, entries: list[ArchiveEntry]) -> list[ArchiveEntry]:
        out: list[ArchiveEntry] = []
        timestamp = self.last_modified.timestamp() if self.last_modified is not None else None
        for entry in entries:
            changes: dict[str, object] = {}
            if timestamp is not None:
                changes["mtime"] = timestamp
            if self.ignore_permissions:
                changes["mode"] = DEFAULT_DIR_MODE if entry.is_dir else DEFAULT_FILE_MODE
            out.append(dataclasses.replace(entry, **changes) if changes else entry)
        return out

    def _is_up_to_date(self, entries: list[ArchiveEntry]) -> bool:
        destination = self.destination
        if destination is None or not destination.exists():
            return False
        dest_mtime = destination.stat().st_mtime
        return all(entry.mtime <= dest_mtime for entry in entries)

    def create_archive(self) -> Path:
        destination = self.destination
        if destination is None:
            raise ArchiverError("No destination set for archive")

        with tempfile.TemporaryDirectory(prefix="assembler-") as scratch:
            self._scratch_dir = Path(scratch)
            try:
                target = self._finalizer_target or self
                for finalizer in list(self._finalizers):
                    finalizer.finalize_creation(target)

                entries = self._apply_options(self._finalize_entries(self.resources()))
                if not self.forced and self._is_up_to_date(entries):
                    logger.info("Archive %s is up to date", destination)
                    return destination

                destination.parent.mkdir(parents=True, exist_ok=True)
                self._write_atomically(entries, destination)
            except (OSError, tarfile.TarError, zipfile.BadZipFile) as exc:
                raise ArchiverError(f"Error creating archive {destination}: {exc}") from exc
            finally:
                self._scratch_dir = None
        logger.debug("Wrote %s archive %s", self.format_name, destination)
        return destination

    def _write_atomically(self, entries: list[ArchiveEntry], destination: Path) -> None:
        fd, name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
        os.close(fd)
        partial = Path(name)
        try:
            self._write(entries, partial)
            os.replace(partial, destination)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

    def _write(self, entries: list[ArchiveEntry], target: Path) -> None:
        raise NotImplementedError


def all_selected(selectors: Iterable[FileSelector], info: FileInfo) -> bool:
    for selector in selectors:
        if not selector.is_selected(info):
            return False
    return True


def _zip_date_time(mtime: float) -> tuple[int, int, int, int, int, int]:
    stamp = datetime.fromtimestamp(mtime).timetuple()[:6]
    return max(stamp, _ZIP_EPOCH)  # type: ignore[return-value]


class ZipWriter(ArchiveWriter):
    format_name = "zip"

    def __init__(self) -> None:
        super().__init__()
        self.compress = True
        self.recompress_added_zips = True

    def configure(self, cfg: ConfigNamespace) -> None:
        self.compress = cfg.get_bool("compress", default=self.compress)
        self.recompress_added_zips = cfg.get_bool(
            "recompress_added_zips", default=self.recompress_added_zips
        )

    def _compression_for(self, entry: ArchiveEntry) -> int:
        if not self.compress:
            return zipfile.ZIP_STORED
        if not self.recompress_added_zips and entry.name.lower().endswith(_NESTED_ARCHIVE_SUFFIXES):
            return zipfile.ZIP_STORED
        return zipfile.ZIP_DEFLATED

    def _write(self, entries: list[ArchiveEntry], target: Path) -> None:
        with zipfile.ZipFile(target, "w") as zf:
            for entry in entries:
                name = entry.name + "/" if entry.is_dir else entry.name
                info = zipfile.ZipInfo(name, date_time=_zip_date_time(entry.mtime))
                kind = stat.S_IFDIR if entry.is_dir else stat.S_IFREG
                info.external_attr = ((kind | entry.mode) & 0xFFFF) << 16
                if entry.is_dir:
                    info.external_attr |= 0x10
                    zf.writestr(info, b"")
                    continue
                info.compress_type = self._compression_for(entry)
                zf.writestr(info, entry.read())


class JarWriter(ZipWriter):
    """Zip writer that always emits `META-INF/MANIFEST.MF` as the first entry."""

    format_name = "jar"

    def __init__(self) -> None:
        super().__init__()
        self.manifest: Manifest = Manifest.minimal()
        self.merge_manifest_mode: str | None = None

    def configure(self, cfg: ConfigNamespace) -> None:
        super().configure(cfg)
        self.merge_manifest_mode = cfg.get_str(
            "merge_manifest_mode", default=self.merge_manifest_mode, choices=MERGE_MANIFEST_MODES
        )

    def set_manifest(self, manifest: Manifest) -> None:
        self.manifest = manifest

    def _finalize_entries(self, entries: list[ArchiveEntry]) -> list[ArchiveEntry]:
        manifest = Manifest(main=dict(self.manifest.main), sections={
            name: dict(attrs) for name, attrs in self.manifest.sections.items()
        })
        mode = self.merge_manifest_mode or "skip"
        others: list[ArchiveEntry] = []
        meta_inf: ArchiveEntry | None = None
        for entry in entries:
            if entry.name == MANIFEST_PATH:
                if mode != "skip":
                    try:
                        found = Manifest.parse(entry.read())
                    except (ValueError, UnicodeDecodeError) as exc:
                        raise ArchiverError(f"Invalid manifest in {entry.source}: {exc}") from exc
                    manifest.merge(found, include_main=(mode == "merge"))
                continue
            if entry.name == "META-INF" and entry.is_dir:
                meta_inf = entry
                continue
            others.append(entry)

        now = max((entry.mtime for entry in entries), default=datetime.now().timestamp())
        content = manifest.render()
        head = [
            meta_inf
            or ArchiveEntry(name="META-INF", is_dir=True, mode=DEFAULT_DIR_MODE, mtime=now, source="<manifest>"),
            ArchiveEntry(
                name=MANIFEST_PATH,
                is_dir=False,
                mode=DEFAULT_FILE_MODE,
                mtime=now,
                source="<manifest>",
                opener=lambda: content,
            ),
        ]
        return head + others


class WarWriter(JarWriter):
    format_name = "war"

    def __init__(self) -> None:
        super().__init__()
        self.expect_web_xml = True

    def configure(self, cfg: ConfigNamespace) -> None:
        super().configure(cfg)
        self.expect_web_xml = cfg.get_bool("expect_web_xml", default=self.expect_web_xml)

    def _finalize_entries(self, entries: list[ArchiveEntry]) -> list[ArchiveEntry]:
        if self.expect_web_xml and not any(e.name == "WEB-INF/web.xml" for e in entries):
            raise ArchiverError("WEB-INF/web.xml is required for war archives (expect_web_xml)")
        return super()._finalize_entries(entries)


_TAR_SUFFIXES: tuple[tuple[str, str], ...] = (
    (".tar.gz", "gz"),
    (".tgz", "gz"),
    (".tar.bz2", "bz2"),
    (".tbz2", "bz2"),
    (".tar.xz", "xz"),
    (".txz", "xz"),
)


def tar_compression_for(name: str) -> str | None:
    """Compression implied by an archive name or format (`x.tgz`, `tar.bz2`, ...)."""

    lowered = "." + name.strip().lower()
    for suffix, compression in _TAR_SUFFIXES:
        if lowered.endswith(suffix):
            return compression
    if lowered.endswith(".tar"):
        return None
    if ".tar." in lowered:
        raise InvalidConfiguration(f"Unsupported tar compression in {name!r}")
    raise InvalidConfiguration(f"Not a tar archive name: {name!r}")


class TarWriter(ArchiveWriter):
    format_name = "tar"

    def __init__(self, compression: str | None = None) -> None:
        super().__init__()
        self.compression = compression
        self.long_file_mode = "warn"

    def configure(self, cfg: ConfigNamespace) -> None:
        self.long_file_mode = (
            cfg.get_str("long_file_mode", default=self.long_file_mode, choices=TAR_LONG_FILE_MODES)
            or "warn"
        )

    def _tar_format(self) -> int:
        if self.long_file_mode in ("posix", "posix_warn"):
            return tarfile.PAX_FORMAT
        return tarfile.GNU_FORMAT

    def _entry_name(self, entry: ArchiveEntry) -> str | None:
        name = entry.name + "/" if entry.is_dir else entry.name
        if len(name) < _TAR_NAME_LIMIT:
            return name
        mode = self.long_file_mode
        if mode == "fail":
            raise ArchiverError(f"Entry name too long for tar archive: {name}")
        if mode == "truncate":
            return name[: _TAR_NAME_LIMIT - 1]
        if mode == "omit":
            logger.info("Omitting entry with long name: %s", name)
            return None
        if mode in ("warn", "posix_warn"):
            logger.warning("Entry name is longer than %d characters: %s", _TAR_NAME_LIMIT, name)
        return name

    def _write(self, entries: list[ArchiveEntry], target: Path) -> None:
        write_mode = f"w:{self.compression}" if self.compression else "w"
        with tarfile.open(target, write_mode, format=self._tar_format()) as tf:  # type: ignore[call-overload]
            for entry in entries:
                name = self._entry_name(entry)
                if name is None:
                    continue
                info = tarfile.TarInfo(name.rstrip("/") if entry.is_dir else name)
                info.mtime = int(entry.mtime)
                info.mode = entry.mode
                if self.override_uid is not None:
                    info.uid = self.override_uid
                if self.override_gid is not None:
                    info.gid = self.override_gid
                if self.override_user_name is not None:
                    info.uname = self.override_user_name
                if self.override_group_name is not None:
                    info.gname = self.override_group_name
                if entry.is_dir:
                    info.type = tarfile.DIRTYPE
                    tf.addfile(info)
                    continue
                data = entry.read()
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))


class DirectoryWriter(ArchiveWriter):
    """Writes the layout as a plain directory tree."""

    format_name = "dir"

    def _write_atomically(self, entries: list[ArchiveEntry], destination: Path) -> None:
        staging = Path(
            tempfile.mkdtemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
        )
        try:
            self._write(entries, staging)
            if destination.exists():
                if destination.is_dir():
                    shutil.rmtree(destination)
                else:
                    destination.unlink()
            os.replace(staging, destination)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    def _is_up_to_date(self, entries: list[ArchiveEntry]) -> bool:
        if self.destination is None or not self.destination.is_dir():
            return False
        return super()._is_up_to_date(entries)

    def _write(self, entries: list[ArchiveEntry], target: Path) -> None:
        for entry in entries:
            path = target / entry.name
            if entry.is_dir:
                path.mkdir(parents=True, exist_ok=True)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(entry.read())
            if not self.ignore_permissions and not entry.is_dir:
                os.chmod(path, entry.mode)
            os.utime(path, (entry.mtime, entry.mtime))
        for entry in entries:
            if entry.is_dir and not self.ignore_permissions:
                os.chmod(target / entry.name, entry.mode | stat.S_IRWXU)


_WRITERS: dict[str, type[ArchiveWriter]] = {
    "zip": ZipWriter,
    "jar": JarWriter,
    "ear": JarWriter,
    "war": WarWriter,
}

SUPPORTED_FORMATS: tuple[str, ...] = (
    "zip", "jar", "ear", "war", "tar", "tar.gz", "tgz", "tar.bz2", "tbz2", "tar.xz", "txz", "dir",
)


def get_writer(format: str) -> ArchiveWriter:
    """Build a fresh writer for `format`."""

    key = (format or "").strip().lower()
    if not key:
        raise NoMatchingWriter(format)
    if key.startswith("dir"):
        return DirectoryWriter()
    if key in ("tar", "tgz", "tbz2", "txz") or key.startswith("tar."):
        return TarWriter(compression=tar_compression_for(key))
    writer_cls = _WRITERS.get(key)
    if writer_cls is None:
        raise NoMatchingWriter(format)
    return writer_cls()
