from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from phasekit import ConfigNamespace

from assembler.framework.errors import InvalidConfiguration

TAR_LONG_FILE_MODES = ("warn", "fail", "truncate", "gnu", "posix", "posix_warn", "omit")
MERGE_MANIFEST_MODES = ("skip", "merge", "mergewithoutmain")


@dataclass(frozen=True)
class JarArchiveConfig:
    manifest_file: str | None = None
    manifest_entries: dict[str, str] = field(default_factory=dict)
    manifest_sections: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "JarArchiveConfig":
        sections: dict[str, dict[str, str]] = {}
        for name, attrs in ns.get_mapping("manifest_sections", default=None).items():
            if not isinstance(attrs, Mapping):
                raise TypeError(f"{ns.path}.manifest_sections.{name} must be a mapping")
            sections[str(name)] = {str(k): str(v) for k, v in attrs.items()}
        return cls(
            manifest_file=ns.get_str("manifest_file", default=None),
            manifest_entries={
                str(k): str(v) for k, v in ns.get_mapping("manifest_entries", default=None).items()
            },
            manifest_sections=sections,
        )


@dataclass(frozen=True)
class ArchiverOptions:
    tar_long_file_mode: str = "warn"
    recompress_zipped_files: bool = True
    ignore_dir_format_extensions: bool = False
    dry_run: bool = False
    update_only: bool = False
    ignore_permissions: bool = False
    merge_manifest_mode: str | None = None
    output_timestamp: datetime | None = None
    override_uid: int | None = None
    override_user_name: str | None = None
    override_gid: int | None = None
    override_group_name: str | None = None
    archiver_config: Any = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "ArchiverOptions":
        return cls(
            tar_long_file_mode=ns.get_str(
                "tar_long_file_mode", default="warn", choices=TAR_LONG_FILE_MODES
            )
            or "warn",
            recompress_zipped_files=ns.get_bool("recompress_zipped_files", default=True),
            ignore_dir_format_extensions=ns.get_bool("ignore_dir_format_extensions", default=False),
            dry_run=ns.get_bool("dry_run", default=False),
            update_only=ns.get_bool("update_only", default=False),
            ignore_permissions=ns.get_bool("ignore_permissions", default=False),
            merge_manifest_mode=ns.get_str(
                "merge_manifest_mode", default=None, choices=MERGE_MANIFEST_MODES
            ),
            output_timestamp=parse_output_timestamp(ns.get_any("output_timestamp", default=None)),
            override_uid=ns.get_optional_int("override_uid", min_value=0),
            override_user_name=ns.get_str("override_user_name", default=None, allow_empty=True)
            or None,
            override_gid=ns.get_optional_int("override_gid", min_value=0),
            override_group_name=ns.get_str("override_group_name", default=None, allow_empty=True)
            or None,
            archiver_config=ns.get_any("archiver_config", default=None),
        )


def parse_output_timestamp(raw: Any) -> datetime | None:
    """Accept epoch seconds or an ISO-8601 string; naive values are UTC."""

    if raw is None:
        return None
    if isinstance(raw, bool):
        raise TypeError("output_timestamp must be epoch seconds or an ISO-8601 string")
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, int):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        try:
            value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Invalid output_timestamp: {raw!r}") from exc
    else:
        raise TypeError(
            f"output_timestamp must be epoch seconds or an ISO-8601 string (type={type(raw).__name__})"
        )
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class AssemblerConfig:
    """Run-level options loaded from `config/assembler.yaml`."""

    output_directory: str = "target"
    working_directory: str = "target/assembly/work"
    temporary_directory: str = "target/archive-tmp"
    archive_base_directory: str | None = None
    log_dir: str | None = None
    formats: tuple[str, ...] = ()
    append_assembly_id: bool = True
    archiver: ArchiverOptions = field(default_factory=ArchiverOptions)
    jar: JarArchiveConfig = field(default_factory=JarArchiveConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "AssemblerConfig":
        ns = ConfigNamespace(dict(data or {}), path="")
        try:
            cfg = cls(
                output_directory=ns.get_str("output_directory", default="target") or "target",
                working_directory=ns.get_str("working_directory", default="target/assembly/work")
                or "target/assembly/work",
                temporary_directory=ns.get_str("temporary_directory", default="target/archive-tmp")
                or "target/archive-tmp",
                archive_base_directory=ns.get_str("archive_base_directory", default=None),
                log_dir=ns.get_str("log_dir", default=None),
                formats=tuple(ns.get_list_str("formats", default=[])),
                append_assembly_id=ns.get_bool("append_assembly_id", default=True),
                archiver=ArchiverOptions.from_namespace(ns.namespace("archiver", default=None)),
                jar=JarArchiveConfig.from_namespace(ns.namespace("jar", default=None)),
            )
            ns.assert_consumed()
        except (TypeError, ValueError) as exc:
            if isinstance(exc, InvalidConfiguration):
                raise
            raise InvalidConfiguration(f"Invalid assembler config: {exc}") from exc
        return cfg
