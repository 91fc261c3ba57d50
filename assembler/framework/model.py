"""Assembly descriptor model.

Descriptors are plain YAML mappings. Every section is parsed through a strict
`ConfigNamespace`, so misspelled keys are rejected instead of ignored. The
parsed objects are frozen and never mutated by the build.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, TypeVar

import yaml

from phasekit import ConfigNamespace

from assembler.framework.errors import InvalidConfiguration

DEFAULT_FILE_NAME_MAPPING = (
    "${artifact.artifactId}-${artifact.version}${dashClassifier?}.${artifact.extension}"
)
DEFAULT_MODULE_DIRECTORY_MAPPING = "${module.artifactId}"

LINE_ENDINGS = ("keep", "dos", "windows", "unix", "crlf", "lf")

T = TypeVar("T")


def _items(
    ns: ConfigNamespace, key: str, parse: Callable[[ConfigNamespace], T]
) -> tuple[T, ...]:
    parsed: list[T] = []
    for idx, raw in enumerate(ns.get_list_mapping(key, default=[])):
        child = ConfigNamespace(raw, path=f"{ns.path}.{key}[{idx}]")
        parsed.append(parse(child))
        child.assert_consumed()
    return tuple(parsed)


def _mode(ns: ConfigNamespace, key: str) -> str | None:
    raw = ns.get_any(key, default=None)
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise TypeError(f"{ns.path}.{key} must be an octal string")
    if isinstance(raw, int):
        # YAML reads `0644` as decimal 644; keep the digits as written.
        return str(raw)
    return str(raw).strip() or None


def _line_ending(ns: ConfigNamespace, key: str = "line_ending") -> str | None:
    return ns.get_str(key, default=None, choices=LINE_ENDINGS)


@dataclass(frozen=True)
class UnpackOptions:
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    filtered: bool = False
    line_ending: str | None = None
    use_default_excludes: bool = True
    encoding: str | None = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "UnpackOptions":
        return cls(
            includes=tuple(ns.get_list_str("includes", default=[])),
            excludes=tuple(ns.get_list_str("excludes", default=[])),
            filtered=ns.get_bool("filtered", default=False),
            line_ending=_line_ending(ns),
            use_default_excludes=ns.get_bool("use_default_excludes", default=True),
            encoding=ns.get_str("encoding", default=None),
        )


def _unpack_options(ns: ConfigNamespace) -> UnpackOptions | None:
    if not ns.has("unpack_options"):
        return None
    return UnpackOptions.from_namespace(ns.namespace("unpack_options"))


@dataclass(frozen=True)
class FileSet:
    directory: str | None = None
    output_directory: str | None = None
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    use_default_excludes: bool = True
    file_mode: str | None = None
    directory_mode: str | None = None
    filtered: bool = False
    line_ending: str | None = None
    non_filtered_file_extensions: tuple[str, ...] = ()

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "FileSet":
        return cls(
            directory=ns.get_str("directory", default=None),
            output_directory=ns.get_str("output_directory", default=None, allow_empty=True),
            includes=tuple(ns.get_list_str("includes", default=[])),
            excludes=tuple(ns.get_list_str("excludes", default=[])),
            use_default_excludes=ns.get_bool("use_default_excludes", default=True),
            file_mode=_mode(ns, "file_mode"),
            directory_mode=_mode(ns, "directory_mode"),
            filtered=ns.get_bool("filtered", default=False),
            line_ending=_line_ending(ns),
            non_filtered_file_extensions=tuple(
                ext.lstrip(".") for ext in ns.get_list_str("non_filtered_file_extensions", default=[])
            ),
        )


@dataclass(frozen=True)
class FileItem:
    source: str | None = None
    sources: tuple[str, ...] = ()
    output_directory: str | None = None
    dest_name: str | None = None
    file_mode: str | None = None
    filtered: bool = False
    line_ending: str | None = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "FileItem":
        return cls(
            source=ns.get_str("source", default=None),
            sources=tuple(ns.get_list_str("sources", default=[])),
            output_directory=ns.get_str("output_directory", default=None, allow_empty=True),
            dest_name=ns.get_str("dest_name", default=None),
            file_mode=_mode(ns, "file_mode"),
            filtered=ns.get_bool("filtered", default=False),
            line_ending=_line_ending(ns),
        )


@dataclass(frozen=True, eq=False)
class DependencySet:
    """A selection of resolved artifacts.

    Compared by identity: two sets with identical options are still resolved
    separately and keyed separately in resolution results.
    """

    scope: str = "runtime"
    use_transitive_dependencies: bool = True
    use_transitive_filtering: bool = False
    use_project_artifact: bool = True
    use_project_attachments: bool = False
    use_strict_filtering: bool = False
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    output_directory: str | None = None
    output_file_name_mapping: str = DEFAULT_FILE_NAME_MAPPING
    file_mode: str | None = None
    directory_mode: str | None = None
    unpack: bool = False
    unpack_options: UnpackOptions | None = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "DependencySet":
        return cls(
            scope=ns.get_str("scope", default="runtime") or "runtime",
            use_transitive_dependencies=ns.get_bool("use_transitive_dependencies", default=True),
            use_transitive_filtering=ns.get_bool("use_transitive_filtering", default=False),
            use_project_artifact=ns.get_bool("use_project_artifact", default=True),
            use_project_attachments=ns.get_bool("use_project_attachments", default=False),
            use_strict_filtering=ns.get_bool("use_strict_filtering", default=False),
            includes=tuple(ns.get_list_str("includes", default=[])),
            excludes=tuple(ns.get_list_str("excludes", default=[])),
            output_directory=ns.get_str("output_directory", default=None, allow_empty=True),
            output_file_name_mapping=ns.get_str(
                "output_file_name_mapping", default=DEFAULT_FILE_NAME_MAPPING
            )
            or DEFAULT_FILE_NAME_MAPPING,
            file_mode=_mode(ns, "file_mode"),
            directory_mode=_mode(ns, "directory_mode"),
            unpack=ns.get_bool("unpack", default=False),
            unpack_options=_unpack_options(ns),
        )


@dataclass(frozen=True)
class ModuleSources:
    directory: str | None = None
    output_directory: str | None = None
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    use_default_excludes: bool = True
    file_mode: str | None = None
    directory_mode: str | None = None
    file_sets: tuple[FileSet, ...] = ()
    include_module_directory: bool = True
    exclude_sub_module_directories: bool = True
    output_directory_mapping: str = DEFAULT_MODULE_DIRECTORY_MAPPING

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "ModuleSources":
        return cls(
            directory=ns.get_str("directory", default=None),
            output_directory=ns.get_str("output_directory", default=None, allow_empty=True),
            includes=tuple(ns.get_list_str("includes", default=[])),
            excludes=tuple(ns.get_list_str("excludes", default=[])),
            use_default_excludes=ns.get_bool("use_default_excludes", default=True),
            file_mode=_mode(ns, "file_mode"),
            directory_mode=_mode(ns, "directory_mode"),
            file_sets=_items(ns, "file_sets", FileSet.from_namespace),
            include_module_directory=ns.get_bool("include_module_directory", default=True),
            exclude_sub_module_directories=ns.get_bool(
                "exclude_sub_module_directories", default=True
            ),
            output_directory_mapping=ns.get_str(
                "output_directory_mapping", default=DEFAULT_MODULE_DIRECTORY_MAPPING
            )
            or DEFAULT_MODULE_DIRECTORY_MAPPING,
        )

    def as_file_set(self) -> FileSet:
        return FileSet(
            directory=self.directory,
            output_directory=self.output_directory,
            includes=self.includes,
            excludes=self.excludes,
            use_default_excludes=self.use_default_excludes,
            file_mode=self.file_mode,
            directory_mode=self.directory_mode,
        )


@dataclass(frozen=True)
class ModuleBinaries:
    include_dependencies: bool = True
    dependency_sets: tuple[DependencySet, ...] = ()
    output_directory: str | None = None
    output_file_name_mapping: str = DEFAULT_FILE_NAME_MAPPING
    attachment_classifier: str | None = None
    unpack: bool = True
    unpack_options: UnpackOptions | None = None
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    file_mode: str | None = None
    directory_mode: str | None = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "ModuleBinaries":
        return cls(
            include_dependencies=ns.get_bool("include_dependencies", default=True),
            dependency_sets=_items(ns, "dependency_sets", DependencySet.from_namespace),
            output_directory=ns.get_str("output_directory", default=None, allow_empty=True),
            output_file_name_mapping=ns.get_str(
                "output_file_name_mapping", default=DEFAULT_FILE_NAME_MAPPING
            )
            or DEFAULT_FILE_NAME_MAPPING,
            attachment_classifier=ns.get_str("attachment_classifier", default=None),
            unpack=ns.get_bool("unpack", default=True),
            unpack_options=_unpack_options(ns),
            includes=tuple(ns.get_list_str("includes", default=[])),
            excludes=tuple(ns.get_list_str("excludes", default=[])),
            file_mode=_mode(ns, "file_mode"),
            directory_mode=_mode(ns, "directory_mode"),
        )


@dataclass(frozen=True, eq=False)
class ModuleSet:
    use_all_reactor_projects: bool = False
    include_sub_modules: bool = True
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    sources: ModuleSources | None = None
    binaries: ModuleBinaries | None = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "ModuleSet":
        sources = None
        if ns.has("sources"):
            sources = ModuleSources.from_namespace(ns.namespace("sources"))
        binaries = None
        if ns.has("binaries"):
            binaries = ModuleBinaries.from_namespace(ns.namespace("binaries"))
        return cls(
            use_all_reactor_projects=ns.get_bool("use_all_reactor_projects", default=False),
            include_sub_modules=ns.get_bool("include_sub_modules", default=True),
            includes=tuple(ns.get_list_str("includes", default=[])),
            excludes=tuple(ns.get_list_str("excludes", default=[])),
            sources=sources,
            binaries=binaries,
        )


@dataclass(frozen=True)
class ContainerDescriptorHandlerConfig:
    handler_name: str
    configuration: Any = None

    @classmethod
    def from_namespace(cls, ns: ConfigNamespace) -> "ContainerDescriptorHandlerConfig":
        return cls(
            handler_name=ns.get_str("handler_name") or "",
            configuration=ns.get_any("configuration", default=None),
        )


@dataclass(frozen=True)
class AssemblyDescriptor:
    id: str | None
    formats: tuple[str, ...] = ()
    include_base_directory: bool = True
    base_directory: str | None = None
    dependency_sets: tuple[DependencySet, ...] = ()
    module_sets: tuple[ModuleSet, ...] = ()
    file_sets: tuple[FileSet, ...] = ()
    files: tuple[FileItem, ...] = ()
    container_descriptor_handlers: tuple[ContainerDescriptorHandlerConfig, ...] = ()
    source: str | None = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, source: str | None = None) -> "AssemblyDescriptor":
        if not isinstance(data, Mapping):
            raise InvalidConfiguration(
                f"Assembly descriptor must be a mapping (type={type(data).__name__})"
            )
        ns = ConfigNamespace(data, path="assembly")
        try:
            descriptor = cls(
                id=ns.get_str("id", default=None, allow_empty=True),
                formats=tuple(ns.get_list_str("formats", default=[])),
                include_base_directory=ns.get_bool("include_base_directory", default=True),
                base_directory=ns.get_str("base_directory", default=None),
                dependency_sets=_items(ns, "dependency_sets", DependencySet.from_namespace),
                module_sets=_items(ns, "module_sets", ModuleSet.from_namespace),
                file_sets=_items(ns, "file_sets", FileSet.from_namespace),
                files=_items(ns, "files", FileItem.from_namespace),
                container_descriptor_handlers=_items(
                    ns, "container_descriptor_handlers", ContainerDescriptorHandlerConfig.from_namespace
                ),
                source=source,
            )
            ns.assert_consumed()
        except InvalidConfiguration:
            raise
        except (TypeError, ValueError) as exc:
            label = f" ({source})" if source else ""
            raise InvalidConfiguration(f"Invalid assembly descriptor{label}: {exc}") from exc
        return descriptor


def load_descriptor(path: str | os.PathLike[str]) -> AssemblyDescriptor:
    descriptor_path = Path(path)
    try:
        with open(descriptor_path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise InvalidConfiguration(f"Missing assembly descriptor: {descriptor_path}") from exc
    except yaml.YAMLError as exc:
        raise InvalidConfiguration(f"Invalid YAML in {descriptor_path}: {exc}") from exc
    if payload is None:
        payload = {}
    return AssemblyDescriptor.from_dict(payload, source=str(descriptor_path))
