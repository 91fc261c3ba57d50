from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Iterable, Protocol

from phasekit import ConfigNamespace

from assembler.framework.configurator import configure_component
from assembler.framework.errors import InvalidConfiguration
from assembler.framework.interpolation import ExpressionEvaluator
from assembler.framework.model import ContainerDescriptorHandlerConfig

if TYPE_CHECKING:
    from assembler.archive.writers import ArchiveWriter, FileInfo

DEFAULT_HANDLER = "plexus"


class ContainerDescriptorHandler(Protocol):
    name: str

    def configure(self, cfg: ConfigNamespace) -> None: ...

    def is_selected(self, info: "FileInfo") -> bool: ...

    def finalize_creation(self, writer: "ArchiveWriter") -> None: ...

    def virtual_paths(self) -> list[str]: ...


_HANDLER_REGISTRY: dict[str, type[ContainerDescriptorHandler]] = {}
_DISCOVERED = False


def register_handler(cls: type[ContainerDescriptorHandler]) -> type[ContainerDescriptorHandler]:
    name = getattr(cls, "name", None)
    if not isinstance(name, str) or not name.strip():
        raise TypeError("Container descriptor handler must define a non-empty 'name' attribute")

    key = name.strip().lower()
    if key in _HANDLER_REGISTRY:
        raise ValueError(f"Duplicate container descriptor handler name: {key}")

    _HANDLER_REGISTRY[key] = cls
    return cls


def _discover() -> None:
    global _DISCOVERED
    if _DISCOVERED:
        return
    from assembler.handlers import builtin

    builtin.discover()
    _DISCOVERED = True


def available_handlers() -> tuple[str, ...]:
    _discover()
    return tuple(sorted(cls.name for cls in _HANDLER_REGISTRY.values()))


def normalize_name(info: "FileInfo") -> str:
    return info.name.replace("\\", "/").lstrip("/")


def _configured(
    cls: type[ContainerDescriptorHandler],
    payload: object,
    evaluator: ExpressionEvaluator | None,
) -> ContainerDescriptorHandler:
    handler = cls()
    configure_component(
        handler, payload, evaluator, path=f"container_descriptor_handlers.{cls.name}"
    )
    return handler


def select_handlers(
    configs: Iterable[ContainerDescriptorHandlerConfig],
    evaluator: ExpressionEvaluator | None = None,
    logger: logging.Logger | None = None,
) -> list[ContainerDescriptorHandler]:
    """Instantiate and configure the requested handlers for one build.

    Every call returns new instances, since handlers collect state while an
    archive is assembled. The default `plexus` handler is appended when the
    descriptor does not ask for it.
    """

    _discover()
    handlers: list[ContainerDescriptorHandler] = []
    has_default = False
    for config in configs:
        key = (config.handler_name or "").strip().lower()
        cls = _HANDLER_REGISTRY.get(key)
        if cls is None:
            available = ", ".join(available_handlers()) or "<none>"
            raise InvalidConfiguration(
                f"Unknown container descriptor handler: {config.handler_name!r} (available: {available})"
            )
        handlers.append(_configured(cls, config.configuration, evaluator))
        has_default = has_default or key == DEFAULT_HANDLER

    if not has_default:
        handlers.append(_configured(_HANDLER_REGISTRY[DEFAULT_HANDLER], None, evaluator))

    if logger:
        logger.debug("Container descriptor handlers: %s", ", ".join(h.name for h in handlers))
    return handlers


class AggregatingHandler:
    """Shared plumbing for handlers that swallow matching files and emit merged output."""

    name = ""

    def __init__(self) -> None:
        self._exclude_override = False

    def configure(self, cfg: ConfigNamespace) -> None:
        """Built-in aggregators take no options unless they say otherwise."""

    def is_selected(self, info: "FileInfo") -> bool:
        if self._exclude_override:
            return True
        return self.select(info)

    def select(self, info: "FileInfo") -> bool:
        raise NotImplementedError

    def virtual_paths(self) -> list[str]:
        return []

    def add_generated(self, writer: "ArchiveWriter", dest_name: str, content: bytes) -> None:
        """Write `content` to a scratch file and add it without re-selecting it here."""

        stem = PurePosixPath(dest_name).name or "aggregate"
        scratch = writer.new_scratch_file(prefix=f"assembly-{stem}-", suffix=".tmp")
        scratch.write_bytes(content)

        self._exclude_override = True
        try:
            writer.add_file(scratch, dest_name)
        finally:
            self._exclude_override = False
