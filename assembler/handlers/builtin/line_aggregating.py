from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from assembler.framework.errors import FormattingFailure
from assembler.handlers.base import AggregatingHandler, normalize_name, register_handler

if TYPE_CHECKING:
    from assembler.archive.writers import ArchiveWriter, FileInfo

logger = logging.getLogger(__name__)


class LineAggregatingHandler(AggregatingHandler):
    """Merges same-named text files line by line.

    Lines keep the order they were first seen in and exact duplicates are
    dropped, so ("A", "B") + ("B", "C") becomes ("A", "B", "C").
    """

    output_prefix = "META-INF/"
    encoding = "utf-8"

    def __init__(self) -> None:
        super().__init__()
        self.catalog: dict[str, list[str]] = {}
        self._seen: dict[str, set[str]] = {}

    def matches(self, name: str) -> bool:
        raise NotImplementedError

    def select(self, info: "FileInfo") -> bool:
        name = normalize_name(info)
        if not info.is_file or not self.matches(name):
            return True
        target = self.output_prefix + PurePosixPath(name).name
        lines = self.catalog.setdefault(target, [])
        seen = self._seen.setdefault(target, set(lines))
        self.read_lines(info.read(), lines, seen, name=name)
        logger.debug("%s merged %s into %s", self.name, name, target)
        return False

    def read_lines(
        self, content: bytes, lines: list[str], seen: set[str], *, name: str = "<content>"
    ) -> None:
        try:
            text = content.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise FormattingFailure(f"Cannot decode {name} as {self.encoding}: {exc}") from exc
        for line in text.splitlines():
            if line not in seen:
                seen.add(line)
                lines.append(line)

    def finalize_creation(self, writer: "ArchiveWriter") -> None:
        # Enumerating resources runs selection over everything added so far.
        writer.resources()
        for name, lines in self.catalog.items():
            content = "".join(line + "\n" for line in lines)
            self.add_generated(writer, name, content.encode(self.encoding))

    def virtual_paths(self) -> list[str]:
        return list(self.catalog)


@register_handler
class MetaInfSpringHandler(LineAggregatingHandler):
    name = "metaInf-spring"

    def matches(self, name: str) -> bool:
        prefix = "META-INF/spring."
        return name.startswith(prefix) and len(name) > len(prefix)


@register_handler
class MetaInfServicesHandler(LineAggregatingHandler):
    name = "metaInf-services"
    output_prefix = "META-INF/services/"

    def matches(self, name: str) -> bool:
        prefix = self.output_prefix
        return name.startswith(prefix) and "/" not in name[len(prefix):] and len(name) > len(prefix)
