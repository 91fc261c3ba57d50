from __future__ import annotations

import locale
import re
from datetime import datetime
from typing import TYPE_CHECKING

from phasekit import ConfigNamespace

from assembler.framework.errors import ArchiverError, FormattingFailure
from assembler.framework.formatting import is_property_file
from assembler.handlers.base import AggregatingHandler, normalize_name, register_handler

if TYPE_CHECKING:
    from assembler.archive.writers import ArchiveWriter, FileInfo

COMMENT_CHARS = "#"


def _charset_for(name: str) -> str:
    if is_property_file(name):
        return "iso-8859-1"
    return locale.getpreferredencoding(False)


@register_handler
class FileAggregatorHandler(AggregatingHandler):
    """Concatenates every file whose path matches `file_pattern` into `output_path`.

    The output starts with a comment block naming the merged sources.
    """

    name = "file-aggregator"

    def __init__(self) -> None:
        super().__init__()
        self.file_pattern: re.Pattern[str] | None = None
        self.output_path: str | None = None
        self.filenames: list[str] = []
        self._chunks: list[str] = []

    def configure(self, cfg: ConfigNamespace) -> None:
        pattern = cfg.get_str("file_pattern", default=None)
        output_path = cfg.get_str("output_path", default=None)
        if pattern is None or output_path is None:
            raise ValueError(
                "file-aggregator requires both file_pattern and output_path in its configuration"
            )
        try:
            self.file_pattern = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid file_pattern {pattern!r}: {exc}") from exc
        self.output_path = output_path

    def _require_config(self) -> tuple[re.Pattern[str], str]:
        if self.file_pattern is None or self.output_path is None:
            raise ArchiverError(
                "You must configure file_pattern and output_path for the file-aggregator handler"
            )
        return self.file_pattern, self.output_path

    def select(self, info: "FileInfo") -> bool:
        pattern, _ = self._require_config()
        name = normalize_name(info)
        if not info.is_file or pattern.fullmatch(name) is None:
            return True
        charset = _charset_for(name)
        try:
            text = info.read().decode(charset)
        except UnicodeDecodeError as exc:
            raise FormattingFailure(f"Cannot decode {name} as {charset}: {exc}") from exc
        self._chunks.append("\n" + text)
        self.filenames.append(name)
        return False

    def render(self, now: datetime | None = None) -> str:
        stamp = (now or datetime.now()).strftime("%a %b %d %H:%M:%S %Y")
        header = f"{COMMENT_CHARS} Aggregated on {stamp} from: "
        for filename in self.filenames:
            header += f"\n{COMMENT_CHARS} {filename}"
        return header + "\n\n" + "".join(self._chunks)

    def finalize_creation(self, writer: "ArchiveWriter") -> None:
        _, output_path = self._require_config()
        if output_path.endswith("/"):
            raise ArchiverError(
                "Cannot write aggregated content to a directory; output_path must name a file "
                f"(handler: {self.name})"
            )
        output_path = output_path.lstrip("/")
        writer.resources()
        charset = _charset_for(output_path)
        try:
            content = self.render().encode(charset)
        except UnicodeEncodeError as exc:
            raise FormattingFailure(f"Cannot encode {output_path} as {charset}: {exc}") from exc
        self.add_generated(writer, output_path, content)

    def virtual_paths(self) -> list[str]:
        _, output_path = self._require_config()
        return [output_path]
