"""JAR manifest model plus the manifest finalizer and signature-file selector."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from assembler.foundation.paths import match_path
from assembler.framework.config import JarArchiveConfig
from assembler.framework.errors import ArchiverError
from assembler.framework.interpolation import ExpressionEvaluator

if TYPE_CHECKING:
    from assembler.archive.writers import ArchiveWriter, FileInfo

logger = logging.getLogger(__name__)

MANIFEST_PATH = "META-INF/MANIFEST.MF"
_MAX_LINE_BYTES = 72

SIGNATURE_PATTERNS = ("META-INF/*.SF", "META-INF/*.DSA", "META-INF/*.RSA", "META-INF/*.EC")


def _wrap(header: str) -> list[str]:
    """Split a `Name: value` line into 72-byte physical lines."""

    encoded = header.encode("utf-8")
    if len(encoded) <= _MAX_LINE_BYTES:
        return [header]
    lines: list[str] = []
    current = ""
    limit = _MAX_LINE_BYTES
    for char in header:
        if len((current + char).encode("utf-8")) > limit:
            lines.append(current)
            current = " "
            limit = _MAX_LINE_BYTES
        current += char
    if current.strip():
        lines.append(current)
    return lines


@dataclass
class Manifest:
    main: dict[str, str] = field(default_factory=dict)
    sections: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def minimal(cls) -> "Manifest":
        return cls(main={"Manifest-Version": "1.0", "Created-By": "assembler"})

    @classmethod
    def parse(cls, content: bytes) -> "Manifest":
        text = content.decode("utf-8").replace("\r\n", "\n").replace("\r", "\n")
        logical: list[str] = []
        for line in text.split("\n"):
            if line.startswith(" ") and logical and logical[-1]:
                logical[-1] += line[1:]
            else:
                logical.append(line)

        manifest = cls()
        current = manifest.main
        for line in logical:
            if not line.strip():
                current = None  # type: ignore[assignment]
                continue
            name, sep, value = line.partition(":")
            if not sep:
                raise ValueError(f"Invalid manifest line: {line!r}")
            name, value = name.strip(), value.strip()
            if current is None:
                if name.lower() != "name":
                    raise ValueError(f"Manifest section must start with Name: (got {name!r})")
                current = manifest.sections.setdefault(value, {})
                continue
            current[name] = value
        return manifest

    def merge(self, other: "Manifest", *, include_main: bool = True) -> None:
        """Fold `other` into this manifest; values already present win."""

        if include_main:
            for name, value in other.main.items():
                self.main.setdefault(name, value)
        for section, attrs in other.sections.items():
            target = self.sections.setdefault(section, {})
            for name, value in attrs.items():
                target.setdefault(name, value)

    def render(self) -> bytes:
        main = dict(self.main)
        version = main.pop("Manifest-Version", "1.0")
        lines: list[str] = _wrap(f"Manifest-Version: {version}")
        for name, value in main.items():
            lines.extend(_wrap(f"{name}: {value}"))
        lines.append("")
        for section, attrs in self.sections.items():
            lines.extend(_wrap(f"Name: {section}"))
            for name, value in attrs.items():
                lines.extend(_wrap(f"{name}: {value}"))
            lines.append("")
        return ("\r\n".join(lines) + "\r\n").encode("utf-8")


class JarSecurityFileSelector:
    """Drops signature files, which are invalid once entries are repackaged."""

    def is_selected(self, info: "FileInfo") -> bool:
        if not info.is_file:
            return True
        name = info.name.replace("\\", "/").lstrip("/").upper()
        return not any(match_path(pattern, name) for pattern in SIGNATURE_PATTERNS)


class ManifestCreationFinalizer:
    def __init__(
        self,
        *,
        jar_config: JarArchiveConfig,
        basedir: Path,
        evaluator: ExpressionEvaluator,
    ):
        self._config = jar_config
        self._basedir = basedir
        self._evaluator = evaluator

    def build_manifest(self) -> Manifest:
        manifest = Manifest.minimal()
        if self._config.manifest_file:
            path = Path(self._evaluator.evaluate(self._config.manifest_file))
            if not path.is_absolute():
                path = self._basedir / path
            if not path.is_file():
                raise ArchiverError(f"Manifest not found: {path}")
            try:
                manifest = Manifest.parse(path.read_bytes())
            except (OSError, ValueError, UnicodeDecodeError) as exc:
                raise ArchiverError(f"Error reading manifest {path}: {exc}") from exc
            manifest.main.setdefault("Manifest-Version", "1.0")

        for name, value in self._config.manifest_entries.items():
            manifest.main[name] = self._evaluator.evaluate(value)
        for section, attrs in self._config.manifest_sections.items():
            target = manifest.sections.setdefault(section, {})
            for name, value in attrs.items():
                target[name] = self._evaluator.evaluate(value)
        return manifest

    def finalize_creation(self, writer: "ArchiveWriter") -> None:
        target = writer.unwrap()
        set_manifest = getattr(target, "set_manifest", None)
        if set_manifest is None:
            logger.debug("Writer %s takes no manifest", type(target).__name__)
            return
        set_manifest(self.build_manifest())

    def virtual_paths(self) -> list[str]:
        return [MANIFEST_PATH]
