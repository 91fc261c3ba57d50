from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from phasekit import ConfigNamespace

_TYPE_EXTENSIONS = {
    "jar": "jar",
    "test-jar": "jar",
    "maven-plugin": "jar",
    "ejb": "jar",
    "ejb-client": "jar",
    "java-source": "jar",
    "javadoc": "jar",
    "bundle": "jar",
    "war": "war",
    "ear": "ear",
    "rar": "rar",
    "pom": "pom",
}

_TYPE_CLASSIFIERS = {
    "test-jar": "tests",
    "ejb-client": "client",
    "java-source": "sources",
    "javadoc": "javadoc",
}


class Scope(IntEnum):
    """Dependency scopes ranked by how widely they reach at runtime."""

    UNKNOWN = 0
    TEST = 1
    SYSTEM = 2
    RUNTIME = 3
    PROVIDED = 4
    COMPILE = 5

    @classmethod
    def parse(cls, value: "str | Scope | None") -> "Scope":
        if isinstance(value, Scope):
            return value
        if value is None:
            return cls.UNKNOWN
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            return cls.UNKNOWN

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Artifact:
    """A resolvable build output.

    Equality and hashing only consider the coordinates, so two artifacts that
    differ in scope or file still collide in sets and accumulators.
    """

    group_id: str
    artifact_id: str
    version: str
    type: str = "jar"
    classifier: str | None = None
    scope: str | None = field(default=None, compare=False)
    file: Path | None = field(default=None, compare=False)
    optional: bool = field(default=False, compare=False)
    dependency_trail: tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        for name in ("group_id", "artifact_id", "version", "type"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Artifact.{name} must be a non-empty string")
            object.__setattr__(self, name, value.strip())
        classifier = self.classifier
        if classifier is not None:
            classifier = str(classifier).strip() or None
        if classifier is None:
            classifier = _TYPE_CLASSIFIERS.get(self.type)
        object.__setattr__(self, "classifier", classifier)
        if self.file is not None and not isinstance(self.file, Path):
            object.__setattr__(self, "file", Path(self.file))
        object.__setattr__(self, "dependency_trail", tuple(self.dependency_trail))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Artifact":
        ns = ConfigNamespace(data, path="artifact")
        artifact = cls(
            group_id=ns.get_str("group_id") or "",
            artifact_id=ns.get_str("artifact_id") or "",
            version=ns.get_str("version") or "",
            type=ns.get_str("type", default="jar") or "jar",
            classifier=ns.get_str("classifier", default=None),
            scope=ns.get_str("scope", default=None),
            file=_optional_path(ns.get_str("file", default=None)),
            optional=ns.get_bool("optional", default=False),
        )
        ns.assert_consumed()
        return artifact

    @property
    def extension(self) -> str:
        return _TYPE_EXTENSIONS.get(self.type, self.type)

    @property
    def scope_rank(self) -> Scope:
        return Scope.parse(self.scope)

    @property
    def conflict_id(self) -> str:
        """`group:artifact:type[:classifier]`, i.e. the id without the version."""

        parts = [self.group_id, self.artifact_id, self.type]
        if self.classifier:
            parts.append(self.classifier)
        return ":".join(parts)

    @property
    def id(self) -> str:
        return f"{self.conflict_id}:{self.version}"

    @property
    def key(self) -> tuple[str, str, str, str, str | None]:
        return (self.group_id, self.artifact_id, self.version, self.type, self.classifier)

    @property
    def base_version(self) -> str:
        # Timestamped snapshots (1.0-20240101.120000-3) collapse to 1.0-SNAPSHOT.
        parts = self.version.rsplit("-", 2)
        if len(parts) == 3 and "." in parts[1] and parts[2].isdigit():
            return f"{parts[0]}-SNAPSHOT"
        return self.version

    def with_scope(self, scope: str | None) -> "Artifact":
        return dataclasses.replace(self, scope=scope)

    def with_file(self, file: Path | str | None) -> "Artifact":
        return dataclasses.replace(self, file=_optional_path(file))

    def with_trail(self, trail: Iterable[str]) -> "Artifact":
        return dataclasses.replace(self, dependency_trail=tuple(trail))

    def __str__(self) -> str:
        suffix = f":{self.scope}" if self.scope else ""
        return f"{self.id}{suffix}"


def _optional_path(value: Path | str | None) -> Path | None:
    if value is None:
        return None
    if isinstance(value, Path):
        return value
    text = str(value).strip()
    return Path(text) if text else None


class ResolutionAccumulator:
    """Insertion-ordered artifact set keyed by coordinates.

    When an artifact arrives whose coordinates are already present, the
    incoming one wins only if its scope ranks strictly higher; it then moves to
    the end of the iteration order. Whatever the insertion order, each
    coordinate ends up carrying the highest scope seen for it.
    """

    def __init__(self, artifacts: Iterable[Artifact] = ()):
        self._entries: dict[tuple[str, str, str, str, str | None], Artifact] = {}
        self.add_all(artifacts)

    def add(self, artifact: Artifact) -> bool:
        key = artifact.key
        existing = self._entries.get(key)
        if existing is None:
            self._entries[key] = artifact
            return True
        if artifact.scope_rank > existing.scope_rank:
            del self._entries[key]
            self._entries[key] = artifact
            return True
        return False

    def add_all(self, artifacts: Iterable[Artifact]) -> None:
        for artifact in artifacts:
            self.add(artifact)

    def artifacts(self) -> list[Artifact]:
        return list(self._entries.values())

    def scope_of(self, artifact: Artifact) -> Scope:
        existing = self._entries.get(artifact.key)
        return existing.scope_rank if existing is not None else Scope.UNKNOWN

    def __iter__(self) -> Iterator[Artifact]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, artifact: object) -> bool:
        return isinstance(artifact, Artifact) and artifact.key in self._entries
