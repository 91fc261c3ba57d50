"""Ant-style include/exclude matching and directory scanning."""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Iterator

DEFAULT_EXCLUDES: tuple[str, ...] = (
    "**/*~",
    "**/#*#",
    "**/.#*",
    "**/%*%",
    "**/._*",
    "**/CVS",
    "**/.cvsignore",
    "**/RCS",
    "**/SCCS",
    "**/vssver.scc",
    "**/.svn",
    "**/.arch-ids",
    "**/.bzr",
    "**/.MySCMServerInfo",
    "**/.DS_Store",
    "**/.metadata",
    "**/.hg",
    "**/.hgignore",
    "**/.git",
    "**/.gitignore",
    "**/.gitattributes",
    "**/BitKeeper",
    "**/ChangeSet",
)


def normalize_path(path: str) -> str:
    return path.replace("\\", "/").strip("/")


def normalize_pattern(pattern: str) -> str:
    value = pattern.replace("\\", "/").strip()
    if value.startswith("./"):
        value = value[2:]
    value = value.lstrip("/")
    if value.endswith("/"):
        value += "**"
    return value


def _match_segments(pattern: list[str], path: list[str]) -> bool:
    if not pattern:
        return not path
    head = pattern[0]
    if head == "**":
        # `**` absorbs zero or more whole segments.
        for skip in range(len(path) + 1):
            if _match_segments(pattern[1:], path[skip:]):
                return True
        return False
    if not path:
        return False
    return fnmatchcase(path[0], head) and _match_segments(pattern[1:], path[1:])


def match_path(pattern: str, path: str) -> bool:
    normalized = normalize_pattern(pattern)
    target = normalize_path(path)
    if not normalized:
        return not target
    return _match_segments(normalized.split("/"), target.split("/") if target else [])


@dataclass(frozen=True)
class PathMatcher:
    """Include/exclude filter over `/`-separated relative paths.

    A path is excluded when it, or any directory above it, matches an exclude.
    """

    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    use_default_excludes: bool = True

    @classmethod
    def of(
        cls,
        includes: Iterable[str] | None = None,
        excludes: Iterable[str] | None = None,
        *,
        use_default_excludes: bool = True,
    ) -> "PathMatcher":
        return cls(
            includes=tuple(p for p in (includes or ()) if p and p.strip()),
            excludes=tuple(p for p in (excludes or ()) if p and p.strip()),
            use_default_excludes=use_default_excludes,
        )

    @property
    def effective_excludes(self) -> tuple[str, ...]:
        if self.use_default_excludes:
            return self.excludes + DEFAULT_EXCLUDES
        return self.excludes

    def is_excluded(self, path: str) -> bool:
        segments = normalize_path(path).split("/")
        excludes = self.effective_excludes
        for depth in range(1, len(segments) + 1):
            candidate = "/".join(segments[:depth])
            if any(match_path(pattern, candidate) for pattern in excludes):
                return True
        return False

    def is_included(self, path: str) -> bool:
        if not self.includes:
            return True
        return any(match_path(pattern, path) for pattern in self.includes)

    def matches(self, path: str) -> bool:
        return self.is_included(path) and not self.is_excluded(path)


def scan_directory(root: Path, matcher: PathMatcher) -> Iterator[tuple[str, Path, bool]]:
    """Yield `(relative_name, absolute_path, is_dir)` in a stable, sorted order."""

    root = Path(root)
    for current, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = Path(current).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        kept_dirs: list[str] = []
        for name in dirnames:
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if matcher.is_excluded(rel):
                continue
            kept_dirs.append(name)
            if matcher.is_included(rel):
                yield rel, Path(current) / name, True
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if matcher.matches(rel):
                yield rel, Path(current) / name, False
