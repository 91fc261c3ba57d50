"""Include/exclude filtering of artifacts and projects by coordinate patterns.

Patterns read `groupId:artifactId[:type[:classifier[:version]]]`. Each segment
may use `*` and `?` wildcards and omitted trailing segments match anything.
With transitive filtering an artifact also matches when any entry of its
dependency trail matches, so excluding a dependency excludes what it pulled in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Callable, Iterable, Sequence

from assembler.framework.artifacts import Artifact
from assembler.framework.errors import InvalidConfiguration
from assembler.framework.project import ProjectModel

ArtifactPredicate = Callable[[Artifact], bool]


def _tokens(artifact: Artifact) -> list[str]:
    return [
        artifact.group_id,
        artifact.artifact_id,
        artifact.type,
        artifact.classifier or "",
        artifact.version,
    ]


def _trail_tokens(entry: str) -> list[str] | None:
    parts = entry.split(":")
    if len(parts) == 4:
        group, artifact, type_, version = parts
        return [group, artifact, type_, "", version]
    if len(parts) == 5:
        return parts
    return None


def _match_tokens(pattern: str, tokens: Sequence[str]) -> bool:
    segments = pattern.strip().split(":")
    if len(segments) > len(tokens):
        return False
    return all(fnmatchcase(token, segment or "*") for segment, token in zip(segments, tokens))


def match_artifact(pattern: str, artifact: Artifact, *, transitive: bool = False) -> bool:
    if _match_tokens(pattern, _tokens(artifact)):
        return True
    if transitive:
        for entry in artifact.dependency_trail[:-1]:
            tokens = _trail_tokens(entry)
            if tokens is not None and _match_tokens(pattern, tokens):
                return True
    return False


@dataclass
class PatternFilter:
    """Pattern filter that remembers which of its patterns ever matched."""

    patterns: tuple[str, ...]
    include: bool
    transitive: bool = False
    _triggered: set[str] = field(default_factory=set, init=False, repr=False)
    filtered: list[Artifact] = field(default_factory=list, init=False, repr=False)

    def __call__(self, artifact: Artifact) -> bool:
        matched = False
        for pattern in self.patterns:
            if match_artifact(pattern, artifact, transitive=self.transitive):
                self._triggered.add(pattern)
                matched = True
        accepted = matched if self.include else not matched
        if not accepted:
            self.filtered.append(artifact)
        return accepted

    @property
    def kind(self) -> str:
        return "include" if self.include else "exclude"

    def missed_patterns(self) -> list[str]:
        return [p for p in self.patterns if p not in self._triggered]

    def report(self, logger: logging.Logger) -> None:
        missed = self.missed_patterns()
        if missed:
            logger.warning(
                "The following patterns were never triggered in this artifact %s filter:\n  o  %s",
                self.kind,
                "\n  o  ".join(missed),
            )
        for artifact in self.filtered:
            logger.debug("%s was removed by the %s filter", artifact.id, self.kind)


def _pattern_filters(
    includes: Iterable[str], excludes: Iterable[str], *, transitive: bool
) -> list[PatternFilter]:
    filters: list[PatternFilter] = []
    include_list = tuple(p for p in includes if p.strip())
    exclude_list = tuple(p for p in excludes if p.strip())
    if include_list:
        filters.append(PatternFilter(include_list, include=True, transitive=transitive))
    if exclude_list:
        filters.append(PatternFilter(exclude_list, include=False, transitive=transitive))
    return filters


def filter_artifacts(
    artifacts: Iterable[Artifact],
    *,
    includes: Iterable[str] = (),
    excludes: Iterable[str] = (),
    strict: bool = False,
    transitive: bool = False,
    logger: logging.Logger,
    additional: Iterable[ArtifactPredicate | None] = (),
) -> list[Artifact]:
    """Keep the artifacts accepted by every filter, preserving order.

    In strict mode an include or exclude pattern that matched nothing is an
    `InvalidConfiguration`.
    """

    predicates: list[ArtifactPredicate] = [p for p in additional if p is not None]
    pattern_filters = _pattern_filters(includes, excludes, transitive=transitive)
    predicates.extend(pattern_filters)

    kept: list[Artifact] = []
    for artifact in artifacts:
        # Evaluate every predicate so each filter's statistics stay complete.
        verdicts = [predicate(artifact) for predicate in predicates]
        if all(verdicts):
            kept.append(artifact)
        else:
            logger.debug("%s was removed by one or more filters.", artifact.id)

    for pattern_filter in pattern_filters:
        pattern_filter.report(logger)

    if strict and any(f.missed_patterns() for f in pattern_filters):
        raise InvalidConfiguration(
            "One or more filters had unmatched criteria: "
            + "; ".join(
                f"{f.kind}: {', '.join(f.missed_patterns())}"
                for f in pattern_filters
                if f.missed_patterns()
            )
        )
    return kept


def filter_projects(
    projects: Iterable[ProjectModel],
    *,
    includes: Iterable[str] = (),
    excludes: Iterable[str] = (),
    logger: logging.Logger,
) -> list[ProjectModel]:
    pattern_filters = _pattern_filters(includes, excludes, transitive=True)
    kept: list[ProjectModel] = []
    for project in projects:
        artifact = project.project_artifact()
        verdicts = [f(artifact) for f in pattern_filters]
        if all(verdicts):
            kept.append(project)
    for pattern_filter in pattern_filters:
        pattern_filter.report(logger)
    return kept
