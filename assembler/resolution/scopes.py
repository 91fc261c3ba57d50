from __future__ import annotations

from typing import Iterable

from assembler.framework.artifacts import Artifact
from assembler.framework.errors import InvalidConfiguration

_ALL = frozenset({"compile", "provided", "runtime", "system", "test"})

SCOPE_FILTERS: dict[str, frozenset[str]] = {
    "compile": frozenset({"compile", "provided", "system"}),
    "provided": frozenset({"provided"}),
    "runtime": frozenset({"compile", "runtime"}),
    "system": frozenset({"system"}),
    "test": _ALL,
}

# Effective scope of a transitive dependency, keyed by (direct scope, declared scope).
# Missing pairs are not inherited at all.
_TRANSITIVE_SCOPES: dict[tuple[str, str], str] = {
    ("compile", "compile"): "compile",
    ("compile", "runtime"): "runtime",
    ("provided", "compile"): "provided",
    ("provided", "runtime"): "provided",
    ("runtime", "compile"): "runtime",
    ("runtime", "runtime"): "runtime",
    ("test", "compile"): "test",
    ("test", "runtime"): "test",
}


def scopes_for(root_scopes: str | Iterable[str]) -> frozenset[str]:
    """Scopes visible from one or more requested root scopes."""

    if isinstance(root_scopes, str):
        root_scopes = (root_scopes,)
    visible: set[str] = set()
    for raw in root_scopes:
        scope = (raw or "").strip().lower()
        if scope not in SCOPE_FILTERS:
            allowed = ", ".join(sorted(SCOPE_FILTERS))
            raise InvalidConfiguration(f"Unknown dependency scope: {raw!r} (allowed: {allowed})")
        visible.update(SCOPE_FILTERS[scope])
    return frozenset(visible)


class ScopeFilter:
    def __init__(self, root_scopes: str | Iterable[str]):
        self.scopes = scopes_for(root_scopes)

    def __call__(self, artifact: Artifact) -> bool:
        # Unscoped artifacts (the project's own outputs) always pass.
        if artifact.scope is None:
            return True
        return artifact.scope.strip().lower() in self.scopes

    def __repr__(self) -> str:
        return f"ScopeFilter({', '.join(sorted(self.scopes))})"


def transitive_scope(direct_scope: str | None, declared_scope: str | None) -> str | None:
    direct = (direct_scope or "compile").strip().lower()
    declared = (declared_scope or "compile").strip().lower()
    return _TRANSITIVE_SCOPES.get((direct, declared))
