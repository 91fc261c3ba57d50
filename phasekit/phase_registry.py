from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Any, Iterable

from phasekit.phase_types import PhaseRef


@dataclass(frozen=True)
class PhaseRegistry:
    _by_id: dict[str, PhaseRef]

    @classmethod
    def from_refs(cls, refs: Iterable[PhaseRef]) -> "PhaseRegistry":
        entries: dict[str, PhaseRef] = {}
        for ref in refs:
            if ref.id in entries:
                raise ValueError(f"Duplicate phase id: {ref.id}")
            entries[ref.id] = ref
        return cls(_by_id=entries)

    def available(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_id.keys()))

    def ordered(self) -> tuple[PhaseRef, ...]:
        # Ties on `order` fall back to the id so the sequence is total.
        return tuple(sorted(self._by_id.values(), key=lambda ref: ref.sort_key))

    def describe(self) -> tuple[dict[str, Any], ...]:
        return tuple(
            {"phase_id": ref.id, "order": ref.order, "doc": ref.doc, "source": ref.source}
            for ref in self.ordered()
        )

    def resolve(self, phase_id: str) -> PhaseRef:
        if not isinstance(phase_id, str) or not phase_id.strip():
            raise ValueError("phase_id must be a non-empty string")
        ref = self._by_id.get(phase_id.strip())
        if ref is not None:
            return ref

        hint = ""
        suggestions = self.suggest(phase_id)
        if suggestions:
            hint = f"; did you mean: {', '.join(suggestions)}"
        available = ", ".join(self.available()) or "<none>"
        raise ValueError(f"Unknown phase id: {phase_id} (available: {available}{hint})")

    def suggest(self, phase_id: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (phase_id or "").strip()
        if not key:
            return ()
        return tuple(difflib.get_close_matches(key, list(self.available()), n=limit))

    def without(self, *phase_ids: str) -> "PhaseRegistry":
        dropped = {self.resolve(phase_id).id for phase_id in phase_ids}
        return PhaseRegistry(_by_id={k: v for k, v in self._by_id.items() if k not in dropped})
