from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class PhaseCallable(Protocol):
    def __call__(self, *args: Any, **kwargs: Any) -> None:
        ...


@dataclass(frozen=True)
class PhaseRef:
    """A named contributor with a position in the total phase order."""

    id: str
    order: int
    apply: PhaseCallable
    doc: str | None = None
    source: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise TypeError("PhaseRef.id must be a non-empty string")
        object.__setattr__(self, "id", self.id.strip())

        if isinstance(self.order, bool) or not isinstance(self.order, int):
            raise TypeError(f"PhaseRef.order must be an int (phase={self.id})")
        if not callable(self.apply):
            raise TypeError(f"PhaseRef.apply must be callable (phase={self.id})")

        if self.doc is not None and (not isinstance(self.doc, str) or not self.doc.strip()):
            raise TypeError("PhaseRef.doc must be a non-empty string or None")
        if self.source is not None and (
            not isinstance(self.source, str) or not self.source.strip()
        ):
            raise TypeError("PhaseRef.source must be a non-empty string or None")

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.order, self.id)
