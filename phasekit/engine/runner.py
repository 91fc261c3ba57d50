"""Sequential runner for registered phases.

This module is intentionally app-agnostic and must not import `assembler.*`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from phasekit.phase_registry import PhaseRegistry
from phasekit.phase_types import PhaseRef


class PhaseContext(Protocol):
    logger: logging.Logger


class PhaseRecorder(Protocol):
    def on_phase_start(self, ctx: PhaseContext, ref: PhaseRef) -> None:
        ...

    def on_phase_end(self, ctx: PhaseContext, ref: PhaseRef, *, elapsed_ms: int) -> None:
        ...

    def on_phase_error(self, ctx: PhaseContext, ref: PhaseRef, exc: Exception) -> None:
        ...


class DefaultPhaseRecorder:
    def on_phase_start(self, ctx: PhaseContext, ref: PhaseRef) -> None:
        tokens = [f"order={ref.order}"]
        if ref.source:
            tokens.append(f"source={ref.source}")
        ctx.logger.debug("Phase: %s (%s)", ref.id, ", ".join(tokens))

    def on_phase_end(self, ctx: PhaseContext, ref: PhaseRef, *, elapsed_ms: int) -> None:
        ctx.logger.debug("Completed phase %s (elapsed_ms=%d)", ref.id, elapsed_ms)

    def on_phase_error(self, ctx: PhaseContext, ref: PhaseRef, exc: Exception) -> None:
        ctx.logger.error("Phase failed: %s (%s)", ref.id, exc)


class NullPhaseRecorder:
    def on_phase_start(self, ctx: PhaseContext, ref: PhaseRef) -> None:
        return

    def on_phase_end(self, ctx: PhaseContext, ref: PhaseRef, *, elapsed_ms: int) -> None:
        return

    def on_phase_error(self, ctx: PhaseContext, ref: PhaseRef, exc: Exception) -> None:
        return


class PhaseRunner:
    def __init__(self, *, recorder: PhaseRecorder | None = None):
        self._recorder = recorder or DefaultPhaseRecorder()
        self._validate_recorder(self._recorder)

    @staticmethod
    def _validate_recorder(recorder: Any) -> None:
        for method in ("on_phase_start", "on_phase_end", "on_phase_error"):
            if not callable(getattr(recorder, method, None)):
                raise TypeError(f"Phase recorder is missing {method}()")

    def run(self, ctx: PhaseContext, registry: PhaseRegistry, *args: Any, **kwargs: Any) -> list[str]:
        """Apply every phase in `(order, id)` order; return the ids that ran.

        The first failing phase aborts the run. Its exception is re-raised with
        `phase_id` and `phase_order` attached.
        """

        completed: list[str] = []
        for ref in registry.ordered():
            self._recorder.on_phase_start(ctx, ref)
            started = time.perf_counter()
            try:
                ref.apply(*args, **kwargs)
            except Exception as exc:
                self._attach_phase_error(exc, ref)
                self._recorder.on_phase_error(ctx, ref, exc)
                raise
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            self._recorder.on_phase_end(ctx, ref, elapsed_ms=elapsed_ms)
            completed.append(ref.id)
        return completed

    @staticmethod
    def _attach_phase_error(exc: Exception, ref: PhaseRef) -> None:
        if not hasattr(exc, "phase_id"):
            setattr(exc, "phase_id", ref.id)
        if not hasattr(exc, "phase_order"):
            setattr(exc, "phase_order", ref.order)
