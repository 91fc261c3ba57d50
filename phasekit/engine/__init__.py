"""Execution engine for ordered phases."""

from phasekit.engine.runner import (
    DefaultPhaseRecorder,
    NullPhaseRecorder,
    PhaseContext,
    PhaseRecorder,
    PhaseRunner,
)

__all__ = [
    "DefaultPhaseRecorder",
    "NullPhaseRecorder",
    "PhaseContext",
    "PhaseRecorder",
    "PhaseRunner",
]
