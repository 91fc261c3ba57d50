"""Reusable ordered-phase kernel (phase registry, runner, strict config namespace).

This package is intentionally independent of `assembler.*`. Anything specific to
archive assembly (descriptor sections, writers, handlers) lives in the consuming
application.
"""

from phasekit.config_namespace import ConfigNamespace
from phasekit.engine.runner import (
    DefaultPhaseRecorder,
    NullPhaseRecorder,
    PhaseContext,
    PhaseRecorder,
    PhaseRunner,
)
from phasekit.phase_registry import PhaseRegistry
from phasekit.phase_types import PhaseCallable, PhaseRef

__all__ = [
    "ConfigNamespace",
    "DefaultPhaseRecorder",
    "NullPhaseRecorder",
    "PhaseCallable",
    "PhaseContext",
    "PhaseRecorder",
    "PhaseRef",
    "PhaseRegistry",
    "PhaseRunner",
]
