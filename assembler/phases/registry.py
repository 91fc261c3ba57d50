from __future__ import annotations

from types import ModuleType

from phasekit import PhaseRef, PhaseRegistry

from assembler.phases import dependency_sets, file_items, file_sets, module_sets

_PHASE_MODULES: tuple[tuple[ModuleType, str], ...] = (
    (file_items, "Loose files (`files`)"),
    (file_sets, "Directory file sets (`file_sets`)"),
    (module_sets, "Module sources, binaries and their dependencies (`module_sets`)"),
    (dependency_sets, "Resolved dependency artifacts (`dependency_sets`)"),
)


def default_phase_refs() -> list[PhaseRef]:
    return [
        PhaseRef(
            id=module.PHASE_ID,
            order=module.ORDER,
            apply=module.apply,
            doc=doc,
            source=module.__name__,
        )
        for module, doc in _PHASE_MODULES
    ]


def default_phase_registry() -> PhaseRegistry:
    return PhaseRegistry.from_refs(default_phase_refs())
