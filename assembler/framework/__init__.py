"""Project-specific framework utilities.

This package holds the data model and the cross-cutting contracts shared by the
writers, phases and resolver:

- `assembler.framework.model`: descriptor types parsed from YAML mappings
- `assembler.framework.project`: project/reactor model
- `assembler.framework.artifacts`: artifact identity, scopes and the resolution accumulator
- `assembler.framework.interpolation`: `${...}` expression evaluation and path formatting
- `assembler.framework.configurator`: strict component configuration

For reusable, archive-agnostic phase primitives, use `phasekit`.
"""
