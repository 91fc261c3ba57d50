"""`${...}` expression evaluation for descriptor strings.

Lookup order for a token:

1. explicit scoped values (artifact/module values for file-name mappings)
2. override properties
3. command-line properties
4. project properties
5. project model accessors (`project.*`, `pom.*`, bare `artifactId`, ...)
6. environment (`env.NAME`, or bare `NAME`)

Tokens that resolve nowhere are left in place verbatim.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping

from assembler.framework.artifacts import Artifact
from assembler.framework.project import ProjectModel

_TOKEN = re.compile(r"\$\{([^}]+)\}")
_MAX_DEPTH = 10


def project_values(project: ProjectModel | None, *prefixes: str) -> dict[str, str]:
    """Flatten the accessors of `project` under each of `prefixes`."""

    if project is None:
        return {}
    values = {
        "groupId": project.group_id,
        "artifactId": project.artifact_id,
        "version": project.version,
        "packaging": project.packaging,
        "basedir": str(project.basedir),
        "build.directory": str(project.build_directory),
        "build.finalName": project.final_name or "",
        "id": project.id,
    }
    if project.name:
        values["name"] = project.name
    for key, value in project.properties.items():
        values[f"properties.{key}"] = value

    out: dict[str, str] = {}
    for prefix in prefixes:
        for key, value in values.items():
            out[f"{prefix}{key}"] = value
    return out


def artifact_values(artifact: Artifact | None, prefix: str = "artifact.") -> dict[str, str]:
    if artifact is None:
        return {}
    values = {
        f"{prefix}groupId": artifact.group_id,
        f"{prefix}artifactId": artifact.artifact_id,
        f"{prefix}version": artifact.version,
        f"{prefix}baseVersion": artifact.base_version,
        f"{prefix}type": artifact.type,
        f"{prefix}extension": artifact.extension,
        f"{prefix}id": artifact.id,
    }
    if artifact.classifier:
        values[f"{prefix}classifier"] = artifact.classifier
    if artifact.scope:
        values[f"{prefix}scope"] = artifact.scope
    return values


def classifier_values(artifact: Artifact | None) -> dict[str, str]:
    classifier = artifact.classifier if artifact is not None else None
    if classifier:
        return {"dashClassifier": f"-{classifier}", "dashClassifier?": f"-{classifier}"}
    return {"dashClassifier?": ""}


@dataclass(frozen=True)
class ExpressionEvaluator:
    project: ProjectModel | None = None
    overrides: Mapping[str, str] = field(default_factory=dict)
    properties: Mapping[str, str] = field(default_factory=dict)
    environ: Mapping[str, str] | None = None
    scoped: Mapping[str, str] = field(default_factory=dict)

    def with_scope(self, values: Mapping[str, str]) -> "ExpressionEvaluator":
        merged = dict(self.scoped)
        merged.update(values)
        return ExpressionEvaluator(
            project=self.project,
            overrides=self.overrides,
            properties=self.properties,
            environ=self.environ,
            scoped=merged,
        )

    def for_artifact(
        self, artifact: Artifact | None, *, module: ProjectModel | None = None
    ) -> "ExpressionEvaluator":
        values: dict[str, str] = {}
        values.update(classifier_values(artifact))
        values.update(artifact_values(artifact))
        if module is not None:
            values.update(project_values(module, "module."))
            values.update(artifact_values(module.artifact, "module."))
        return self.with_scope(values)

    def lookup(self, token: str) -> str | None:
        key = token.strip()
        if key in self.scoped:
            return self.scoped[key]
        if key in self.overrides:
            return str(self.overrides[key])
        if key in self.properties:
            return str(self.properties[key])
        if self.project is not None:
            if key in self.project.properties:
                return self.project.properties[key]
            value = self._project_lookup(key)
            if value is not None:
                return value
        env = os.environ if self.environ is None else self.environ
        if key.startswith("env."):
            return env.get(key[len("env."):])
        return env.get(key)

    def _project_lookup(self, key: str) -> str | None:
        values = project_values(self.project, "project.", "pom.", "")
        values.setdefault("finalName", self.project.final_name or "")
        return values.get(key)

    def evaluate(self, text: str | None) -> str:
        if text is None:
            return ""

        def _replace(match: re.Match[str]) -> str:
            value = self.lookup(match.group(1))
            return match.group(0) if value is None else value

        current = text
        for _ in range(_MAX_DEPTH):
            updated = _TOKEN.sub(_replace, current)
            if updated == current:
                break
            current = updated
        return current


def fix_relative_refs(path: str) -> str:
    """Drop `.` segments and collapse `..` against the preceding segment.

    A `..` with nothing left to cancel is discarded, so `../path/` becomes
    `path/`. The separator style of the input is preserved.
    """

    if not path:
        return path
    separator = "\\" if ("\\" in path and "/" not in path) else "/"
    trailing = path.endswith(separator)
    leading = path.startswith(separator)

    kept: list[str] = []
    for segment in path.split(separator):
        if segment in ("", "."):
            continue
        if segment == "..":
            if kept:
                kept.pop()
            continue
        kept.append(segment)

    out = separator.join(kept)
    if out and trailing:
        out += separator
    if out and leading:
        out = separator + out
    return out


def output_directory(template: str | None, evaluator: ExpressionEvaluator) -> str:
    """Interpolate an output directory and normalize it to `a/b/` form ("" for none)."""

    if template is None:
        return ""
    value = evaluator.evaluate(template).strip().replace("\\", "/")
    if not value:
        return ""
    if not value.endswith("/"):
        value += "/"
    return fix_relative_refs(value).lstrip("/")


def file_name_mapping(template: str, evaluator: ExpressionEvaluator) -> str:
    value = evaluator.evaluate(template).strip()
    return fix_relative_refs(value)


def distribution_name(final_name: str, assembly_id: str | None, *, append_assembly_id: bool) -> str:
    if append_assembly_id and assembly_id:
        return f"{final_name}-{assembly_id}"
    return final_name


def archive_path(prefix: str, name: str) -> str:
    """Join an archive prefix and entry name with exactly one `/` between them."""

    name = name.replace("\\", "/").lstrip("/")
    if not prefix:
        return name
    prefix = prefix.replace("\\", "/")
    if not prefix.endswith("/"):
        prefix += "/"
    return prefix + name
