"""Module sets: sources and binaries of sibling reactor projects.

For each module set the phase

* validates the configuration (warnings only),
* adds module sources as file sets rooted at each module's basedir,
* adds each module's project artifact (or a classified attachment), and
* adds the binaries' dependency sets once per module.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

from assembler.archive.tasks import add_artifact, add_dependency_set, add_file_sets
from assembler.archive.writers import ArchiveWriter
from assembler.framework.artifacts import Artifact
from assembler.framework.context import BuildContext
from assembler.framework.errors import ArchiveCreationFailure, InvalidConfiguration
from assembler.framework.interpolation import file_name_mapping, output_directory
from assembler.framework.model import (
    AssemblyDescriptor,
    DependencySet,
    FileSet,
    ModuleBinaries,
    ModuleSet,
    ModuleSources,
)
from assembler.framework.project import ProjectModel
from assembler.resolution.modules import get_module_projects
from assembler.resolution.resolver import DependencyResolver

PHASE_ID = "module-sets"
ORDER = 30


def binaries_dependency_sets(binaries: ModuleBinaries) -> tuple[DependencySet, ...]:
    """Explicit dependency sets, or one implied by the binaries' own options."""

    if binaries.dependency_sets or not binaries.include_dependencies:
        return binaries.dependency_sets
    return (
        DependencySet(
            output_directory=binaries.output_directory,
            file_mode=binaries.file_mode,
            directory_mode=binaries.directory_mode,
            includes=binaries.includes,
            excludes=binaries.excludes,
            unpack=binaries.unpack,
        ),
    )


def _uses_deprecated_sources_options(sources: ModuleSources) -> bool:
    return sources.output_directory is not None or bool(sources.includes) or bool(sources.excludes)


def validate(module_set: ModuleSet, context: BuildContext) -> None:
    log = context.logger
    if module_set.sources is None and module_set.binaries is None:
        log.warning("Encountered a module set with no sources or binaries specified. Skipping.")

    if module_set.use_all_reactor_projects and not module_set.include_sub_modules:
        log.warning(
            "include_sub_modules == false is incompatible with use_all_reactor_projects. Ignoring. "
            "Use includes and excludes to fine-tune the modules included."
        )

    reactor = context.reactor_projects
    if len(reactor) > 1 and reactor[0].id == context.project.id and module_set.binaries is not None:
        log.warning(
            "Module binaries requested in the root project's assembly; "
            "module binaries may not be available for this assembly."
        )

    sources = module_set.sources
    if sources is not None:
        if _uses_deprecated_sources_options(sources):
            log.warning(
                "Using module sources options as a file set is deprecated; use sources.file_sets instead."
            )
        elif not sources.use_default_excludes:
            log.warning(
                "directory_mode, file_mode and use_default_excludes directly within module sources are "
                "deprecated; use sources.file_sets instead."
            )


def module_file_set(
    file_set: FileSet,
    sources: ModuleSources,
    module: ProjectModel,
    context: BuildContext,
) -> FileSet:
    """Re-root a module source file set at the module and compute its output directory."""

    if file_set.directory is not None and not Path(file_set.directory).is_absolute():
        directory = str((module.basedir / file_set.directory).absolute())
    elif file_set.directory is not None:
        directory = file_set.directory
    else:
        directory = str(module.basedir.absolute())

    excludes = list(file_set.excludes)
    if sources.exclude_sub_module_directories:
        excludes.extend(f"{sub_module}/**" for sub_module in module.modules)

    evaluator = context.evaluator().for_artifact(module.artifact, module=module)
    prefix = ""
    if sources.include_module_directory:
        prefix = file_name_mapping(sources.output_directory_mapping, evaluator)
        if not prefix.endswith("/"):
            prefix += "/"

    dest = prefix if file_set.output_directory is None else prefix + file_set.output_directory
    dest = output_directory(dest, evaluator)
    context.logger.debug("module source directory is: %s", directory)
    context.logger.debug("module dest directory is: %s (assembly basedir may be prepended)", dest)

    return dataclasses.replace(
        file_set,
        directory=directory,
        output_directory=dest,
        excludes=tuple(excludes),
    )


def add_module_sources(
    writer: ArchiveWriter,
    sources: ModuleSources | None,
    modules: list[ProjectModel],
    context: BuildContext,
) -> None:
    if sources is None:
        return

    file_sets: list[FileSet] = []
    if _uses_deprecated_sources_options(sources):
        file_sets.append(dataclasses.replace(sources.as_file_set(), directory=None))
    file_sets.extend(sources.file_sets or (FileSet(directory="src"),))

    for module in modules:
        context.logger.info("Processing sources for module project: %s", module.id)
        module_sets = [module_file_set(fs, sources, module, context) for fs in file_sets]
        add_file_sets(writer, module_sets, context, project=module, module=module)


def _module_artifact(module: ProjectModel, classifier: str | None) -> Artifact | None:
    if classifier is None:
        return module.artifact
    for attachment in module.attached_artifacts:
        if attachment.classifier == classifier:
            return attachment
    raise InvalidConfiguration(
        f"Cannot find attachment with classifier: {classifier} in module project: {module.id}. "
        "Please exclude this module from the module set."
    )


def _mismatched_versions(modules: list[ProjectModel]) -> list[ProjectModel]:
    if not modules:
        return []
    version = modules[0].version
    return [module for module in modules if module.version != version]


def add_module_binaries(
    writer: ArchiveWriter,
    descriptor: AssemblyDescriptor,
    module_set: ModuleSet,
    modules: list[ProjectModel],
    context: BuildContext,
    resolver: DependencyResolver,
) -> None:
    binaries = module_set.binaries
    if binaries is None:
        return

    log = context.logger
    packaged: list[ProjectModel] = []
    for module in modules:
        if module.packaging == "pom":
            log.debug("Excluding %s from module binaries: packaging is pom", module.id)
            continue
        packaged.append(module)

    chosen: dict[str, Artifact | None] = {}
    for module in packaged:
        if binaries.attachment_classifier is None:
            log.debug("Processing binary artifact for module project: %s", module.id)
        else:
            log.debug(
                "Processing binary attachment: %s for module project: %s",
                binaries.attachment_classifier,
                module.id,
            )
        artifact = _module_artifact(module, binaries.attachment_classifier)
        if artifact is None or artifact.file is None:
            label = artifact.id if artifact is not None else module.id
            raise ArchiveCreationFailure(
                f"Artifact: {label} (included by module) does not have an artifact with a file. "
                "Please ensure the module is packaged before the assembly is generated."
            )
        chosen[module.id] = artifact
        add_artifact(
            writer,
            artifact,
            context,
            output_dir=binaries.output_directory,
            name_mapping=binaries.output_file_name_mapping,
            file_mode=binaries.file_mode,
            directory_mode=binaries.directory_mode,
            unpack=binaries.unpack,
            unpack_options=binaries.unpack_options if binaries.unpack else None,
            module=module,
        )

    dependency_sets = binaries_dependency_sets(binaries)
    if not dependency_sets:
        return

    resolved = resolver.resolve_for_module_set(descriptor, module_set, dependency_sets, context)

    mismatched = _mismatched_versions(packaged)
    if mismatched:
        log.warning(
            "The current modules seem to have different versions.\n%s",
            "\n".join(f" --> {module.id}" for module in mismatched),
        )

    for module in packaged:
        log.debug("Processing binary dependencies for module project: %s", module.id)
        module_view = dataclasses.replace(module, artifact=chosen.get(module.id) or module.artifact)
        for dependency_set, artifacts in resolved.items():
            add_dependency_set(
                writer,
                dataclasses.replace(dependency_set, use_project_artifact=False),
                artifacts,
                context,
                project=module,
                module=module_view,
                default_output_directory=binaries.output_directory,
                default_file_name_mapping=binaries.output_file_name_mapping,
            )


def apply(
    descriptor: AssemblyDescriptor,
    writer: ArchiveWriter,
    context: BuildContext,
    *,
    resolver: DependencyResolver,
) -> None:
    for module_set in descriptor.module_sets:
        validate(module_set, context)
        modules = get_module_projects(module_set, context)
        add_module_sources(writer, module_set.sources, modules, context)
        add_module_binaries(writer, descriptor, module_set, modules, context, resolver)
