import logging
from pathlib import Path

import pytest

from assembler.framework.artifacts import Artifact
from assembler.framework.context import BuildContext
from assembler.framework.errors import DependencyResolutionFailure, InvalidConfiguration
from assembler.framework.model import AssemblyDescriptor, DependencySet, ModuleBinaries, ModuleSet
from assembler.framework.project import ProjectModel
from assembler.resolution.filters import filter_artifacts, filter_projects, match_artifact
from assembler.resolution.modules import get_module_projects, project_modules
from assembler.resolution.repository import ProjectGraphRepository, transitive_closure
from assembler.resolution.resolver import DependencyResolver
from assembler.resolution.scopes import ScopeFilter

_LOG = logging.getLogger("test.resolution")


def _artifact(artifact_id: str, version: str = "1.0", **kwargs) -> Artifact:
    return Artifact(group_id="org.example", artifact_id=artifact_id, version=version, **kwargs)


def _with_file(artifact: Artifact, tmp_path: Path) -> Artifact:
    path = tmp_path / f"{artifact.artifact_id}-{artifact.version}.jar"
    path.write_bytes(artifact.id.encode("utf-8"))
    return artifact.with_file(path)


def _project(artifact_id: str, basedir: Path, **kwargs) -> ProjectModel:
    return ProjectModel(group_id="org.example", artifact_id=artifact_id, version="1.0", basedir=basedir, **kwargs)


def test_transitive_closure_applies_scope_table_and_skips_optional(tmp_path):
    repository = ProjectGraphRepository()
    repository.register(
        _with_file(_artifact("a"), tmp_path),
        [
            _artifact("b", scope="compile"),
            _artifact("c", scope="compile", optional=True),
            _artifact("d", scope="runtime"),
        ],
    )
    repository.register(_with_file(_artifact("t"), tmp_path), [_artifact("e", scope="compile")])
    for name in ("b", "c", "d", "e"):
        repository.register(_with_file(_artifact(name), tmp_path))

    found = transitive_closure(
        repository,
        [_artifact("a", scope="compile"), _artifact("t", scope="test")],
        root_trail="org.example:app:jar:1.0",
    )

    assert [(a.artifact_id, a.scope) for a in found] == [
        ("a", "compile"),
        ("t", "test"),
        ("b", "compile"),
        ("d", "runtime"),
        ("e", "test"),
    ]
    assert all(a.file is not None for a in found)
    b = found[2]
    assert b.dependency_trail == (
        "org.example:app:jar:1.0",
        "org.example:a:jar:1.0",
        "org.example:b:jar:1.0",
    )


def test_transitive_closure_nearest_version_wins(tmp_path):
    repository = ProjectGraphRepository()
    repository.register(_with_file(_artifact("a"), tmp_path), [_artifact("x", "2.0", scope="compile")])
    repository.register(_with_file(_artifact("x", "1.0"), tmp_path))
    repository.register(_with_file(_artifact("x", "2.0"), tmp_path))

    found = transitive_closure(
        repository,
        [_artifact("a", scope="compile"), _artifact("x", "1.0", scope="compile")],
        root_trail="root",
    )

    assert [(a.artifact_id, a.version) for a in found] == [("a", "1.0"), ("x", "1.0")]


def test_repository_reports_missing_artifacts_and_files(tmp_path):
    repository = ProjectGraphRepository([(_artifact("nofile"), ())])

    with pytest.raises(DependencyResolutionFailure, match=r"Artifact not found in repository: org\.example:ghost:jar:1\.0"):
        repository.resolve(_artifact("ghost"))
    with pytest.raises(DependencyResolutionFailure, match=r"Artifact has no file"):
        repository.resolve(_artifact("nofile"))

    attached = _with_file(_artifact("given"), tmp_path)
    assert repository.resolve(attached) is attached


def test_repository_register_merges_files_and_dependencies(tmp_path):
    repository = ProjectGraphRepository()
    repository.register(_artifact("a"), [_artifact("b")])
    repository.register(_with_file(_artifact("a"), tmp_path), [_artifact("b"), _artifact("c")])

    assert _artifact("a") in repository
    assert repository.resolve(_artifact("a")).file == tmp_path / "a-1.0.jar"
    assert [d.artifact_id for d in repository.dependencies(_artifact("a"))] == ["b", "c"]
    assert repository.dependencies(_artifact("unknown")) == []


def test_resolver_non_transitive_returns_direct_dependencies_only(tmp_path):
    repository = ProjectGraphRepository()
    repository.register(_with_file(_artifact("a"), tmp_path), [_artifact("b", scope="compile")])
    repository.register(_with_file(_artifact("b"), tmp_path))
    project = _project("app", tmp_path, dependencies=(_artifact("a", scope="compile"),))

    artifacts = DependencyResolver().dependency_artifacts(project, transitive=False, repository=repository)

    assert [a.artifact_id for a in artifacts] == ["a"]
    assert artifacts[0].dependency_trail == ("org.example:app:jar:1.0", "org.example:a:jar:1.0")


def test_resolver_wraps_failures_with_project_id(tmp_path):
    project = _project("app", tmp_path, dependencies=(_artifact("ghost", scope="compile"),))

    with pytest.raises(DependencyResolutionFailure, match=r"Failed to resolve dependencies for project org\.example:app:jar:1\.0"):
        DependencyResolver().dependency_artifacts(project, transitive=True, repository=ProjectGraphRepository())


def test_resolver_skips_dependencies_outside_the_set_scope(tmp_path):
    repository = ProjectGraphRepository()
    repository.register(_with_file(_artifact("lib", "2.0"), tmp_path))
    repository.register(_artifact("junit", "4.0"))
    project = _project(
        "app",
        tmp_path,
        dependencies=(_artifact("lib", "2.0", scope="compile"), _artifact("junit", "4.0", scope="test")),
    )
    context = BuildContext(project=project, repository=repository, logger=_LOG)
    runtime_set, direct_set = DependencySet(), DependencySet(use_transitive_dependencies=False)
    descriptor = AssemblyDescriptor(id="deps", dependency_sets=(runtime_set, direct_set))

    resolved = DependencyResolver().resolve_for_dependency_sets(descriptor, [runtime_set, direct_set], context)

    assert [a.artifact_id for a in resolved[runtime_set]] == ["lib"]
    assert [a.artifact_id for a in resolved[direct_set]] == ["lib"]

    test_set = DependencySet(scope="test")
    with pytest.raises(DependencyResolutionFailure, match=r"Artifact has no file in repository: org\.example:junit:jar:4\.0"):
        DependencyResolver().resolve_for_dependency_sets(descriptor, [test_set], context)


def test_transitive_closure_does_not_walk_into_excluded_artifacts(tmp_path):
    repository = ProjectGraphRepository()
    repository.register(_artifact("mock"), [_artifact("bytes", scope="compile")])

    found = transitive_closure(
        repository,
        [_artifact("mock", scope="test")],
        root_trail="org.example:app:jar:1.0",
        include=ScopeFilter("runtime"),
    )

    assert found == []


def test_resolver_keys_results_by_dependency_set_identity(tmp_path):
    repository = ProjectGraphRepository([(_with_file(_artifact("a"), tmp_path), ())])
    project = _project("app", tmp_path, dependencies=(_artifact("a", scope="compile"),))
    context = BuildContext(project=project, repository=repository, logger=_LOG)
    first, second = DependencySet(), DependencySet()
    descriptor = AssemblyDescriptor(id="deps", dependency_sets=(first, second))

    resolved = DependencyResolver().resolve_for_dependency_sets(descriptor, [first, second], context)

    assert list(resolved) == [first, second]
    assert [a.artifact_id for a in resolved[first]] == ["a"]
    assert resolved[first] is not resolved[second]


def test_resolver_falls_back_to_reactor_projects(tmp_path):
    module_jar = tmp_path / "mod.jar"
    module_jar.write_bytes(b"jar")
    module = _project("mod", tmp_path / "mod", artifact=_artifact("mod", file=module_jar))
    root = _project("app", tmp_path, dependencies=(_artifact("mod", scope="compile"),))
    context = BuildContext(project=root, reactor_projects=(root, module), logger=_LOG)
    dependency_set = DependencySet()

    resolved = DependencyResolver().resolve_for_dependency_sets(
        AssemblyDescriptor(id="deps"), [dependency_set], context
    )

    assert [a.file for a in resolved[dependency_set]] == [module_jar]


def test_module_set_resolution_keeps_highest_scope_across_projects(tmp_path):
    repository = ProjectGraphRepository([(_with_file(_artifact("lib"), tmp_path), ())])
    root = _project(
        "app", tmp_path, packaging="pom", modules=("m",), dependencies=(_artifact("lib", scope="runtime"),)
    )
    module = _project("m", tmp_path / "m", dependencies=(_artifact("lib", scope="compile"),))
    context = BuildContext(project=root, reactor_projects=(root, module), repository=repository, logger=_LOG)
    module_set = ModuleSet(binaries=ModuleBinaries())
    dependency_set = DependencySet()

    resolved = DependencyResolver().resolve_for_module_set(
        AssemblyDescriptor(id="mods"), module_set, [dependency_set], context
    )

    assert [(a.artifact_id, a.scope) for a in resolved[dependency_set]] == [("lib", "compile")]


def test_match_artifact_segments_and_wildcards():
    lib = _artifact("lib")

    assert match_artifact("org.example:lib", lib)
    assert match_artifact("*:lib:jar", lib)
    assert match_artifact("org.example::jar", lib)
    assert match_artifact("org.*:l?b:jar::1.0", lib)
    assert not match_artifact("org.example:lib:war", lib)
    assert not match_artifact("org.example:lib:jar:tests", lib)
    assert not match_artifact("a:b:c:d:e:f", lib)


def test_match_artifact_uses_dependency_trail_only_when_transitive():
    pulled = _artifact("b").with_trail(
        ("org.example:app:jar:1.0", "org.example:a:jar:1.0", "org.example:b:jar:1.0")
    )

    assert match_artifact("org.example:a", pulled, transitive=True)
    assert not match_artifact("org.example:a", pulled)


def test_filter_artifacts_applies_includes_excludes_and_extra_predicates():
    artifacts = [
        _artifact("a", scope="compile"),
        _artifact("b", scope="compile"),
        _artifact("c", scope="test"),
        Artifact(group_id="com.other", artifact_id="d", version="1.0", scope="compile"),
    ]

    kept = filter_artifacts(
        artifacts,
        includes=["org.example:*"],
        excludes=["*:b"],
        logger=_LOG,
        additional=[ScopeFilter("runtime"), None],
    )

    assert [a.artifact_id for a in kept] == ["a"]


def test_transitive_filtering_excludes_what_a_dependency_pulled_in():
    direct = _artifact("a").with_trail(("root", "org.example:a:jar:1.0"))
    pulled = _artifact("b").with_trail(("root", "org.example:a:jar:1.0", "org.example:b:jar:1.0"))

    plain = filter_artifacts([direct, pulled], excludes=["org.example:a"], logger=_LOG)
    transitive = filter_artifacts([direct, pulled], excludes=["org.example:a"], transitive=True, logger=_LOG)

    assert [a.artifact_id for a in plain] == ["b"]
    assert transitive == []


def test_strict_filtering_rejects_unmatched_patterns(caplog):
    artifacts = [_artifact("a")]

    with caplog.at_level(logging.WARNING, logger="test.resolution"):
        kept = filter_artifacts(artifacts, includes=["org.example:a", "com.nope:*"], logger=_LOG)
    assert [a.artifact_id for a in kept] == ["a"]
    assert "com.nope:*" in caplog.text

    with pytest.raises(InvalidConfiguration, match=r"unmatched criteria: include: com\.nope:\*"):
        filter_artifacts(artifacts, includes=["org.example:a", "com.nope:*"], strict=True, logger=_LOG)


def _reactor(tmp_path: Path) -> tuple[ProjectModel, ...]:
    root = _project("root", tmp_path, packaging="pom", modules=("a", "other"))
    a = _project("a", tmp_path / "a", packaging="pom", modules=("aa",))
    aa = _project("aa", tmp_path / "a" / "aa")
    other = _project("other", tmp_path / "other")
    stray = _project("stray", tmp_path / "elsewhere")
    return root, a, aa, other, stray


def test_project_modules_follows_module_directories(tmp_path):
    root, a, aa, other, stray = _reactor(tmp_path)
    reactor = (root, a, aa, other, stray)

    nested = project_modules(root, reactor, include_sub_modules=True, logger=_LOG)
    direct = project_modules(root, reactor, include_sub_modules=False, logger=_LOG)

    assert [p.artifact_id for p in nested] == ["a", "other", "aa"]
    assert [p.artifact_id for p in direct] == ["a", "other"]


def test_get_module_projects_applies_excludes(tmp_path):
    reactor = _reactor(tmp_path)
    context = BuildContext(project=reactor[0], reactor_projects=reactor, logger=_LOG)

    modules = get_module_projects(ModuleSet(excludes=("org.example:aa",)), context)

    assert [p.artifact_id for p in modules] == ["a", "other"]


def test_get_module_projects_with_all_reactor_projects(tmp_path):
    reactor = _reactor(tmp_path)
    from_module = BuildContext(project=reactor[1], reactor_projects=reactor, logger=_LOG)

    rooted = get_module_projects(ModuleSet(use_all_reactor_projects=True), from_module)
    everything = get_module_projects(
        ModuleSet(use_all_reactor_projects=True, include_sub_modules=False), from_module
    )

    assert [p.artifact_id for p in rooted] == ["a", "other", "aa"]
    assert [p.artifact_id for p in everything] == ["root", "a", "aa", "other", "stray"]


def test_filter_projects_matches_project_coordinates(tmp_path):
    reactor = _reactor(tmp_path)

    kept = filter_projects(reactor, includes=["org.example:a*"], logger=_LOG)

    assert [p.artifact_id for p in kept] == ["a", "aa"]
