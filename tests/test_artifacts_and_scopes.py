import itertools
from pathlib import Path

import pytest

from assembler.framework.artifacts import Artifact, ResolutionAccumulator, Scope
from assembler.framework.errors import InvalidConfiguration
from assembler.resolution.scopes import ScopeFilter, scopes_for, transitive_scope


def _artifact(artifact_id: str, scope: str | None = None, **kwargs) -> Artifact:
    return Artifact(group_id="org.example", artifact_id=artifact_id, version="1.0", scope=scope, **kwargs)


def test_accumulator_keeps_highest_scope_whatever_the_insertion_order():
    inputs = [
        _artifact("lib", "test"),
        _artifact("lib", "compile"),
        _artifact("lib", "runtime"),
        _artifact("other", "provided"),
    ]

    for ordering in itertools.permutations(inputs):
        accumulator = ResolutionAccumulator(ordering)
        assert len(accumulator) == 2
        assert {a.artifact_id: a.scope for a in accumulator} == {"lib": "compile", "other": "provided"}


def test_accumulator_moves_replaced_entry_to_the_end():
    accumulator = ResolutionAccumulator([_artifact("a", "runtime"), _artifact("b", "compile")])

    assert accumulator.add(_artifact("a", "compile")) is True
    assert [a.artifact_id for a in accumulator] == ["b", "a"]

    assert accumulator.add(_artifact("a", "test")) is False
    assert accumulator.scope_of(_artifact("a")) is Scope.COMPILE
    assert _artifact("a") in accumulator
    assert _artifact("missing") not in accumulator


def test_accumulator_equal_scope_keeps_first_entry():
    accumulator = ResolutionAccumulator([_artifact("a", "compile")])

    assert accumulator.add(_artifact("a", "compile", file=Path("other.jar"))) is False
    assert accumulator.artifacts()[0].file is None


def test_scope_ranking_and_parsing():
    assert Scope.COMPILE > Scope.PROVIDED > Scope.RUNTIME > Scope.SYSTEM > Scope.TEST > Scope.UNKNOWN
    assert Scope.parse(" Compile ") is Scope.COMPILE
    assert Scope.parse("import") is Scope.UNKNOWN
    assert Scope.parse(None) is Scope.UNKNOWN
    assert Scope.RUNTIME.label == "runtime"


def test_scope_filter_runtime_admits_compile_and_runtime_only():
    runtime = ScopeFilter("runtime")

    assert runtime(_artifact("a", "compile"))
    assert runtime(_artifact("a", "runtime"))
    assert not runtime(_artifact("a", "test"))
    assert not runtime(_artifact("a", "provided"))
    # The project's own outputs carry no scope.
    assert runtime(_artifact("a"))


def test_scopes_for_unions_roots_and_rejects_unknown():
    assert scopes_for(["provided", "system"]) == frozenset({"provided", "system"})
    assert scopes_for("test") == frozenset({"compile", "provided", "runtime", "system", "test"})

    with pytest.raises(InvalidConfiguration, match=r"Unknown dependency scope: 'bogus'"):
        scopes_for("bogus")


@pytest.mark.parametrize(
    ("direct", "declared", "expected"),
    [
        ("compile", "compile", "compile"),
        ("compile", "runtime", "runtime"),
        ("provided", "compile", "provided"),
        ("runtime", "compile", "runtime"),
        ("test", "runtime", "test"),
        ("compile", "test", None),
        ("compile", "provided", None),
        (None, None, "compile"),
    ],
)
def test_transitive_scope_table(direct, declared, expected):
    assert transitive_scope(direct, declared) == expected


def test_artifact_identity_ignores_scope_and_file():
    left = _artifact("lib", "compile", file=Path("a.jar"))
    right = _artifact("lib", "test")

    assert left == right
    assert len({left, right}) == 1
    assert left.id == "org.example:lib:jar:1.0"
    assert str(left) == "org.example:lib:jar:1.0:compile"


def test_artifact_type_implies_classifier_and_extension():
    tests_jar = Artifact(group_id="org.example", artifact_id="lib", version="1.0", type="test-jar")

    assert tests_jar.classifier == "tests"
    assert tests_jar.extension == "jar"
    assert tests_jar.conflict_id == "org.example:lib:test-jar:tests"


def test_artifact_base_version_collapses_timestamped_snapshots():
    assert _artifact("a").base_version == "1.0"
    snapshot = Artifact(group_id="g", artifact_id="a", version="1.0-20240101.120000-3")
    assert snapshot.base_version == "1.0-SNAPSHOT"


def test_artifact_requires_coordinates():
    with pytest.raises(ValueError, match=r"Artifact\.group_id must be a non-empty string"):
        Artifact(group_id=" ", artifact_id="a", version="1.0")


def test_artifact_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match=r"Unknown config keys under artifact: colour"):
        Artifact.from_dict({"group_id": "g", "artifact_id": "a", "version": "1", "colour": "red"})
