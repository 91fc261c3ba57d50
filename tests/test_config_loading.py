import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from assembler.foundation.config_io import deep_merge, find_repo_root, load_config
from assembler.framework.config import AssemblerConfig, parse_output_timestamp
from assembler.framework.errors import InvalidConfiguration

ENV_VAR = "TEST_ASSEMBLER_CONFIG"


def test_load_config_base_only(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "assembler.yaml").write_text("a: 1\nb:\n  c: 2\n", encoding="utf-8")

    cfg, meta = load_config(config_dir=str(tmp_path), env_var=ENV_VAR)

    assert cfg == {"a": 1, "b": {"c": 2}}
    assert meta["mode"] == "base"
    assert os.path.basename(meta["paths"][0]) == "assembler.yaml"


def test_load_config_base_plus_local_overlay(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "assembler.yaml").write_text("a: 1\nb:\n  c: 2\n", encoding="utf-8")
    (tmp_path / "assembler.local.yaml").write_text("b:\n  c: 3\n  d: 4\n", encoding="utf-8")

    cfg, meta = load_config(config_dir=str(tmp_path), env_var=ENV_VAR)

    assert cfg == {"a": 1, "b": {"c": 3, "d": 4}}
    assert meta["mode"] == "base+local"
    assert len(meta["paths"]) == 2


def test_load_config_ignores_local_overlay_without_base(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "assembler.local.yaml").write_text("a: 2\n", encoding="utf-8")

    cfg, meta = load_config(config_dir=str(tmp_path), env_var=ENV_VAR)

    assert cfg == {}
    assert meta["mode"] == "defaults"
    assert meta["paths"] == []


def test_load_config_overlay_type_mismatch_raises(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "assembler.yaml").write_text("a:\n  b: 1\n", encoding="utf-8")
    (tmp_path / "assembler.local.yaml").write_text("a: [1, 2]\n", encoding="utf-8")

    with pytest.raises(ValueError, match=r"Invalid config overlay merge at a"):
        load_config(config_dir=str(tmp_path), env_var=ENV_VAR)


def test_load_config_invalid_overlay_yaml_raises(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "assembler.yaml").write_text("a: 1\n", encoding="utf-8")
    (tmp_path / "assembler.local.yaml").write_text("a: [1, 2\n", encoding="utf-8")

    with pytest.raises(ValueError) as excinfo:
        load_config(config_dir=str(tmp_path), env_var=ENV_VAR)

    assert "assembler.local.yaml" in str(excinfo.value)


def test_load_config_rejects_non_mapping_documents(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "assembler.yaml").write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError, match=r"must contain a YAML mapping"):
        load_config(config_dir=str(tmp_path), env_var=ENV_VAR)


def test_load_config_env_override_loads_single_file(tmp_path, monkeypatch):
    base_dir = tmp_path / "base"
    base_dir.mkdir()
    env_dir = tmp_path / "env"
    env_dir.mkdir()

    (base_dir / "assembler.yaml").write_text("a: 1\n", encoding="utf-8")
    (base_dir / "assembler.local.yaml").write_text("a: 2\n", encoding="utf-8")
    env_path = env_dir / "my_config.yaml"
    env_path.write_text("a: 999\n", encoding="utf-8")

    monkeypatch.setenv(ENV_VAR, str(env_path))
    cfg, meta = load_config(config_dir=str(base_dir), env_var=ENV_VAR)

    assert cfg == {"a": 999}
    assert meta["mode"] == "env"
    assert meta["paths"] == [os.path.abspath(str(env_path))]


def test_load_config_explicit_path_wins_over_env(tmp_path, monkeypatch):
    explicit = tmp_path / "explicit.yaml"
    explicit.write_text("a: explicit\n", encoding="utf-8")
    monkeypatch.setenv(ENV_VAR, str(tmp_path / "does-not-exist.yaml"))

    cfg, meta = load_config(config_path=explicit, env_var=ENV_VAR)

    assert cfg == {"a": "explicit"}
    assert meta["mode"] == "explicit"


def test_load_config_missing_explicit_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError, match=r"Missing config file"):
        load_config(config_path=tmp_path / "nope.yaml", env_var=None)


def test_load_config_finds_repo_root_from_subdir(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_VAR, raising=False)
    (tmp_path / "pyproject.toml").write_text("[project]\nname = 'x'\n", encoding="utf-8")
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "assembler.yaml").write_text("formats: [zip]\n", encoding="utf-8")
    (tmp_path / "docs" / "deep").mkdir(parents=True)
    monkeypatch.chdir(tmp_path / "docs" / "deep")

    cfg, meta = load_config(env_var=ENV_VAR)

    assert cfg == {"formats": ["zip"]}
    assert Path(meta["paths"][0]).resolve() == (tmp_path / "config" / "assembler.yaml").resolve()
    assert Path(str(meta["repo_root"])).resolve() == tmp_path.resolve()


def test_find_repo_root_accepts_a_file_and_reports_failure(tmp_path):
    (tmp_path / ".git").mkdir()
    marker = tmp_path / "pkg" / "module.py"
    marker.parent.mkdir()
    marker.write_text("", encoding="utf-8")

    assert Path(find_repo_root(marker)) == tmp_path.resolve()


def test_repository_config_file_holds_defaults():
    repo_root = Path(__file__).resolve().parents[1]

    cfg, _meta = load_config(config_path=repo_root / "config" / "assembler.yaml", env_var=None)
    parsed = AssemblerConfig.from_dict(cfg)

    assert parsed.output_directory == "target"
    assert parsed.formats == ("zip",)
    assert parsed.archiver.tar_long_file_mode == "warn"


def test_deep_merge_semantics():
    assert deep_merge({"a": {"b": 1, "c": [1]}}, {"a": {"c": [2, 3]}}) == {"a": {"b": 1, "c": [2, 3]}}
    assert deep_merge({"a": 1}, {"b": 2}) == {"a": 1, "b": 2}
    assert deep_merge({"a": 1}, None) is None
    assert deep_merge(None, {"a": 1}) == {"a": 1}

    with pytest.raises(ValueError, match=r"at x: base is int but overlay is dict"):
        deep_merge({"x": 1}, {"x": {"y": 2}})


def test_assembler_config_defaults():
    cfg = AssemblerConfig.from_dict(None)

    assert cfg == AssemblerConfig()
    assert cfg.working_directory == "target/assembly/work"
    assert cfg.append_assembly_id is True
    assert cfg.archiver.recompress_zipped_files is True
    assert cfg.archiver.merge_manifest_mode is None
    assert cfg.jar.manifest_entries == {}


def test_assembler_config_reads_nested_sections():
    cfg = AssemblerConfig.from_dict(
        {
            "output_directory": "dist",
            "formats": ["zip", "tar.gz"],
            "append_assembly_id": False,
            "archiver": {
                "tar_long_file_mode": "gnu",
                "dry_run": True,
                "merge_manifest_mode": "merge",
                "output_timestamp": 0,
                "override_uid": 0,
                "override_user_name": "  ",
                "archiver_config": {"compression_level": 9},
            },
            "jar": {
                "manifest_entries": {"Built-By": "ci"},
                "manifest_sections": {"com/example/": {"Sealed": True}},
            },
        }
    )

    assert cfg.output_directory == "dist"
    assert cfg.formats == ("zip", "tar.gz")
    assert cfg.append_assembly_id is False
    assert cfg.archiver.tar_long_file_mode == "gnu"
    assert cfg.archiver.dry_run is True
    assert cfg.archiver.merge_manifest_mode == "merge"
    assert cfg.archiver.output_timestamp == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert cfg.archiver.override_uid == 0
    assert cfg.archiver.override_user_name is None
    assert cfg.archiver.archiver_config == {"compression_level": 9}
    assert cfg.jar.manifest_entries == {"Built-By": "ci"}
    assert cfg.jar.manifest_sections == {"com/example/": {"Sealed": "True"}}


@pytest.mark.parametrize(
    "payload",
    [
        {"bogus": 1},
        {"archiver": {"tar_long_file_mode": "sometimes"}},
        {"archiver": {"override_uid": -1}},
        {"archiver": {"output_timestamp": "yesterday"}},
        {"formats": "zip"},
        {"jar": {"manifest_sections": {"x": "not-a-mapping"}}},
    ],
)
def test_assembler_config_rejects_invalid_payloads(payload):
    with pytest.raises(InvalidConfiguration, match=r"Invalid assembler config"):
        AssemblerConfig.from_dict(payload)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, None),
        ("", None),
        (86400, datetime(1970, 1, 2, tzinfo=timezone.utc)),
        ("86400", datetime(1970, 1, 2, tzinfo=timezone.utc)),
        ("2024-01-02T03:04:05Z", datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
        ("2024-01-02T03:04:05", datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
        (datetime(2024, 1, 2), datetime(2024, 1, 2, tzinfo=timezone.utc)),
    ],
)
def test_parse_output_timestamp(raw, expected):
    assert parse_output_timestamp(raw) == expected


def test_parse_output_timestamp_rejects_booleans():
    with pytest.raises(TypeError):
        parse_output_timestamp(True)
