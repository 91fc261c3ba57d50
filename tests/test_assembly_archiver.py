import logging
import os
import tarfile
import zipfile
from pathlib import Path

import pytest

from assembler.archive.orchestrator import (
    AssemblyArchiver,
    destination_name,
    has_newer_files,
    should_recreate,
)
from assembler.archive.writers import get_writer
from assembler.framework.artifacts import Artifact
from assembler.framework.config import ArchiverOptions, AssemblerConfig, JarArchiveConfig
from assembler.framework.context import BuildContext
from assembler.framework.errors import (
    ArchiveCreationFailure,
    DependencyResolutionFailure,
    FormattingFailure,
    InvalidConfiguration,
    NoMatchingWriter,
)
from assembler.framework.model import AssemblyDescriptor
from assembler.framework.project import ProjectModel
from assembler.resolution.repository import ProjectGraphRepository


def _project(basedir: Path, **kwargs) -> ProjectModel:
    return ProjectModel(group_id="org.example", artifact_id="app", version="1.0", basedir=basedir, **kwargs)


def _context(basedir: Path, config: AssemblerConfig | None = None, **kwargs) -> BuildContext:
    project = kwargs.pop("project", None) or _project(basedir)
    return BuildContext(
        project=project,
        config=config or AssemblerConfig(),
        logger=logging.getLogger("test.archiver"),
        **kwargs,
    )


def _layout(basedir: Path) -> None:
    (basedir / "src" / "conf").mkdir(parents=True)
    (basedir / "src" / "main.txt").write_text("main\n", encoding="utf-8")
    (basedir / "src" / "conf" / "app.conf").write_text("conf\n", encoding="utf-8")
    (basedir / "README.txt").write_text("Version ${project.version}\n", encoding="utf-8")


def _descriptor(**overrides) -> AssemblyDescriptor:
    data = {
        "id": "bin",
        "formats": ["zip"],
        "file_sets": [{"directory": "src", "output_directory": "lib"}],
        "files": [{"source": "README.txt", "filtered": True}],
    }
    data.update(overrides)
    return AssemblyDescriptor.from_dict(data)


class _CountingFactory:
    def __init__(self):
        self.formats: list[str] = []

    def __call__(self, format):
        self.formats.append(format)
        return get_writer(format)


@pytest.mark.parametrize("assembly_id", [None, "", "   "])
def test_blank_assembly_id_is_rejected(tmp_path, assembly_id):
    factory = _CountingFactory()

    with pytest.raises(InvalidConfiguration, match=r"Assembly ID must be present and non-empty"):
        AssemblyArchiver(writer_factory=factory).build(
            AssemblyDescriptor(id=assembly_id), "out", "zip", _context(tmp_path)
        )
    assert factory.formats == []


def test_destination_name_honours_dir_extension_option():
    assert destination_name("app-bin", "tar.gz", ignore_dir_format_extensions=True) == "app-bin.tar.gz"
    assert destination_name("app-bin", "dir", ignore_dir_format_extensions=False) == "app-bin.dir"
    assert destination_name("app-bin", "dir", ignore_dir_format_extensions=True) == "app-bin"


def test_has_newer_files(tmp_path):
    (tmp_path / "nested").mkdir()
    old = tmp_path / "nested" / "old.txt"
    old.write_text("x", encoding="utf-8")
    os.utime(old, (1000, 1000))

    assert has_newer_files(tmp_path, 2000) is False
    assert has_newer_files(tmp_path, 500) is True
    assert has_newer_files(tmp_path / "missing", 0) is False


def test_up_to_date_destination_is_returned_without_building(tmp_path):
    _layout(tmp_path)
    context = _context(tmp_path)
    work = context.working_directory
    work.mkdir(parents=True)
    (work / "stale.txt").write_text("x", encoding="utf-8")
    os.utime(work / "stale.txt", (1000, 1000))
    destination = context.output_directory / "app-1.0-bin.zip"
    destination.write_bytes(b"previous")
    factory = _CountingFactory()

    result = AssemblyArchiver(writer_factory=factory).build(_descriptor(), "app-1.0-bin", "zip", context)

    assert result == destination
    assert factory.formats == []
    assert destination.read_bytes() == b"previous"
    assert should_recreate(destination, work) is False


def test_missing_working_directory_keeps_existing_archive(tmp_path):
    context = _context(tmp_path)
    destination = context.output_directory / "app-1.0-bin.zip"
    destination.parent.mkdir(parents=True)
    destination.write_bytes(b"previous")

    assert should_recreate(destination, context.working_directory) is False


def test_older_destination_is_rebuilt(tmp_path):
    _layout(tmp_path)
    context = _context(tmp_path)
    work = context.working_directory
    work.mkdir(parents=True)
    (work / "fresh.txt").write_text("x", encoding="utf-8")
    destination = context.output_directory / "app-1.0-bin.zip"
    destination.write_bytes(b"previous")
    os.utime(destination, (1000, 1000))
    factory = _CountingFactory()

    result = AssemblyArchiver(writer_factory=factory).build(_descriptor(), "app-1.0-bin", "zip", context)

    assert result == destination
    assert factory.formats == ["zip"]
    assert zipfile.is_zipfile(destination)


def test_create_archive_builds_zip_under_base_directory(tmp_path):
    _layout(tmp_path)
    context = _context(tmp_path)

    built = AssemblyArchiver().create_archive(_descriptor(), context)

    assert built == [tmp_path / "target" / "app-1.0-bin.zip"]
    with zipfile.ZipFile(built[0]) as zf:
        names = set(zf.namelist())
        assert {"app-1.0/lib/main.txt", "app-1.0/lib/conf/app.conf", "app-1.0/README.txt"} <= names
        assert zf.read("app-1.0/README.txt") == b"Version 1.0\n"


def test_base_directory_can_be_disabled_or_customized(tmp_path):
    _layout(tmp_path)

    flat = AssemblyArchiver().create_archive(_descriptor(include_base_directory=False), _context(tmp_path))
    with zipfile.ZipFile(flat[0]) as zf:
        assert "lib/main.txt" in zf.namelist()

    custom = AssemblyArchiver().create_archive(
        _descriptor(id="custom", base_directory="${project.artifactId}-dist"), _context(tmp_path)
    )
    with zipfile.ZipFile(custom[0]) as zf:
        assert "app-dist/lib/main.txt" in zf.namelist()


def test_create_archive_builds_each_requested_format(tmp_path):
    _layout(tmp_path)
    context = _context(tmp_path)

    built = AssemblyArchiver().create_archive(_descriptor(), context, formats=["tar.gz", "dir"])

    assert [p.name for p in built] == ["app-1.0-bin.tar.gz", "app-1.0-bin.dir"]
    with tarfile.open(built[0], "r:gz") as tf:
        assert "app-1.0/lib/main.txt" in tf.getnames()
    assert (built[1] / "app-1.0" / "README.txt").read_text(encoding="utf-8") == "Version 1.0\n"


def test_formats_fall_back_to_config_and_must_not_be_empty(tmp_path):
    _layout(tmp_path)

    built = AssemblyArchiver().create_archive(
        _descriptor(formats=[]), _context(tmp_path, AssemblerConfig(formats=("tar",)))
    )
    assert [p.name for p in built] == ["app-1.0-bin.tar"]

    with pytest.raises(InvalidConfiguration, match=r"No archive formats requested"):
        AssemblyArchiver().create_archive(_descriptor(formats=[]), _context(tmp_path))


def test_assembly_id_can_be_left_off_the_archive_name(tmp_path):
    _layout(tmp_path)

    built = AssemblyArchiver().create_archive(
        _descriptor(), _context(tmp_path, AssemblerConfig(append_assembly_id=False))
    )

    assert built[0].name == "app-1.0.zip"


def test_jar_gets_manifest_entries_from_config(tmp_path):
    _layout(tmp_path)
    config = AssemblerConfig(
        jar=JarArchiveConfig(manifest_entries={"Implementation-Version": "${project.version}"})
    )

    built = AssemblyArchiver().create_archive(_descriptor(formats=["jar"]), _context(tmp_path, config))

    with zipfile.ZipFile(built[0]) as zf:
        assert zf.namelist()[1] == "META-INF/MANIFEST.MF"
        assert b"Implementation-Version: 1.0\r\n" in zf.read("META-INF/MANIFEST.MF")


def test_container_descriptor_handlers_merge_across_file_sets(tmp_path):
    for name, lines in (("one", "A\nB\n"), ("two", "B\nC\n")):
        services = tmp_path / name / "META-INF" / "services"
        services.mkdir(parents=True)
        (services / "com.example.Spi").write_text(lines, encoding="utf-8")
    descriptor = AssemblyDescriptor.from_dict(
        {
            "id": "merged",
            "formats": ["zip"],
            "file_sets": [
                {"directory": "one", "output_directory": ""},
                {"directory": "two", "output_directory": ""},
            ],
            "container_descriptor_handlers": [{"handler_name": "metaInf-services"}],
        }
    )

    built = AssemblyArchiver().create_archive(descriptor, _context(tmp_path))

    with zipfile.ZipFile(built[0]) as zf:
        assert zf.read("app-1.0/META-INF/services/com.example.Spi") == b"A\nB\nC\n"
        assert zf.namelist().count("app-1.0/META-INF/services/com.example.Spi") == 1


def test_undecodable_handler_input_surfaces_as_formatting_failure(tmp_path):
    services = tmp_path / "one" / "META-INF" / "services"
    services.mkdir(parents=True)
    (services / "com.example.Spi").write_bytes(b"A\n\xff\xfe\n")
    descriptor = AssemblyDescriptor.from_dict(
        {
            "id": "merged",
            "file_sets": [{"directory": "one", "output_directory": ""}],
            "container_descriptor_handlers": [{"handler_name": "metaInf-services"}],
        }
    )

    with pytest.raises(FormattingFailure, match=r"Cannot decode META-INF/services/com\.example\.Spi"):
        AssemblyArchiver().build(descriptor, "out", "zip", _context(tmp_path))
    assert not (tmp_path / "target" / "out.zip").exists()


def test_dependency_sets_add_resolved_artifacts(tmp_path):
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()
    (repo_dir / "lib-2.0.jar").write_bytes(b"lib")
    (repo_dir / "junit-4.0.jar").write_bytes(b"junit")
    lib = Artifact(group_id="org.example", artifact_id="lib", version="2.0", scope="compile")
    junit = Artifact(group_id="junit", artifact_id="junit", version="4.0", scope="test")
    repository = ProjectGraphRepository(
        [
            (lib.with_file(repo_dir / "lib-2.0.jar"), ()),
            (junit.with_file(repo_dir / "junit-4.0.jar"), ()),
        ]
    )
    project = _project(tmp_path, dependencies=(lib, junit))
    descriptor = AssemblyDescriptor.from_dict(
        {
            "id": "deps",
            "formats": ["zip"],
            "dependency_sets": [{"output_directory": "lib", "use_project_artifact": False}],
        }
    )

    built = AssemblyArchiver().create_archive(
        descriptor, _context(tmp_path, project=project, repository=repository)
    )

    with zipfile.ZipFile(built[0]) as zf:
        names = zf.namelist()
    assert "app-1.0/lib/lib-2.0.jar" in names
    assert not any("junit" in name for name in names)


def test_unresolvable_dependency_reports_assembly_id(tmp_path):
    missing = Artifact(group_id="org.example", artifact_id="ghost", version="1.0", scope="compile")
    project = _project(tmp_path, dependencies=(missing,))
    descriptor = AssemblyDescriptor.from_dict({"id": "deps", "dependency_sets": [{}]})

    with pytest.raises(DependencyResolutionFailure) as excinfo:
        AssemblyArchiver().build(
            descriptor, "out", "zip", _context(tmp_path, project=project, repository=ProjectGraphRepository())
        )

    assert excinfo.value.assembly_id == "deps"
    assert "ghost" in str(excinfo.value)
    assert excinfo.value.phase_id == "dependency-sets"


def test_module_sets_add_module_sources_and_binaries(tmp_path):
    root = tmp_path / "root"
    module_dir = root / "mod-a"
    (module_dir / "src" / "main").mkdir(parents=True)
    (module_dir / "src" / "main" / "A.txt").write_text("a", encoding="utf-8")
    (module_dir / "target").mkdir()
    jar = module_dir / "target" / "mod-a-1.0.jar"
    with zipfile.ZipFile(jar, "w") as zf:
        zf.writestr("com/example/A.class", b"class")

    module = ProjectModel(
        group_id="org.example",
        artifact_id="mod-a",
        version="1.0",
        basedir=module_dir,
        artifact=Artifact(group_id="org.example", artifact_id="mod-a", version="1.0", file=jar),
    )
    parent = _project(root, packaging="pom", modules=("mod-a",))
    descriptor = AssemblyDescriptor.from_dict(
        {
            "id": "modules",
            "formats": ["zip"],
            "module_sets": [
                {
                    "sources": {"file_sets": [{"directory": "src", "output_directory": "sources"}]},
                    "binaries": {
                        "unpack": False,
                        "output_directory": "modules",
                        "include_dependencies": False,
                    },
                }
            ],
        }
    )

    built = AssemblyArchiver().create_archive(
        descriptor, _context(root, project=parent, reactor_projects=(parent, module))
    )

    with zipfile.ZipFile(built[0]) as zf:
        names = set(zf.namelist())
    assert "app-1.0/mod-a/sources/main/A.txt" in names
    assert "app-1.0/modules/mod-a-1.0.jar" in names


def test_failed_build_leaves_no_destination(tmp_path):
    _layout(tmp_path)
    descriptor = _descriptor(files=[{"source": "missing.txt"}])
    context = _context(tmp_path)

    with pytest.raises(ArchiveCreationFailure) as excinfo:
        AssemblyArchiver().build(descriptor, "app-1.0-bin", "zip", context)

    assert excinfo.value.assembly_id == "bin"
    assert excinfo.value.format == "zip"
    assert excinfo.value.phase_id == "file-items"
    assert not (context.output_directory / "app-1.0-bin.zip").exists()


def test_writer_failure_during_materialization_is_wrapped(tmp_path):
    _layout(tmp_path)
    long_name = "x" * 120 + ".txt"
    descriptor = _descriptor(files=[{"source": "README.txt", "dest_name": long_name}])
    config = AssemblerConfig(archiver=ArchiverOptions(tar_long_file_mode="fail"))
    context = _context(tmp_path, config)

    with pytest.raises(ArchiveCreationFailure, match=r"Error creating assembly archive bin") as excinfo:
        AssemblyArchiver().build(descriptor, "app-1.0-bin", "tar", context)

    assert excinfo.value.format == "tar"
    assert list(context.output_directory.iterdir()) == []


def test_unknown_format_and_handler_fail_fast(tmp_path):
    _layout(tmp_path)

    with pytest.raises(NoMatchingWriter):
        AssemblyArchiver().build(_descriptor(), "out", "rpm", _context(tmp_path))

    descriptor = _descriptor(container_descriptor_handlers=[{"handler_name": "nope"}])
    with pytest.raises(InvalidConfiguration, match=r"Unknown container descriptor handler"):
        AssemblyArchiver().build(descriptor, "out", "zip", _context(tmp_path))


def test_dry_run_does_not_write_archives(tmp_path):
    _layout(tmp_path)
    config = AssemblerConfig(archiver=ArchiverOptions(dry_run=True))

    built = AssemblyArchiver().create_archive(_descriptor(), _context(tmp_path, config))

    assert built == [tmp_path / "target" / "app-1.0-bin.zip"]
    assert not built[0].exists()


def test_phase_recorder_sees_every_phase_in_order(tmp_path):
    _layout(tmp_path)

    class _Recorder:
        def __init__(self):
            self.events: list[tuple[str, str]] = []

        def on_phase_start(self, ctx, ref):
            self.events.append(("start", ref.id))

        def on_phase_end(self, ctx, ref, *, elapsed_ms):
            self.events.append(("end", ref.id))

        def on_phase_error(self, ctx, ref, exc):
            self.events.append(("error", ref.id))

    recorder = _Recorder()
    AssemblyArchiver(recorder=recorder).create_archive(_descriptor(), _context(tmp_path))

    assert [phase for kind, phase in recorder.events if kind == "start"] == [
        "file-items",
        "file-sets",
        "module-sets",
        "dependency-sets",
    ]
    assert not any(kind == "error" for kind, _ in recorder.events)
