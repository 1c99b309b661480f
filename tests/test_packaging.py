"""Tests for tarball unpacking, layout rules and folder packing."""

import io
import json
import tarfile

import pytest

from conftest import make_package, make_tarball
from fhirpkg.cache.packaging import (
    extract_manifest,
    iter_files,
    organize_path,
    pack_folder,
    target_path,
    unpack_to_folder,
)
from fhirpkg.errors import ManifestError, UnpackFailure
from fhirpkg.project.manifest import PackageManifest


class TestLayout:
    """Where archive members end up on disk."""

    @pytest.mark.parametrize("member, expected", [
        ("package/package.json", "package/package.json"),
        ("package/StructureDefinition-a.json", "package/StructureDefinition-a.json"),
        ("package/other/readme.md", "package/other/readme.md"),
        ("./package/ValueSet-b.json", "package/ValueSet-b.json"),
        ("package.json", "package/package.json"),
        ("Patient-example.xml", "package/Patient-example.xml"),
        ("notes.txt", "package/other/notes.txt"),
        ("spec.internals", "package/other/spec.internals"),
    ])
    def test_target_path(self, member, expected):
        """Foldered members keep their path; loose members are organized."""
        assert target_path(member) == expected

    @pytest.mark.parametrize("member", ["/etc/passwd", "package/../../evil.json", "../x.json", "C:/x.json"])
    def test_unsafe_paths_rejected(self, member):
        with pytest.raises(UnpackFailure):
            target_path(member)

    def test_organize_path_flattens(self):
        assert organize_path("input/resources/Patient.json") == "package/Patient.json"
        assert organize_path("images/logo.png") == "package/other/logo.png"


class TestUnpack:
    """Unpacking tarballs into a folder."""

    def test_unpack_writes_files(self, tmp_path):
        data = make_package("a", "1.0.0", resources={"Patient-p.json": {"resourceType": "Patient", "id": "p"}})
        count = unpack_to_folder(data, str(tmp_path))
        assert count == 2
        assert json.loads((tmp_path / "package" / "package.json").read_text())["name"] == "a"
        assert (tmp_path / "package" / "Patient-p.json").is_file()

    def test_loose_members_are_organized(self, tmp_path):
        data = make_tarball({"package.json": {"name": "a", "version": "1.0.0"}, "readme.md": "hi"})
        unpack_to_folder(data, str(tmp_path))
        assert (tmp_path / "package" / "package.json").is_file()
        assert (tmp_path / "package" / "other" / "readme.md").read_text() == "hi"

    def test_not_a_tarball(self, tmp_path):
        with pytest.raises(UnpackFailure):
            unpack_to_folder(b"definitely not gzip", str(tmp_path))

    def test_truncated_tarball(self, tmp_path):
        data = make_package("a", "1.0.0", resources={"x.json": {"resourceType": "Basic"}})
        with pytest.raises(UnpackFailure):
            unpack_to_folder(data[:40], str(tmp_path))

    def test_empty_archive(self, tmp_path):
        with pytest.raises(UnpackFailure):
            unpack_to_folder(make_tarball({}), str(tmp_path))

    def test_symlink_member_rejected(self, tmp_path):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            info = tarfile.TarInfo("package/link.json")
            info.type = tarfile.SYMTYPE
            info.linkname = "/etc/passwd"
            tar.addfile(info)
        with pytest.raises(UnpackFailure):
            unpack_to_folder(buffer.getvalue(), str(tmp_path))

    def test_iter_files_skips_directories(self):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            folder = tarfile.TarInfo("package")
            folder.type = tarfile.DIRTYPE
            tar.addfile(folder)
            info = tarfile.TarInfo("package/a.json")
            info.size = 2
            tar.addfile(info, io.BytesIO(b"{}"))
        assert list(iter_files(buffer.getvalue())) == [("package/a.json", b"{}")]


class TestManifest:
    """Reading the manifest straight from a tarball."""

    def test_extract_manifest(self):
        manifest = extract_manifest(make_package("hl7.fhir.us.core", "3.2.0", {"hl7.fhir.r4.core": "4.0.1"}))
        assert manifest.reference.moniker == "hl7.fhir.us.core@3.2.0"
        assert manifest.dependencies == {"hl7.fhir.r4.core": "4.0.1"}

    def test_missing_manifest(self):
        with pytest.raises(ManifestError):
            extract_manifest(make_tarball({"package/x.json": "{}"}))


class TestPack:
    """Packing a folder into a package tarball."""

    def test_pack_folder_round_trip(self, tmp_path):
        source = tmp_path / "src"
        (source / "resources").mkdir(parents=True)
        (source / "resources" / "Patient.json").write_text('{"resourceType": "Patient"}')
        (source / "notes.md").write_text("notes")
        manifest = PackageManifest(name="my.pkg", version="0.1.0")

        data = pack_folder(str(source), manifest=manifest)

        assert extract_manifest(data).name == "my.pkg"
        names = sorted(name for name, _ in iter_files(data))
        assert names == ["package/Patient.json", "package/other/notes.md", "package/package.json"]

    def test_pack_folder_collision(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        (tmp_path / "a" / "x.json").write_text("{}")
        (tmp_path / "b" / "x.json").write_text("{}")
        with pytest.raises(ValueError):
            pack_folder(str(tmp_path))
