"""Tests for the disk package cache."""

import json
import os
import threading

import pytest

from conftest import make_package
from fhirpkg.cache import disk
from fhirpkg.cache.disk import DiskPackageCache, parse_folder_name
from fhirpkg.constants import PackageConsts
from fhirpkg.errors import CacheReadFailure, UnpackFailure
from fhirpkg.versioning.models import PackageReference

REF = PackageReference("hl7.fhir.us.core", "3.2.0")


def _write_entry(root, folder_name, manifest):
    content = os.path.join(root, folder_name, "package")
    os.makedirs(content)
    with open(os.path.join(content, "package.json"), "w", encoding="utf-8") as fh:
        json.dump(manifest, fh)
    return content


class TestInstall:
    """Installing packages into the cache."""

    def test_install_creates_entry_with_index(self, cache):
        data = make_package(REF.name, REF.version, resources={
            "Patient-p.json": {"resourceType": "Patient", "id": "p"},
        })
        assert cache.install(REF, data) is True

        entry = os.path.join(cache.root, "hl7.fhir.us.core#3.2.0")
        assert cache.package_root_folder(REF) == entry
        assert cache.is_installed(REF)
        assert os.path.isfile(os.path.join(entry, PackageConsts.CANONICAL_INDEX_FILE))
        assert cache.read_manifest(REF).version == "3.2.0"

    def test_install_is_idempotent(self, cache):
        data = make_package(REF.name, REF.version)
        assert cache.install(REF, data) is True
        index_file = os.path.join(cache.package_root_folder(REF), PackageConsts.CANONICAL_INDEX_FILE)
        before = os.path.getmtime(index_file)

        assert cache.install(REF, data) is False
        assert os.path.getmtime(index_file) == before

    def test_unpack_failure_leaves_nothing(self, cache):
        """A failed install is neither visible nor left behind."""
        with pytest.raises(UnpackFailure):
            cache.install(REF, b"garbage")
        assert not cache.is_installed(REF)
        assert os.listdir(cache.root) == []

    def test_crash_during_indexing_is_not_observable(self, cache, monkeypatch):
        """An install interrupted after unpacking never publishes the entry."""
        data = make_package(REF.name, REF.version)

        def boom(folder, recurse):
            raise RuntimeError("power cut")

        with monkeypatch.context() as patched:
            patched.setattr(disk.index_file, "create", boom)
            with pytest.raises(RuntimeError):
                cache.install(REF, data)
        assert not cache.is_installed(REF)
        assert cache.get_package_references() == []

        assert cache.install(REF, data) is True
        assert cache.is_installed(REF)

    def test_leftover_staging_is_ignored_and_purged(self, cache):
        """Staging folders from a killed process are invisible and removable."""
        _write_entry(cache.root, PackageConsts.STAGING_PREFIX + "abc123", {"name": "x", "version": "1.0.0"})
        assert cache.get_package_references() == []

        cache.install(REF, make_package(REF.name, REF.version))
        assert cache.get_package_references() == [REF]

        assert cache.purge_staging() == 1
        assert sorted(os.listdir(cache.root)) == ["hl7.fhir.us.core#3.2.0"]

    def test_empty_entry_folder_is_not_a_version(self, cache):
        cache.install(PackageReference("a", "1.0.0"), make_package("a", "1.0.0"))
        os.makedirs(os.path.join(cache.root, "a#1.1.0"))
        assert cache.get_versions("a").items == ["1.0.0"]

    def test_install_locks_are_released(self, cache):
        cache.install(REF, make_package(REF.name, REF.version))
        cache.install(REF, make_package(REF.name, REF.version))
        assert cache._locks == {}

    def test_empty_entry_folder_is_replaced(self, cache):
        os.makedirs(os.path.join(cache.root, "hl7.fhir.us.core#3.2.0"))
        assert not cache.is_installed(REF)
        assert cache.install(REF, make_package(REF.name, REF.version)) is True
        assert cache.is_installed(REF)

    def test_concurrent_publish_discards_staged_copy(self, cache):
        """If another writer publishes first, the staged copy is dropped."""
        data = make_package(REF.name, REF.version)

        def publish_first():
            _write_entry(cache.root, "hl7.fhir.us.core#3.2.0", {"name": REF.name, "version": "3.2.0"})

        assert cache.install(REF, data, on_indexing=publish_first) is False
        assert cache.is_installed(REF)
        assert not any(e.startswith(PackageConsts.STAGING_PREFIX) for e in os.listdir(cache.root))

    def test_parallel_installs_of_same_package(self, cache):
        data = make_package(REF.name, REF.version)
        results = []

        def worker():
            results.append(cache.install(REF, data))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert results.count(False) == 7

    def test_install_from_file(self, cache, tmp_path):
        path = tmp_path / "pkg.tgz"
        path.write_bytes(make_package("my.pkg", "0.2.0"))
        reference = cache.install_from_file(str(path))
        assert reference == PackageReference("my.pkg", "0.2.0")
        assert cache.is_installed(reference)

    def test_not_found_reference_cannot_be_installed(self, cache):
        with pytest.raises(ValueError):
            cache.install(PackageReference.none("x"), b"")

    def test_root_is_required(self):
        with pytest.raises(ValueError):
            DiskPackageCache("")


class TestEnumeration:
    """Listing cache contents."""

    @pytest.mark.parametrize("entry, expected", [
        ("hl7.fhir.r4.core#4.0.1", ("hl7.fhir.r4.core", "4.0.1")),
        ("hl7.fhir.r4.core-4.0.1", ("hl7.fhir.r4.core", "4.0.1")),
        ("my-pkg#1.0.0-beta", ("my-pkg", "1.0.0-beta")),
        ("simple-1.0.0", ("simple", "1.0.0")),
    ])
    def test_parse_folder_name(self, entry, expected):
        """'#' splits when present, otherwise the first '-'."""
        reference = parse_folder_name(entry)
        assert (reference.name, reference.version) == expected

    @pytest.mark.parametrize("entry", ["noseparator", "#1.0.0", "name#"])
    def test_unparseable_folder_names(self, entry):
        assert parse_folder_name(entry) is None

    def test_get_versions_is_case_insensitive(self, cache):
        for version in ("4.0.0", "4.0.1"):
            _write_entry(cache.root, f"HL7.Fhir.R4.Core#{version}", {"name": "hl7.fhir.r4.core"})
        _write_entry(cache.root, "other#1.0.0", {"name": "other"})
        os.makedirs(os.path.join(cache.root, ".hidden#1.0.0"))

        assert cache.get_versions("hl7.fhir.r4.core").items == ["4.0.0", "4.0.1"]
        assert len(cache.get_package_references()) == 3

    def test_missing_root_is_empty(self, tmp_path):
        cache = DiskPackageCache(str(tmp_path / "nowhere"))
        assert cache.get_package_references() == []
        assert cache.get_versions("x").is_empty
        assert cache.purge_staging() == 0


class TestLegacyLayout:
    """Entries written as name-version are still readable."""

    def test_legacy_folder_is_installed(self, cache):
        _write_entry(cache.root, "hl7.fhir.r4.core-4.0.1", {
            "name": "hl7.fhir.r4.core", "version": "4.0.1", "fhirVersions": ["4.0.1"],
        })
        reference = PackageReference("hl7.fhir.r4.core", "4.0.1")
        assert cache.is_installed(reference)
        assert cache.package_root_folder(reference).endswith("hl7.fhir.r4.core-4.0.1")
        assert cache.read_package_fhir_version(reference) == "4.0.1"
        assert cache.install(reference, make_package(reference.name, reference.version)) is False


class TestReads:
    """Reading content of installed packages."""

    def test_get_file_content(self, cache):
        cache.install(REF, make_package(REF.name, REF.version, resources={"a.json": {"resourceType": "Basic"}}))
        assert json.loads(cache.get_file_content(REF, "package/a.json")) == {"resourceType": "Basic"}

    def test_get_file_content_missing(self, cache):
        cache.install(REF, make_package(REF.name, REF.version))
        with pytest.raises(CacheReadFailure, match="You might have to do a restore"):
            cache.get_file_content(REF, "package/nope.json")

    def test_read_manifest_not_installed(self, cache):
        assert cache.read_manifest(REF) is None
        assert cache.read_package_fhir_version(REF) is None

    def test_canonical_index_not_installed(self, cache):
        with pytest.raises(CacheReadFailure):
            cache.get_canonical_index(REF)

    def test_canonical_index_of_installed_package(self, cache):
        cache.install(REF, make_package(REF.name, REF.version, resources={
            "StructureDefinition-us-core-patient.json": {
                "resourceType": "StructureDefinition",
                "id": "us-core-patient",
                "url": "http://hl7.org/fhir/us/core/StructureDefinition/us-core-patient",
            },
        }))
        index = cache.get_canonical_index(REF)
        assert index.version == PackageConsts.INDEX_VERSION
        sd = [f for f in index.files if f.resource_type == "StructureDefinition"]
        assert sd[0].filepath == "package/StructureDefinition-us-core-patient.json"
