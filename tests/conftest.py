"""Shared fixtures: in-memory package tarballs and a fake registry."""

import io
import json
import tarfile
import threading

import pytest

from fhirpkg.cache.disk import DiskPackageCache
from fhirpkg.common import checksum, http_client
from fhirpkg.constants import Constants
from fhirpkg.errors import RegistryError
from fhirpkg.project.folder import FolderProject
from fhirpkg.registry.client import PackageRelease
from fhirpkg.versioning.versions import Versions


def make_tarball(files):
    """Build a gzipped tarball from a ``{archive path: str | bytes | dict}`` mapping."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for path, content in files.items():
            if isinstance(content, dict):
                content = json.dumps(content)
            if isinstance(content, str):
                content = content.encode("utf-8")
            info = tarfile.TarInfo(name=path)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def make_package(name, version, dependencies=None, resources=None, fhir_version="4.0.1"):
    """Tarball of a FHIR package with a manifest and optional ``package/`` resources."""
    manifest = {"name": name, "version": version, "fhirVersions": [fhir_version]}
    if dependencies:
        manifest["dependencies"] = dict(dependencies)
    files = {"package/package.json": manifest}
    for filename, content in (resources or {}).items():
        files[f"package/{filename}"] = content
    return make_tarball(files)


def structure_definition(sd_id, url, version="1.0.0", snapshot=True):
    resource = {
        "resourceType": "StructureDefinition",
        "id": sd_id,
        "url": url,
        "version": version,
        "kind": "resource",
        "type": "Patient",
        "fhirVersion": "4.0.1",
    }
    if snapshot:
        resource["snapshot"] = {"element": [{"id": "Patient"}]}
    return resource


class FakeRegistry:
    """In-memory registry implementing the PackageServer protocol."""

    def __init__(self):
        self.packages = {}
        self.shasums = {}
        self.fetches = []
        self.listings = []
        self.failing = set()
        self._lock = threading.Lock()

    def publish(self, name, version, data, shasum=None, with_shasum=True):
        self.packages[(name, version)] = data
        if with_shasum:
            self.shasums[(name, version)] = shasum or checksum.sha_sum(data)
        return data

    def publish_package(self, name, version, dependencies=None, resources=None):
        return self.publish(name, version, make_package(name, version, dependencies, resources))

    def list_versions(self, name):
        with self._lock:
            self.listings.append(name)
        if name in self.failing:
            raise RegistryError(f"listing {name} failed", status_code=503)
        return {
            version: PackageRelease(name=pkg, version=version, shasum=self.shasums.get((pkg, version)))
            for (pkg, version) in self.packages
            if pkg.lower() == name.lower()
        }

    def get_versions(self, name):
        return Versions.from_listing(self.list_versions(name))

    def fetch_tarball(self, reference, release=None):
        with self._lock:
            self.fetches.append(reference.moniker)
        for (name, version), data in self.packages.items():
            if name.lower() == reference.name.lower() and version == reference.version:
                return data
        raise RegistryError(f"{reference} not published", status_code=404)


@pytest.fixture(autouse=True)
def _isolated_constants(monkeypatch):
    """Keep tunables and the HTTP cache from leaking between tests."""
    for attr in (
        "REGISTRY_URL", "REGISTRY_NPM_STYLE", "REQUEST_TIMEOUT", "HTTP_RETRY_MAX",
        "HTTP_RETRY_BASE_DELAY_SEC", "RESTORE_MAX_WORKERS", "REQUIRE_CHECKSUM", "CACHE_ROOT",
    ):
        monkeypatch.setattr(Constants, attr, getattr(Constants, attr))
    for env in (
        Constants.CONFIG_ENV, Constants.ENV_CACHE_ROOT, Constants.ENV_REGISTRY_URL,
        Constants.ENV_MAX_WORKERS, Constants.ENV_REQUIRE_CHECKSUM,
    ):
        monkeypatch.delenv(env, raising=False)
    http_client.clear_cache()
    yield
    http_client.clear_cache()


@pytest.fixture
def cache(tmp_path):
    return DiskPackageCache(str(tmp_path / "cache"))


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def project(tmp_path):
    folder = tmp_path / "project"
    folder.mkdir()
    return FolderProject(str(folder))


def write_manifest(project, dependencies, name="my.project"):
    path = f"{project.folder}/package.json"
    with open(path, "w", encoding="utf-8") as fh:
        json.dump({"name": name, "version": "0.1.0", "dependencies": dependencies}, fh)
    return path
