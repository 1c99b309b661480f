"""Package manifest (``package.json``) model and file helpers."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from fhirpkg.constants import PackageConsts
from fhirpkg.errors import ManifestError
from fhirpkg.versioning.models import LATEST, PackageDependency, PackageReference, normalize_name

logger = logging.getLogger(__name__)

# dataclass attribute -> package.json key
_FIELD_KEYS = (
    ("name", "name"),
    ("version", "version"),
    ("description", "description"),
    ("author", "author"),
    ("type", "type"),
    ("title", "title"),
    ("license", "license"),
    ("homepage", "homepage"),
    ("canonical", "canonical"),
    ("url", "url"),
    ("jurisdiction", "jurisdiction"),
    ("dependencies", "dependencies"),
    ("dev_dependencies", "devDependencies"),
    ("keywords", "keywords"),
    ("directories", "directories"),
    ("fhir_versions", "fhirVersions"),
    ("fhir_version_list", "fhir-version-list"),
    ("maintainers", "maintainers"),
)
_KNOWN_KEYS = {key for _, key in _FIELD_KEYS}


@dataclass
class PackageManifest:
    """The parts of an NPM-style ``package.json`` used for FHIR packages.

    Keys not modelled here are kept in ``extra`` and written back unchanged.
    """
    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    author: Any = None
    type: Optional[str] = None
    title: Optional[str] = None
    license: Optional[str] = None
    homepage: Optional[str] = None
    canonical: Optional[str] = None
    url: Optional[str] = None
    jurisdiction: Optional[str] = None
    dependencies: Optional[Dict[str, str]] = None
    dev_dependencies: Optional[Dict[str, str]] = None
    keywords: Optional[List[str]] = None
    directories: Optional[Dict[str, str]] = None
    fhir_versions: Optional[List[str]] = None
    fhir_version_list: Optional[List[str]] = None
    maintainers: Optional[List[Dict[str, str]]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageManifest":
        if not isinstance(data, dict):
            raise ManifestError("Manifest root must be a JSON object")
        values = {attr: data.get(key) for attr, key in _FIELD_KEYS}
        deps = values.get("dependencies")
        if deps is not None and not isinstance(deps, dict):
            raise ManifestError("'dependencies' must be an object of name -> range")
        extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
        return cls(extra=extra, **values)

    @classmethod
    def from_json(cls, text: str) -> "PackageManifest":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ManifestError(f"Invalid manifest JSON: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for attr, key in _FIELD_KEYS:
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @property
    def reference(self) -> PackageReference:
        return PackageReference(name=self.name, version=self.version)

    def get_dependencies(self) -> Iterator[PackageDependency]:
        """Declared dependencies; a range that is not a string is read as its text."""
        for name, rng in (self.dependencies or {}).items():
            if rng is not None and not isinstance(rng, str):
                logger.warning("Dependency %s of %s has a non-string range %r", name, self.name, rng)
                rng = str(rng)
            yield PackageDependency(name=name, range=rng)

    def add_dependency(self, name: str, rng: Optional[str] = None) -> None:
        """Add or replace a dependency; a missing range is stored as "latest"."""
        if self.dependencies is None:
            self.dependencies = {}
        for key in list(self.dependencies):
            if normalize_name(key) == normalize_name(name):
                del self.dependencies[key]
        self.dependencies[name] = rng or LATEST

    def has_dependency(self, name: str) -> bool:
        return any(normalize_name(k) == normalize_name(name) for k in self.dependencies or {})

    def remove_dependency(self, name: str) -> bool:
        for key in list(self.dependencies or {}):
            if normalize_name(key) == normalize_name(name):
                del self.dependencies[key]
                return True
        return False

    def get_fhir_version(self) -> Optional[str]:
        for versions in (self.fhir_versions, self.fhir_version_list):
            if versions:
                return versions[0]
        return None

    def set_fhir_version(self, version: str) -> None:
        self.fhir_versions = [version]


def read(path: str) -> Optional[PackageManifest]:
    """Read a manifest file; None if it does not exist."""
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8-sig") as fh:
        return PackageManifest.from_json(fh.read())


def read_from_folder(folder: str) -> Optional[PackageManifest]:
    return read(os.path.join(folder, PackageConsts.MANIFEST))


def write(manifest: PackageManifest, path: str, merge: bool = False) -> None:
    """Write a manifest, optionally merging onto the JSON already at ``path``."""
    data = manifest.to_dict()
    if merge and os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8-sig") as fh:
                existing = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Could not merge into existing manifest %s: %s", path, exc)
            existing = None
        if isinstance(existing, dict):
            existing.update(data)
            if "dependencies" in data:
                existing["dependencies"] = data["dependencies"]
            data = existing
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)


def write_to_folder(manifest: PackageManifest, folder: str, merge: bool = False) -> None:
    write(manifest, os.path.join(folder, PackageConsts.MANIFEST), merge=merge)


def create(name: str, fhir_version: Optional[str] = None) -> PackageManifest:
    """New manifest with sensible defaults."""
    manifest = PackageManifest(
        name=name,
        description="Put a description here",
        version="0.1.0",
        dependencies={},
    )
    if fhir_version:
        manifest.set_fhir_version(fhir_version)
    return manifest


def valid_package_name(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name


def clean_package_name(name: str) -> str:
    """Keep only characters allowed in a generated package name."""
    return re.sub(r"[^A-Za-z0-9.\-_]", "", name)
