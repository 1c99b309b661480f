"""Disk-backed package cache: one immutable ``name#version`` folder per package."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from fhirpkg.cache import index_file
from fhirpkg.cache.indexer import CanonicalIndex
from fhirpkg.cache.packaging import extract_manifest, unpack_to_folder
from fhirpkg.common.logging_utils import Timer, extra_context, is_debug_enabled
from fhirpkg.constants import PackageConsts
from fhirpkg.errors import CacheReadFailure
from fhirpkg.project import manifest as manifest_file
from fhirpkg.project.manifest import PackageManifest
from fhirpkg.versioning.models import PackageReference, normalize_name
from fhirpkg.versioning.versions import Versions

logger = logging.getLogger(__name__)

SEPARATOR = "#"
LEGACY_SEPARATOR = "-"


def package_folder_name(reference: PackageReference, glue: str = SEPARATOR) -> str:
    return f"{reference.name}{glue}{reference.version}"


def parse_folder_name(entry: str) -> Optional[PackageReference]:
    """Turn a cache folder name back into a reference.

    ``#`` splits when present; otherwise the first ``-`` (legacy naming).
    """
    if SEPARATOR in entry:
        name, _, version = entry.partition(SEPARATOR)
    elif LEGACY_SEPARATOR in entry:
        name, _, version = entry.partition(LEGACY_SEPARATOR)
    else:
        return None
    if not name or not version:
        return None
    return PackageReference(name=name, version=version)


class DiskPackageCache:
    """Content cache rooted at an explicit folder.

    Installs are staged in a hidden folder next to the entries and published
    with a single rename, so a half-unpacked package is never visible as
    installed. Once published an entry is never modified.
    """

    def __init__(self, root: str):
        if not root:
            raise ValueError("A cache root folder is required")
        self.root = os.path.abspath(root)
        # entry key -> [lock, number of holders and waiters]
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    def __repr__(self) -> str:
        return f"DiskPackageCache({self.root!r})"

    @contextmanager
    def _locked(self, reference: PackageReference) -> Iterator[None]:
        """Hold the install lock of one entry; the lock is dropped once nobody waits on it."""
        key = normalize_name(package_folder_name(reference))
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def package_root_folder(self, reference: PackageReference) -> str:
        """Entry folder; the legacy ``name-version`` folder is used if only it exists."""
        current = os.path.join(self.root, package_folder_name(reference))
        if not os.path.isdir(current):
            legacy = os.path.join(self.root, package_folder_name(reference, LEGACY_SEPARATOR))
            if os.path.isdir(os.path.join(legacy, PackageConsts.PACKAGE_FOLDER)):
                return legacy
        return current

    def package_content_folder(self, reference: PackageReference) -> str:
        return os.path.join(self.package_root_folder(reference), PackageConsts.PACKAGE_FOLDER)

    def is_installed(self, reference: PackageReference) -> bool:
        if reference.not_found:
            return False
        return os.path.isdir(self.package_content_folder(reference))

    def install(
        self,
        reference: PackageReference,
        data: bytes,
        on_indexing: Optional[Callable[[], None]] = None,
    ) -> bool:
        """Unpack ``data`` into a new entry and build its canonical index.

        ``on_indexing`` is called once the files are unpacked.

        Returns False when the entry already existed (nothing written).

        Raises:
            UnpackFailure: the bytes are not a valid package archive.
        """
        if reference.not_found:
            raise ValueError(f"Cannot install unresolved reference {reference}")
        with self._locked(reference):
            if self.is_installed(reference):
                logger.debug("Already installed: %s", reference)
                return False
            os.makedirs(self.root, exist_ok=True)
            target = os.path.join(self.root, package_folder_name(reference))
            staging = tempfile.mkdtemp(prefix=PackageConsts.STAGING_PREFIX, dir=self.root)
            try:
                with Timer() as t:
                    unpack_to_folder(data, staging)
                    if on_indexing is not None:
                        on_indexing()
                    index_file.create(staging, recurse=True)
                if self.is_installed(reference):
                    logger.info("Concurrent install of %s won; discarding staged copy", reference)
                    return False
                if os.path.isdir(target):
                    # an entry folder without content is a leftover; replace it
                    shutil.rmtree(target)
                try:
                    os.rename(staging, target)
                except OSError:
                    if self.is_installed(reference):
                        logger.info("Concurrent install of %s won; discarding staged copy", reference)
                        return False
                    raise
            finally:
                if os.path.isdir(staging):
                    shutil.rmtree(staging, ignore_errors=True)
        logger.info(
            "Installed %s",
            reference,
            extra=extra_context(
                event="install", component="disk_cache", outcome="success",
                duration_ms=t.duration_ms(), target=target,
            ),
        )
        return True

    def install_from_file(self, path: str) -> PackageReference:
        """Install a local tarball, taking name and version from its manifest."""
        with open(path, "rb") as fh:
            data = fh.read()
        reference = extract_manifest(data).reference
        if reference.not_found:
            raise CacheReadFailure(f"Package file {path} has no name/version in its manifest")
        self.install(reference, data)
        return reference

    def purge_staging(self) -> int:
        """Remove leftovers of interrupted installs; returns how many were removed."""
        if not os.path.isdir(self.root):
            return 0
        removed = 0
        for entry in os.listdir(self.root):
            if entry.startswith(PackageConsts.STAGING_PREFIX):
                shutil.rmtree(os.path.join(self.root, entry), ignore_errors=True)
                removed += 1
        if removed:
            logger.info("Removed %d interrupted installs from %s", removed, self.root)
        return removed

    def read_manifest(self, reference: PackageReference) -> Optional[PackageManifest]:
        """Manifest of an installed package, or None if it is not installed."""
        folder = self.package_content_folder(reference)
        if not os.path.isdir(folder):
            return None
        return manifest_file.read_from_folder(folder)

    def read_package_fhir_version(self, reference: PackageReference) -> Optional[str]:
        manifest = self.read_manifest(reference)
        return manifest.get_fhir_version() if manifest is not None else None

    def get_canonical_index(self, reference: PackageReference) -> CanonicalIndex:
        if not self.is_installed(reference):
            raise CacheReadFailure(
                f"Package {reference} is not installed in {self.root}. You might have to do a restore."
            )
        return index_file.get_from_folder(self.package_root_folder(reference), recurse=True)

    def get_package_references(self) -> List[PackageReference]:
        references = []
        if not os.path.isdir(self.root):
            return references
        for entry in sorted(os.listdir(self.root)):
            if entry.startswith(".") or not os.path.isdir(os.path.join(self.root, entry)):
                continue
            reference = parse_folder_name(entry)
            if reference is None:
                if is_debug_enabled(logger):
                    logger.debug("Ignoring cache folder %s", entry)
                continue
            references.append(reference)
        return references

    def get_versions(self, name: str) -> Versions:
        """Installed versions of ``name``; entry folders without content are skipped."""
        key = normalize_name(name)
        return Versions.from_references(
            r for r in self.get_package_references()
            if normalize_name(r.name) == key and self.is_installed(r)
        )

    def get_file_content(self, reference: PackageReference, filename: str) -> str:
        """Read a file relative to the package entry folder."""
        path = os.path.join(self.package_root_folder(reference), filename)
        try:
            with open(path, "r", encoding="utf-8-sig") as fh:
                return fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheReadFailure(
                f"The file {filename} could not be found in package {reference}. "
                "You might have to do a restore."
            ) from exc
