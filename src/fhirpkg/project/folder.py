"""A project backed by a plain folder holding ``package.json`` and the lock file."""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from fhirpkg.cache.indexer import ResourceMetadata, index_folder
from fhirpkg.errors import CacheReadFailure
from fhirpkg.project import lockfile
from fhirpkg.project import manifest as manifest_file
from fhirpkg.project.manifest import PackageManifest
from fhirpkg.restore.closure import PackageClosure

logger = logging.getLogger(__name__)


class FolderProject:
    """Project whose manifest, lock file and own resources live in ``folder``."""

    def __init__(self, folder: str):
        self.folder = os.path.abspath(folder)

    def __repr__(self) -> str:
        return f"FolderProject({self.folder!r})"

    def read_manifest(self) -> Optional[PackageManifest]:
        return manifest_file.read_from_folder(self.folder)

    def write_manifest(self, manifest: PackageManifest, merge: bool = True) -> None:
        """Write the manifest; by default keys already on disk are preserved."""
        os.makedirs(self.folder, exist_ok=True)
        manifest_file.write_to_folder(manifest, self.folder, merge=merge)

    def read_closure(self) -> Optional[PackageClosure]:
        return lockfile.read_from_folder(self.folder)

    def write_closure(self, closure: PackageClosure) -> str:
        os.makedirs(self.folder, exist_ok=True)
        return lockfile.write_to_folder(closure, self.folder)

    def is_lock_outdated(self) -> bool:
        return lockfile.is_outdated(self.folder)

    def get_file_content(self, filename: str) -> str:
        """Raw text of a file relative to the project folder."""
        path = os.path.join(self.folder, filename)
        try:
            with open(path, "r", encoding="utf-8-sig") as fh:
                return fh.read()
        except OSError as exc:
            raise CacheReadFailure(f"The file {filename} could not be found in project {self.folder}") from exc

    def get_index(self) -> List[ResourceMetadata]:
        # Not cached: project files change between calls.
        return index_folder(self.folder, recurse=True)
