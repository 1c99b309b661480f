"""Project-side files: the package manifest, the lock file and folder projects."""

from fhirpkg.project.manifest import PackageManifest
from fhirpkg.project.folder import FolderProject

__all__ = [
    "FolderProject",
    "PackageManifest",
]
