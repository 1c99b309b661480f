"""Package context: one lookup index over a project and every package in its closure."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from fhirpkg.cache.disk import DiskPackageCache
from fhirpkg.cache.indexer import ResourceMetadata
from fhirpkg.common.logging_utils import extra_context
from fhirpkg.errors import AmbiguousCanonical
from fhirpkg.restore.closure import PackageClosure
from fhirpkg.versioning.models import PackageReference

logger = logging.getLogger(__name__)


@dataclass
class PackageFileReference:
    """Index entry tied to the package that holds it.

    ``package`` is a not-found reference for files of the project itself.
    """
    package: PackageReference
    metadata: ResourceMetadata

    @property
    def canonical(self) -> Optional[str]:
        return self.metadata.canonical

    @property
    def filepath(self) -> str:
        return self.metadata.filepath

    @property
    def filename(self) -> str:
        return self.metadata.filename


class FileIndex:
    """Flat list of file references with canonical, id and file-name lookups."""

    def __init__(self, entries: Iterable[PackageFileReference] = ()):
        self._entries: List[PackageFileReference] = list(entries)

    def add(self, package: PackageReference, files: Iterable[ResourceMetadata]) -> None:
        self._entries.extend(PackageFileReference(package, meta) for meta in files)

    def __iter__(self) -> Iterator[PackageFileReference]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def resolve_canonical(self, canonical: str, version: Optional[str] = None) -> Optional[PackageFileReference]:
        """Find the resource with ``canonical`` (``url|version`` is accepted).

        When several resources share the canonical, the one with a snapshot
        or expansion wins.

        Raises:
            AmbiguousCanonical: several candidates and no single preferred one.
        """
        if version is None and "|" in canonical:
            canonical, version = canonical.split("|", 1)
        candidates = [
            e for e in self._entries
            if e.canonical == canonical and (not version or e.metadata.version == version)
        ]
        if len(candidates) <= 1:
            return candidates[0] if candidates else None
        preferred = [c for c in candidates if c.metadata.has_snapshot or c.metadata.has_expansion]
        if len(preferred) == 1:
            return preferred[0]
        raise AmbiguousCanonical(
            f"Found multiple conflicting conformance resources with the canonical url {canonical}"
        )

    def find_by_id(self, resource_type: str, resource_id: str) -> Optional[PackageFileReference]:
        for entry in self._entries:
            if entry.metadata.resource_type == resource_type and entry.metadata.id == resource_id:
                return entry
        return None

    def find_by_filename(self, filename: str) -> Optional[PackageFileReference]:
        return next((e for e in self._entries if e.filename == filename), None)

    def find_by_filepath(self, filepath: str) -> Optional[PackageFileReference]:
        return next((e for e in self._entries if e.filepath == filepath), None)

    def filenames(self) -> List[str]:
        return [e.filename for e in self._entries]


class PackageContext:
    """Resolves files across a project and its restored packages.

    The index is built lazily from the project's lock file on first use.
    """

    def __init__(self, cache: DiskPackageCache, project):
        self.cache = cache
        self.project = project
        self.closure: Optional[PackageClosure] = None
        self._index: Optional[FileIndex] = None

    @property
    def index(self) -> FileIndex:
        if self._index is None:
            self._index = self.build_index()
        return self._index

    def invalidate(self) -> None:
        self._index = None

    def build_index(self) -> FileIndex:
        """Index the project files and every package of the locked closure.

        Raises:
            ValueError: the project has no lock file.
        """
        closure = self.project.read_closure()
        if closure is None:
            raise ValueError(f"The folder {self.project.folder} does not contain a package lock file.")
        self.closure = closure
        index = FileIndex()
        index.add(PackageReference.none(), self.project.get_index())
        for reference in closure.references:
            index.add(reference, self.cache.get_canonical_index(reference).files)
        logger.debug(
            "Built file index",
            extra=extra_context(
                event="index_build", component="context",
                packages=len(closure), files=len(index),
            ),
        )
        return index

    def get_file_content(self, reference: PackageFileReference) -> str:
        if reference.package.not_found:
            return self.project.get_file_content(reference.filepath)
        return self.cache.get_file_content(reference.package, reference.filepath)

    def _content(self, reference: Optional[PackageFileReference]) -> Optional[str]:
        return self.get_file_content(reference) if reference is not None else None

    def get_file_reference_by_canonical(
        self, canonical: str, version: Optional[str] = None
    ) -> Optional[PackageFileReference]:
        return self.index.resolve_canonical(canonical, version)

    def get_file_content_by_canonical(self, canonical: str, version: Optional[str] = None) -> Optional[str]:
        return self._content(self.index.resolve_canonical(canonical, version))

    def get_file_content_by_id(self, resource_type: str, resource_id: str) -> Optional[str]:
        return self._content(self.index.find_by_id(resource_type, resource_id))

    def get_file_content_by_filename(self, filename: str) -> Optional[str]:
        return self._content(self.index.find_by_filename(filename))

    def get_file_content_by_filepath(self, filepath: str) -> Optional[str]:
        return self._content(self.index.find_by_filepath(filepath))

    def get_file_names(self) -> List[str]:
        return self.index.filenames()
