"""On-disk package cache, tarball handling and canonical resource indexes."""

from fhirpkg.cache.disk import DiskPackageCache
from fhirpkg.cache.indexer import CanonicalIndex, ResourceMetadata

__all__ = [
    "CanonicalIndex",
    "DiskPackageCache",
    "ResourceMetadata",
]
