"""Package references, dependencies and version-range resolution."""

from fhirpkg.versioning.models import PackageDependency, PackageReference
from fhirpkg.versioning.versions import Versions, resolve, resolve_range

__all__ = [
    "PackageDependency",
    "PackageReference",
    "Versions",
    "resolve",
    "resolve_range",
]
