"""Package registry access: URL layouts and the HTTP client."""

from fhirpkg.registry.client import PackageClient, PackageListing, PackageRelease, PackageServer
from fhirpkg.registry.url_providers import FhirPackageUrlProvider, NodePackageUrlProvider

__all__ = [
    "FhirPackageUrlProvider",
    "NodePackageUrlProvider",
    "PackageClient",
    "PackageListing",
    "PackageRelease",
    "PackageServer",
]
