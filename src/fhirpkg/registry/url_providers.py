"""URL layouts of the supported package registries."""

from __future__ import annotations

from fhirpkg.constants import Constants
from fhirpkg.versioning.models import PackageReference


class FhirPackageUrlProvider:
    """FHIR package servers: ``{root}/{name}`` and ``{root}/{name}/{version}``."""

    kind = "FHIR"

    def __init__(self, root: str):
        self.root = root.rstrip("/")

    def listing_url(self, name: str) -> str:
        return f"{self.root}/{name}"

    def package_url(self, reference: PackageReference) -> str:
        return f"{self.root}/{reference.name}/{reference.version}"

    def __str__(self) -> str:
        return f"({self.kind}) {self.root}"


class NodePackageUrlProvider(FhirPackageUrlProvider):
    """Plain npm registries; tarballs live under ``/-/``."""

    kind = "NPM"

    def listing_url(self, name: str) -> str:
        reference = PackageReference.parse(name)
        return f"{self.root}/{reference.npm_name}"

    def package_url(self, reference: PackageReference) -> str:
        if reference.scope is None:
            return f"{self.root}/{reference.name}/-/{reference.name}-{reference.version}.tgz"
        return (
            f"{self.root}/@{reference.scope}/{reference.name}/-/"
            f"{reference.name}-{reference.version}.tgz"
        )


def create(root: str, npm: bool = False) -> FhirPackageUrlProvider:
    return NodePackageUrlProvider(root) if npm else FhirPackageUrlProvider(root)


def fhir_org() -> FhirPackageUrlProvider:
    return FhirPackageUrlProvider(Constants.REGISTRY_URL_FHIR)


def simplifier() -> FhirPackageUrlProvider:
    return FhirPackageUrlProvider(Constants.REGISTRY_URL_SIMPLIFIER)


def npm() -> NodePackageUrlProvider:
    return NodePackageUrlProvider(Constants.REGISTRY_URL_NPM)
