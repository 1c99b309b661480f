"""Registry client: package listings and tarball downloads over HTTP."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import requests

from fhirpkg.common import http_client
from fhirpkg.common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from fhirpkg.constants import Constants
from fhirpkg.errors import RegistryError
from fhirpkg.registry.url_providers import FhirPackageUrlProvider, create
from fhirpkg.versioning.models import PackageReference
from fhirpkg.versioning.versions import Versions

logger = logging.getLogger(__name__)


class PackageServer(Protocol):
    """What a restore needs from a registry."""

    def list_versions(self, name: str) -> Dict[str, "PackageRelease"]:
        ...

    def get_versions(self, name: str) -> Versions:
        ...

    def fetch_tarball(self, reference: PackageReference, release: Optional["PackageRelease"] = None) -> bytes:
        ...


@dataclass
class PackageRelease:
    """One entry of a listing's ``versions`` map."""
    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    shasum: Optional[str] = None
    tarball: Optional[str] = None
    fhir_version: Optional[str] = None
    url: Optional[str] = None
    unlisted: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageRelease":
        dist = data.get("dist") if isinstance(data.get("dist"), dict) else {}
        return cls(
            name=data.get("name"),
            version=data.get("version"),
            description=data.get("description"),
            shasum=dist.get("shasum"),
            tarball=dist.get("tarball"),
            fhir_version=data.get("fhirVersion"),
            url=data.get("url"),
            unlisted=data.get("unlisted"),
        )

    @property
    def is_unlisted(self) -> bool:
        return str(self.unlisted).lower() == "true"


@dataclass
class PackageListing:
    """Registry document describing every published version of a package."""
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    dist_tags: Dict[str, str] = field(default_factory=dict)
    versions: Dict[str, PackageRelease] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageListing":
        raw_versions = data.get("versions") if isinstance(data.get("versions"), dict) else {}
        versions = {
            key: PackageRelease.from_dict(value)
            for key, value in raw_versions.items()
            if isinstance(value, dict)
        }
        dist_tags = data.get("dist-tags") if isinstance(data.get("dist-tags"), dict) else {}
        return cls(
            id=data.get("_id"),
            name=data.get("name"),
            description=data.get("description"),
            dist_tags=dict(dist_tags),
            versions=versions,
        )


class PackageClient:
    """HTTP client for one registry.

    Listing requests go through the shared cached GET helper; tarballs are
    downloaded uncached. Transport failures raise RegistryError.
    """

    def __init__(
        self,
        provider: Optional[FhirPackageUrlProvider] = None,
        session: Optional[requests.Session] = None,
    ):
        self.provider = provider or create(Constants.REGISTRY_URL, npm=Constants.REGISTRY_NPM_STYLE)
        self.session = session

    @classmethod
    def create(cls, source: str, npm: bool = False) -> "PackageClient":
        return cls(create(source, npm=npm))

    def __str__(self) -> str:
        return str(self.provider)

    def download_listing(self, name: str) -> Optional[PackageListing]:
        """Fetch the listing for ``name``; None when the registry does not know it.

        Raises:
            RegistryError: transport failure or an unexpected HTTP status.
        """
        url = self.provider.listing_url(name)
        with Timer() as t:
            status, _, data = http_client.get_json(
                url, session=self.session, headers={"Accept": "application/json"}
            )
        if status == 404:
            logger.info(
                "Package not found in registry",
                extra=extra_context(
                    event="http_response", component="registry_client",
                    outcome="not_found", status_code=status, target=safe_url(url),
                ),
            )
            return None
        if status != 200:
            raise RegistryError(f"Listing {safe_url(url)} answered HTTP {status}", status_code=status)
        if not isinstance(data, dict):
            logger.warning(
                "Registry listing is not a JSON object",
                extra=extra_context(event="parse", component="registry_client", target=safe_url(url)),
            )
            return None
        if is_debug_enabled(logger):
            logger.debug(
                "Listing downloaded",
                extra=extra_context(
                    event="http_response", component="registry_client", outcome="success",
                    duration_ms=t.duration_ms(), target=safe_url(url),
                ),
            )
        return PackageListing.from_dict(data)

    def list_versions(self, name: str) -> Dict[str, PackageRelease]:
        listing = self.download_listing(name)
        return listing.versions if listing is not None else {}

    def get_versions(self, name: str) -> Versions:
        return Versions.from_listing(self.list_versions(name))

    def get_release(self, reference: PackageReference) -> Optional[PackageRelease]:
        return self.list_versions(reference.name).get(reference.version)

    def tarball_url(self, reference: PackageReference, release: Optional[PackageRelease] = None) -> str:
        """Tarball location; the listing's ``dist.tarball`` wins over the URL layout."""
        if release is not None and release.tarball:
            return release.tarball
        return self.provider.package_url(reference)

    def fetch_tarball(self, reference: PackageReference, release: Optional[PackageRelease] = None) -> bytes:
        url = self.tarball_url(reference, release)
        with Timer() as t:
            data = http_client.get_bytes(url, session=self.session)
        logger.info(
            "Downloaded %s (%d bytes)",
            reference,
            len(data),
            extra=extra_context(
                event="download", component="registry_client", outcome="success",
                duration_ms=t.duration_ms(), target=safe_url(url),
            ),
        )
        return data
