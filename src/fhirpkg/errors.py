"""Exception taxonomy for package resolution, caching and restore."""

from __future__ import annotations

from typing import Iterable, List, Optional


class PackageError(Exception):
    """Base class for all fhirpkg errors."""


class RangeUnsatisfiable(PackageError):
    """No candidate version satisfies a dependency's range."""

    def __init__(self, dependency, candidate_count: int = 0):
        self.dependency = dependency
        self.candidate_count = candidate_count
        super().__init__(
            f"No version of {dependency.name} satisfies "
            f"'{dependency.range or 'latest'}' ({candidate_count} candidates)"
        )


class ChecksumMismatch(PackageError):
    """Fetched bytes do not match the registry-published SHA-1 digest."""

    def __init__(self, reference, expected: Optional[str], actual: str):
        self.reference = reference
        self.expected = expected
        self.actual = actual
        if expected:
            detail = f"expected {expected}, got {actual}"
        else:
            detail = f"registry published no checksum, got {actual}"
        super().__init__(f"Checksum mismatch for {reference}: {detail}")


class UnpackFailure(PackageError):
    """Fetched bytes could not be unpacked as a package archive."""


class CacheReadFailure(PackageError):
    """A read against a package that is not (completely) installed."""


class IndexParseFailure(PackageError):
    """A single file could not be structurally peeked while indexing."""


class ManifestError(PackageError):
    """A package manifest could not be read or is invalid."""


class RegistryError(PackageError):
    """The registry could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RestoreIncomplete(PackageError):
    """A restore finished with unresolved dependencies."""

    def __init__(self, missing: Iterable):
        self.missing: List = list(missing)
        names = ", ".join(str(m) for m in self.missing)
        super().__init__(f"Could not resolve all dependencies: {names}")


class AmbiguousCanonical(PackageError):
    """Several resources share a canonical url and none is preferred."""
