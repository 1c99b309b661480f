"""fhirpkg: resolve, fetch, verify, cache and index FHIR packages."""

__version__ = "0.1.0"
