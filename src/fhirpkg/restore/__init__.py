"""Dependency closure, the restore walk and the package context."""

from fhirpkg.restore.closure import PackageClosure

__all__ = ["PackageClosure"]
