"""Restore: walk the dependency graph breadth-first, install what is missing, build the closure."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from fhirpkg.cache.disk import DiskPackageCache
from fhirpkg.common import checksum
from fhirpkg.common.logging_utils import Timer, extra_context, is_debug_enabled
from fhirpkg.constants import Constants
from fhirpkg.errors import (
    ChecksumMismatch,
    ManifestError,
    PackageError,
    RangeUnsatisfiable,
    RestoreIncomplete,
)
from fhirpkg.project import manifest as manifest_file
from fhirpkg.registry.client import PackageRelease, PackageServer
from fhirpkg.restore.closure import PackageClosure
from fhirpkg.versioning.models import PackageDependency, PackageReference, normalize_name
from fhirpkg.versioning.versions import Versions, resolve

logger = logging.getLogger(__name__)


class EdgeState(Enum):
    """Lifecycle of one dependency edge during a restore."""

    PENDING = "pending"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    UNPACKING = "unpacking"
    INDEXING = "indexing"
    CACHED = "cached"
    MISSING = "missing"


def ensure_complete(closure: PackageClosure) -> PackageClosure:
    """Raise RestoreIncomplete if ``closure`` has missing dependencies."""
    if not closure.complete:
        raise RestoreIncomplete(closure.missing)
    return closure


class PackageRestorer:
    """Resolves, fetches, verifies and installs the dependencies of a project.

    Args:
        cache: Package cache receiving installs.
        server: Registry to consult when the cache cannot satisfy a range.
            Without one, restores work from the cache only.
        project: Project providing the root manifest and receiving the lock file.
        max_workers: Edges processed in parallel per breadth-first level.
        require_checksum: Treat a registry release without a digest as a mismatch.
        report: Receives human-readable progress lines.
    """

    def __init__(
        self,
        cache: DiskPackageCache,
        server: Optional[PackageServer] = None,
        project=None,
        max_workers: Optional[int] = None,
        require_checksum: Optional[bool] = None,
        report: Optional[Callable[[str], None]] = None,
    ):
        self.cache = cache
        self.server = server
        self.project = project
        self.max_workers = max(1, max_workers or Constants.RESTORE_MAX_WORKERS)
        self.require_checksum = Constants.REQUIRE_CHECKSUM if require_checksum is None else require_checksum
        self.report = report
        self.closure = PackageClosure()

    def _transition(self, dependency: PackageDependency, state: EdgeState, **fields) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "%s -> %s",
                dependency,
                state.value,
                extra=extra_context(
                    event="edge_state", component="restore", target=dependency.name,
                    state=state.value, **fields
                ),
            )

    def _report(self, line: str) -> None:
        if self.report is not None:
            self.report(line)

    def _candidates(self, dependency: PackageDependency) -> Tuple[Versions, Dict[str, PackageRelease]]:
        """Cached versions, plus the registry's when the cache cannot satisfy the range."""
        versions = self.cache.get_versions(dependency.name)
        releases: Dict[str, PackageRelease] = {}
        if self.server is not None and resolve(versions, dependency).not_found:
            releases = self.server.list_versions(dependency.name)
            versions.append(releases.keys())
        return versions, releases

    def _verify(self, reference: PackageReference, data: bytes, release: Optional[PackageRelease]) -> None:
        expected = release.shasum if release is not None else None
        if not expected and not self.require_checksum:
            logger.warning(
                "No checksum published for %s; installing unverified",
                reference,
                extra=extra_context(event="checksum", component="restore", outcome="unverified"),
            )
            return
        if not checksum.matches(data, expected):
            raise ChecksumMismatch(reference, expected, checksum.sha_sum(data))

    def cache_install(self, dependency: PackageDependency) -> PackageReference:
        """Resolve one dependency and make sure its package is in the cache.

        Does not recurse into the package's own dependencies. Returns a
        not-found reference when no version satisfies the range.

        Raises:
            RegistryError: the registry could not be reached.
            ChecksumMismatch: downloaded bytes failed verification.
            UnpackFailure: downloaded bytes are not a package archive.
        """
        self._transition(dependency, EdgeState.RESOLVING)
        versions, releases = self._candidates(dependency)
        reference = resolve(versions, dependency)
        if reference.not_found:
            return reference
        if self.cache.is_installed(reference):
            self._transition(dependency, EdgeState.CACHED, version=reference.version)
            return reference
        if self.server is None:
            return PackageReference.none(dependency.name)

        release = releases.get(reference.version)
        if release is None:
            release = self.server.list_versions(reference.name).get(reference.version)
        self._transition(dependency, EdgeState.FETCHING, version=reference.version)
        data = self.server.fetch_tarball(reference, release)
        self._transition(dependency, EdgeState.VERIFYING, version=reference.version)
        self._verify(reference, data, release)
        self._transition(dependency, EdgeState.UNPACKING, version=reference.version)
        if self.cache.install(
            reference, data, on_indexing=lambda: self._transition(dependency, EdgeState.INDEXING)
        ):
            self._report(f"Installed {reference}.")
        self._transition(dependency, EdgeState.CACHED, version=reference.version)
        return reference

    def _restore_edge(self, dependency: PackageDependency, cancel_event: threading.Event) -> List[PackageDependency]:
        """Process one edge; returns the dependencies of a newly resolved package."""
        if cancel_event.is_set():
            return []
        if dependency.name in self.closure:
            return []
        try:
            reference = self.cache_install(dependency)
        except (PackageError, OSError) as exc:
            self._mark_missing(dependency, exc)
            return []
        if reference.not_found:
            self._mark_missing(dependency, RangeUnsatisfiable(dependency))
            return []

        if not self.closure.add(reference):
            return []
        try:
            manifest = self.cache.read_manifest(reference)
        except (ManifestError, OSError) as exc:
            logger.warning(
                "Could not read manifest of %s: %s",
                reference,
                exc,
                extra=extra_context(event="manifest", component="restore", outcome="unreadable"),
            )
            return []
        return list(manifest.get_dependencies()) if manifest is not None else []

    def _mark_missing(self, dependency: PackageDependency, reason: Exception) -> None:
        self._transition(dependency, EdgeState.MISSING)
        logger.warning(
            "Could not restore %s: %s",
            dependency,
            reason,
            extra=extra_context(
                event="restore_edge",
                component="restore",
                outcome="missing",
                target=dependency.name,
                reason=type(reason).__name__,
            ),
        )
        self.closure.add_missing(dependency)

    def restore_dependencies(
        self,
        dependencies: Iterable[PackageDependency],
        cancel_event: Optional[threading.Event] = None,
    ) -> PackageClosure:
        """Build a fresh closure for ``dependencies`` and everything they pull in.

        Edge failures become missing entries; the walk itself never raises for
        them. Setting ``cancel_event`` stops the walk between edges.
        """
        cancel_event = cancel_event or threading.Event()
        self.closure = PackageClosure()
        frontier = list(dependencies)
        seen: Set[Tuple[str, Optional[str]]] = set()
        level = 0

        with Timer() as t, ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while frontier and not cancel_event.is_set():
                batch = []
                for dep in frontier:
                    key = (normalize_name(dep.name), dep.range)
                    if key in seen or dep.name in self.closure:
                        continue
                    seen.add(key)
                    self._transition(dep, EdgeState.PENDING, level=level)
                    batch.append(dep)
                futures = [executor.submit(self._restore_edge, dep, cancel_event) for dep in batch]
                frontier = []
                for future in futures:
                    frontier.extend(future.result())
                level += 1

        if cancel_event.is_set():
            logger.warning(
                "Restore cancelled",
                extra=extra_context(event="restore", component="restore", outcome="cancelled"),
            )
        logger.info(
            "Restored %d packages, %d missing",
            len(self.closure),
            len(self.closure.missing),
            extra=extra_context(
                event="restore", component="restore",
                outcome="complete" if self.closure.complete else "incomplete",
                duration_ms=t.duration_ms(), levels=level,
            ),
        )
        return self.closure

    def _require_project(self):
        if self.project is None:
            raise ValueError("This operation needs a project")
        return self.project

    def restore(self, cancel_event: Optional[threading.Event] = None) -> PackageClosure:
        """Restore the project's manifest dependencies and write its lock file.

        A cancelled restore leaves the lock file untouched.
        """
        project = self._require_project()
        manifest = project.read_manifest()
        if manifest is None:
            raise ManifestError(f"No package manifest found in {project.folder}")
        cancel_event = cancel_event or threading.Event()
        closure = self.restore_dependencies(manifest.get_dependencies(), cancel_event)
        if not cancel_event.is_set():
            project.write_closure(closure)
        return closure

    def install(self, name: str, rng: Optional[str] = None) -> PackageClosure:
        """Install a package, add it to the project manifest and restore.

        A project without a manifest gets one named "project", using the
        FHIR version of the installed package.

        Raises:
            RangeUnsatisfiable: no version of ``name`` satisfies ``rng``.
        """
        project = self._require_project()
        dependency = PackageDependency(name=name, range=rng)
        reference = self.cache_install(dependency)
        if reference.not_found:
            raise RangeUnsatisfiable(dependency, len(self.cache.get_versions(name)))

        manifest = project.read_manifest()
        if manifest is None:
            manifest = manifest_file.create("project", self.cache.read_package_fhir_version(reference))
        manifest.add_dependency(name, rng)
        project.write_manifest(manifest)
        return self.restore()
