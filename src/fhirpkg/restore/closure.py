"""Dependency closure: resolved references plus unmet dependencies for one restore."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from fhirpkg.versioning.models import PackageDependency, PackageReference, normalize_name
from fhirpkg.versioning.versions import parse_version


def highest(a: PackageReference, b: PackageReference) -> PackageReference:
    """Return the semver-higher of two references; ``b`` wins ties and unparseable input."""
    va, vb = parse_version(a.version or ""), parse_version(b.version or "")
    if va is not None and vb is not None and va > vb:
        return a
    return b


class PackageClosure:
    """Accumulates one resolved reference per package name and the missing dependencies.

    ``add`` and ``add_missing`` are atomic so concurrent restore workers can
    share one closure.
    """

    def __init__(self, references=None, missing=None):
        self._lock = threading.Lock()
        self._references: Dict[str, PackageReference] = {}
        self._missing: List[PackageDependency] = []
        for ref in references or ():
            self.add(ref)
        for dep in missing or ():
            self.add_missing(dep)

    @property
    def complete(self) -> bool:
        return not self._missing

    @property
    def references(self) -> List[PackageReference]:
        with self._lock:
            return list(self._references.values())

    @property
    def missing(self) -> List[PackageDependency]:
        with self._lock:
            return list(self._missing)

    def add(self, reference: PackageReference) -> bool:
        """Record a resolved reference, keeping the highest version per name.

        Returns True only if the stored state changed.
        """
        if reference.not_found:
            raise ValueError(f"Cannot add unresolved reference {reference} to a closure")
        key = normalize_name(reference.name)
        with self._lock:
            existing = self._references.get(key)
            if existing is None:
                self._references[key] = reference
                return True
            if existing == reference:
                return False
            winner = highest(reference, existing)
            if winner is existing:
                return False
            self._references[key] = winner
            return True

    def add_missing(self, dependency: PackageDependency) -> None:
        """Record an unmet dependency unless the same (name, range) is already listed."""
        with self._lock:
            if dependency not in self._missing:
                self._missing.append(dependency)

    def clear_missing(self) -> None:
        with self._lock:
            self._missing.clear()

    def find(self, name: str) -> Tuple[bool, Optional[PackageReference]]:
        with self._lock:
            ref = self._references.get(normalize_name(name))
        return ref is not None, ref

    def __contains__(self, name: str) -> bool:
        return self.find(name)[0]

    def __len__(self) -> int:
        with self._lock:
            return len(self._references)

    def __repr__(self) -> str:
        refs = ", ".join(str(r) for r in self.references)
        missing = ", ".join(str(m) for m in self.missing)
        return f"PackageClosure(references=[{refs}], missing=[{missing}])"
