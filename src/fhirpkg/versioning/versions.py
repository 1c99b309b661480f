"""Candidate version sets and npm-style range resolution using semantic versioning."""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

import semantic_version

from fhirpkg.common.logging_utils import extra_context, is_debug_enabled
from fhirpkg.versioning.models import LATEST, PackageDependency, PackageReference

logger = logging.getLogger(__name__)

# A lone "|" between alternatives is accepted as the npm "||" operator.
_SINGLE_PIPE = re.compile(r"(?<!\|)\|(?!\|)")


def parse_version(text: str) -> Optional[semantic_version.Version]:
    """Parse a version loosely (``4.0`` -> ``4.0.0``); None if unparseable."""
    if not text:
        return None
    try:
        return semantic_version.Version(text)
    except ValueError:
        pass
    try:
        return semantic_version.Version.coerce(text.strip())
    except ValueError:
        return None


def parse_range(pattern: str) -> Optional[semantic_version.NpmSpec]:
    """Parse an npm range expression; None for malformed or non-string input."""
    if not isinstance(pattern, str):
        return None
    normalized = _SINGLE_PIPE.sub("||", pattern.strip())
    try:
        return semantic_version.NpmSpec(normalized)
    except (ValueError, TypeError):
        return None


class Versions:
    """Ordered set of known versions for one package.

    Unparseable strings are dropped. The original string of every version is
    kept so a pick maps back to the exact registry key or cache folder.
    """

    def __init__(self, versions: Iterable[str] = ()):
        self._items: List[Tuple[semantic_version.Version, str]] = []
        self.append(versions)

    def append(self, versions: Iterable[str]) -> None:
        known = {v for v, _ in self._items}
        for text in versions:
            parsed = parse_version(text)
            if parsed is None:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Skipping unparseable version",
                        extra=extra_context(event="parse", component="versions", target=text),
                    )
                continue
            if parsed in known:
                continue
            known.add(parsed)
            self._items.append((parsed, text))
        self._items.sort(key=lambda item: item[0])

    @classmethod
    def from_listing(cls, listing: Optional[Dict[str, object]]) -> "Versions":
        """Versions from a registry listing's ``versions`` mapping."""
        return cls(list((listing or {}).keys()))

    @classmethod
    def from_references(cls, references: Iterable[PackageReference]) -> "Versions":
        return cls([r.version for r in references if r.version])

    @property
    def items(self) -> List[str]:
        """Original version strings, ascending."""
        return [text for _, text in self._items]

    @property
    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self.items)

    def latest(self) -> Optional[str]:
        return self._items[-1][1] if self._items else None

    def has(self, version: str) -> bool:
        parsed = parse_version(version)
        return parsed is not None and any(v == parsed for v, _ in self._items)

    def max_satisfying(self, pattern: str) -> Optional[str]:
        """Highest version matching ``pattern``; malformed patterns match nothing."""
        spec = parse_range(pattern)
        if spec is None:
            logger.warning(
                "Invalid version range %r; treating as unsatisfiable",
                pattern,
                extra=extra_context(event="parse", component="versions", outcome="invalid_range"),
            )
            return None
        for parsed, text in reversed(self._items):
            if spec.match(parsed):
                return text
        return None

    def __repr__(self) -> str:
        return f"Versions({self.items!r})"


def resolve_range(versions: Versions, pattern: Optional[str]) -> Optional[str]:
    """Pick a version string for ``pattern`` ("latest"/None selects the maximum)."""
    if pattern is not None and not isinstance(pattern, str):
        return versions.max_satisfying(pattern)
    if pattern is None or not pattern.strip() or pattern.strip().lower() == LATEST:
        return versions.latest()
    return versions.max_satisfying(pattern)


def resolve(versions: Versions, dependency: PackageDependency) -> PackageReference:
    """Resolve a dependency against the candidate set.

    Returns a not-found reference (name preserved) when nothing matches.
    Pure: no I/O, deterministic for fixed input.
    """
    if versions.is_empty:
        return PackageReference.none(dependency.name)
    version = resolve_range(versions, dependency.range)
    if version is None:
        return PackageReference.none(dependency.name)
    return PackageReference(name=dependency.name, version=version)
