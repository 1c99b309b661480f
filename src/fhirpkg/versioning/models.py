"""Data models for package references and dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

LATEST = "latest"


def normalize_name(name: str) -> str:
    """Package names compare case-insensitively."""
    return name.lower()


@dataclass(frozen=True, eq=False)
class PackageReference:
    """A concrete, installable package version.

    A reference without a name or version is "not found". When you want to
    describe a range of acceptable versions, use PackageDependency instead.
    """
    name: Optional[str]
    version: Optional[str]
    scope: Optional[str] = None

    @classmethod
    def none(cls, name: Optional[str] = None) -> "PackageReference":
        """Not-found reference, optionally keeping the requested name."""
        return cls(name=name, version=None)

    @classmethod
    def parse(cls, text: str) -> "PackageReference":
        """Parse ``name@version`` or ``@scope/name@version``; the version is optional."""
        scope = None
        text = text.strip()
        if text.startswith("@") and "/" in text:
            scope_part, text = text.split("/", 1)
            scope = scope_part[1:]
        name, _, version = text.partition("@")
        return cls(name=name, version=version or None, scope=scope)

    @property
    def found(self) -> bool:
        return self.name is not None and self.version is not None

    @property
    def not_found(self) -> bool:
        return not self.found

    @property
    def moniker(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def npm_name(self) -> Optional[str]:
        """Registry path segment; scoped names are url-encoded as ``@scope%2Fname``."""
        if self.scope is None:
            return self.name
        return f"@{self.scope}%2F{self.name}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageReference):
            return NotImplemented
        return _fold(self.name) == _fold(other.name) and self.version == other.version

    def __hash__(self) -> int:
        return hash((_fold(self.name), self.version))

    def __str__(self) -> str:
        text = self.moniker
        if self.not_found:
            text += " (NOT FOUND)"
        return text


@dataclass(frozen=True, eq=False)
class PackageDependency:
    """A version range requirement on a package, as declared in a manifest.

    ``range`` is None or "latest" for the highest available version, otherwise
    a range expression such as ``3.x``, ``3.1.0 - 3.3.0`` or ``1.1.0 || 1.2.0``.
    Names compare case-insensitively, ranges verbatim.
    """
    name: str
    range: Optional[str] = None

    @property
    def is_latest(self) -> bool:
        return self.range is None or not self.range.strip() or self.range.strip().lower() == LATEST

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageDependency):
            return NotImplemented
        return _fold(self.name) == _fold(other.name) and self.range == other.range

    def __hash__(self) -> int:
        return hash((_fold(self.name), self.range))

    def __str__(self) -> str:
        rng = "(latest)" if not self.range else self.range
        return f"{self.name} {rng}"


def _fold(name: Optional[str]) -> Optional[str]:
    return normalize_name(name) if name is not None else None


def references_to_dict(references: Iterable[PackageReference]) -> Dict[str, str]:
    """Lock-file shape: ``{name: version}``."""
    return {ref.name: ref.version for ref in references if ref.found}


def dependencies_to_dict(dependencies: Iterable[PackageDependency]) -> Dict[str, Optional[str]]:
    """Lock-file/manifest shape: ``{name: range}``. Later duplicates win."""
    return {dep.name: dep.range for dep in dependencies}


def dict_to_references(data: Optional[Dict[str, str]]) -> List[PackageReference]:
    return [PackageReference(name=k, version=v) for k, v in (data or {}).items()]


def dict_to_dependencies(data: Optional[Dict[str, Optional[str]]]) -> List[PackageDependency]:
    return [PackageDependency(name=k, range=v) for k, v in (data or {}).items()]


def split_dependency_token(token: str) -> Tuple[str, Optional[str]]:
    """Split a ``name@range`` token as typed on the command line.

    A bare name means latest; the range part is kept verbatim.
    """
    token = token.strip()
    if token.startswith("@"):
        head, sep, rng = token[1:].partition("@")
        return "@" + head, (rng or None) if sep else None
    name, sep, rng = token.partition("@")
    return name, (rng or None) if sep else None
