"""Canonical indexer: harvests lightweight metadata from every resource file in a folder."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from fhirpkg.cache.nodes import ShallowNode, parse_file
from fhirpkg.common.logging_utils import extra_context, is_debug_enabled
from fhirpkg.constants import PackageConsts
from fhirpkg.errors import IndexParseFailure

logger = logging.getLogger(__name__)


@dataclass
class ResourceMetadata:
    """Index entry for one file of a package."""
    filename: str
    filepath: str
    resource_type: Optional[str] = None
    id: Optional[str] = None
    canonical: Optional[str] = None
    version: Optional[str] = None
    kind: Optional[str] = None
    type: Optional[str] = None
    fhir_version: Optional[str] = None
    has_snapshot: bool = False
    has_expansion: bool = False

    # attribute -> key in .index.json
    _KEYS = (
        ("filename", "filename"),
        ("filepath", "filepath"),
        ("resource_type", "resourceType"),
        ("id", "id"),
        ("canonical", "url"),
        ("version", "version"),
        ("kind", "kind"),
        ("type", "type"),
        ("fhir_version", "fhirVersion"),
        ("has_snapshot", "firely-hasSnapshot"),
        ("has_expansion", "firely-hasExpansion"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in self._KEYS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceMetadata":
        values = {attr: data.get(key) for attr, key in cls._KEYS}
        values["filename"] = values["filename"] or ""
        values["filepath"] = values["filepath"] or ""
        values["has_snapshot"] = bool(values["has_snapshot"])
        values["has_expansion"] = bool(values["has_expansion"])
        return cls(**values)


@dataclass
class CanonicalIndex:
    """Schema-versioned list of resource metadata for one package folder."""
    version: int
    files: List[ResourceMetadata] = field(default_factory=list)
    date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index-version": self.version,
            "date": self.date,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalIndex":
        raw_version = data.get("index-version")
        try:
            version = int(raw_version)
        except (TypeError, ValueError):
            version = -1
        files = [ResourceMetadata.from_dict(f) for f in data.get("files") or [] if isinstance(f, dict)]
        return cls(version=version, files=files, date=data.get("date"))


def relative_path(folder: str, path: str) -> str:
    """Path of ``path`` relative to ``folder`` with forward slashes."""
    return os.path.relpath(path, folder).replace(os.sep, "/")


def _is_snapshot_bearing(node: ShallowNode) -> bool:
    return node.root_name == "StructureDefinition" and node.has_child("snapshot")


def _is_expanded(node: ShallowNode) -> bool:
    return node.root_name == "ValueSet" and node.has_child("expansion.contains")


def get_file_metadata(folder: str, filepath: str) -> Optional[ResourceMetadata]:
    """Peek one file; None when it is not a structured document."""
    try:
        node = parse_file(filepath)
    except IndexParseFailure as exc:
        if is_debug_enabled(logger):
            logger.debug(
                "Skipping file during indexing: %s",
                exc,
                extra=extra_context(
                    event="index_skip", component="indexer", target=relative_path(folder, filepath)
                ),
            )
        return None
    return ResourceMetadata(
        filename=os.path.basename(filepath),
        filepath=relative_path(folder, filepath),
        resource_type=node.root_name,
        id=node.get_string("id"),
        canonical=node.get_string("url"),
        version=node.get_string("version"),
        kind=node.get_string("kind"),
        type=node.get_string("type"),
        fhir_version=node.get_string("fhirVersion"),
        has_snapshot=_is_snapshot_bearing(node),
        has_expansion=_is_expanded(node),
    )


def enumerate_files(folder: str, recurse: bool) -> Iterator[str]:
    """Yield file paths under ``folder`` in a stable order, skipping the index file."""
    if recurse:
        for dirpath, dirnames, filenames in os.walk(folder):
            dirnames.sort()
            for name in sorted(filenames):
                if dirpath == folder and name == PackageConsts.CANONICAL_INDEX_FILE:
                    continue
                yield os.path.join(dirpath, name)
    else:
        for name in sorted(os.listdir(folder)):
            path = os.path.join(folder, name)
            if name != PackageConsts.CANONICAL_INDEX_FILE and os.path.isfile(path):
                yield path


def enumerate_metadata(folder: str, filepaths: Iterable[str]) -> Iterator[ResourceMetadata]:
    for path in filepaths:
        meta = get_file_metadata(folder, path)
        if meta is not None:
            yield meta


def index_folder(folder: str, recurse: bool) -> List[ResourceMetadata]:
    """Scan a folder and return metadata for every peekable file."""
    entries = list(enumerate_metadata(folder, enumerate_files(folder, recurse)))
    logger.debug("Indexed %d files in %s", len(entries), folder)
    return entries
