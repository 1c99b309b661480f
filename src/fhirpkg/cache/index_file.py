"""Persistence of the canonical index (``.index.json``) with schema-version invalidation."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fhirpkg.cache.indexer import CanonicalIndex, index_folder
from fhirpkg.common.logging_utils import extra_context
from fhirpkg.constants import PackageConsts

logger = logging.getLogger(__name__)


def index_path(folder: str) -> str:
    return os.path.join(folder, PackageConsts.CANONICAL_INDEX_FILE)


def exists_in(folder: str) -> bool:
    return os.path.isfile(index_path(folder))


def read(path: str) -> Optional[CanonicalIndex]:
    """Read an index file; None if absent or unreadable."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable canonical index %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    return CanonicalIndex.from_dict(data)


def read_from_folder(folder: str) -> Optional[CanonicalIndex]:
    return read(index_path(folder))


def write_to_folder(index: CanonicalIndex, folder: str) -> None:
    with open(index_path(folder), "w", encoding="utf-8") as fh:
        json.dump(index.to_dict(), fh, indent=2)


def create(folder: str, recurse: bool) -> CanonicalIndex:
    """Scan ``folder``, write a fresh index and return it."""
    entries = index_folder(folder, recurse)
    index = CanonicalIndex(
        version=PackageConsts.INDEX_VERSION,
        files=entries,
        date=datetime.now(timezone.utc).isoformat(),
    )
    write_to_folder(index, folder)
    logger.info(
        "Built canonical index with %d entries",
        len(entries),
        extra=extra_context(event="index_build", component="index_file", target=folder),
    )
    return index


def get_from_folder(folder: str, recurse: bool = True) -> CanonicalIndex:
    """Return the stored index if its schema version is current, otherwise rebuild it."""
    if exists_in(folder):
        index = read_from_folder(folder)
        if index is not None and index.version == PackageConsts.INDEX_VERSION:
            return index
        logger.info(
            "Canonical index is stale; rebuilding",
            extra=extra_context(
                event="index_stale",
                component="index_file",
                target=folder,
                stored_version=index.version if index is not None else None,
            ),
        )
    return create(folder, recurse)
