"""Lock file (``fhirpkg.lock.json``): the persisted result of a restore."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fhirpkg.common.logging_utils import extra_context
from fhirpkg.constants import PackageConsts
from fhirpkg.restore.closure import PackageClosure
from fhirpkg.versioning.models import (
    dependencies_to_dict,
    dict_to_dependencies,
    dict_to_references,
    references_to_dict,
)

logger = logging.getLogger(__name__)


def lock_path(folder: str) -> str:
    return os.path.join(folder, PackageConsts.LOCK_FILE)


def to_dict(closure: PackageClosure) -> dict:
    return {
        "updated": datetime.now(timezone.utc).isoformat(),
        "dependencies": references_to_dict(closure.references),
        "missing": dependencies_to_dict(closure.missing),
    }


def from_dict(data: dict) -> PackageClosure:
    """Rebuild a closure from lock-file JSON.

    Missing entries are stored as a name -> range map, so when a closure held
    two missing ranges for one name only the last survives a round trip.
    """
    return PackageClosure(
        references=dict_to_references(data.get("dependencies")),
        missing=dict_to_dependencies(data.get("missing")),
    )


def read(path: str) -> Optional[PackageClosure]:
    """Read a lock file; None if it does not exist."""
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8-sig") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        logger.warning("Lock file %s does not hold a JSON object; ignoring it", path)
        return None
    return from_dict(data)


def read_from_folder(folder: str) -> Optional[PackageClosure]:
    return read(lock_path(folder))


def read_or_create(folder: str) -> PackageClosure:
    """Closure from the folder's lock file, or an empty one."""
    closure = read_from_folder(folder)
    return closure if closure is not None else PackageClosure()


def write_to_folder(closure: PackageClosure, folder: str) -> str:
    path = lock_path(folder)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(to_dict(closure), fh, indent=2)
    logger.debug(
        "Wrote lock file",
        extra=extra_context(
            event="lockfile_write",
            component="lockfile",
            target=path,
            references=len(closure),
            missing=len(closure.missing),
        ),
    )
    return path


def is_outdated(folder: str) -> bool:
    """True when the lock file is older than the manifest (or absent).

    This is an mtime heuristic only: it does not compare contents.
    """
    lock = lock_path(folder)
    if not os.path.isfile(lock):
        return True
    manifest = os.path.join(folder, PackageConsts.MANIFEST)
    if not os.path.isfile(manifest):
        return False
    return os.path.getmtime(lock) < os.path.getmtime(manifest)
