"""Package tarball handling: unpacking into the cache layout, packing folders."""

from __future__ import annotations

import io
import logging
import os
import posixpath
import tarfile
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple

from fhirpkg.common.logging_utils import extra_context
from fhirpkg.constants import PackageConsts
from fhirpkg.errors import ManifestError, UnpackFailure
from fhirpkg.project.manifest import PackageManifest

logger = logging.getLogger(__name__)

RESOURCE_EXTENSIONS = (".json", ".xml")
OTHER_FOLDER = posixpath.join(PackageConsts.PACKAGE_FOLDER, PackageConsts.OTHER_FOLDER)


def organize_path(path: str) -> str:
    """Place a loose file in the package layout.

    The manifest and resource files go to ``package/``, everything else to
    ``package/other/``.
    """
    filename = posixpath.basename(path.replace("\\", "/"))
    if filename.lower() == PackageConsts.MANIFEST:
        return posixpath.join(PackageConsts.PACKAGE_FOLDER, filename)
    if os.path.splitext(filename)[1].lower() in RESOURCE_EXTENSIONS:
        return posixpath.join(PackageConsts.PACKAGE_FOLDER, filename)
    return posixpath.join(OTHER_FOLDER, filename)


def _safe_member_path(name: str) -> str:
    """Normalize an archive member name, rejecting anything that escapes the target."""
    normalized = name.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if not normalized or normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        raise UnpackFailure(f"Refusing absolute archive member path: {name!r}")
    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise UnpackFailure(f"Refusing archive member path outside the package: {name!r}")
    return "/".join(parts)


def target_path(member_name: str) -> str:
    """Layout rule used on install: members inside a folder keep their path,
    top-level loose members are organized."""
    path = _safe_member_path(member_name)
    if "/" in path:
        return path
    return organize_path(path)


def _open_tarball(data: bytes) -> tarfile.TarFile:
    try:
        return tarfile.open(fileobj=io.BytesIO(data), mode="r:*")
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise UnpackFailure(f"Not a valid package archive: {exc}") from exc


def iter_files(data: bytes) -> Iterator[Tuple[str, bytes]]:
    """Yield ``(member name, content)`` for every regular file in a tarball."""
    with _open_tarball(data) as tar:
        try:
            for member in tar:
                if member.isdir():
                    continue
                if not member.isfile():
                    raise UnpackFailure(f"Unsupported archive member type: {member.name!r}")
                handle = tar.extractfile(member)
                if handle is None:
                    continue
                with handle:
                    yield member.name, handle.read()
        except (tarfile.TarError, EOFError, OSError, ValueError) as exc:
            raise UnpackFailure(f"Corrupt package archive: {exc}") from exc


def unpack_to_folder(data: bytes, folder: str) -> int:
    """Unpack a (gzipped) tarball into ``folder`` following the package layout.

    Returns the number of files written.

    Raises:
        UnpackFailure: the bytes are not a valid archive or contain unsafe members.
    """
    count = 0
    os.makedirs(folder, exist_ok=True)
    for name, content in iter_files(data):
        relative = target_path(name)
        destination = os.path.join(folder, *relative.split("/"))
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        with open(destination, "wb") as fh:
            fh.write(content)
        count += 1
    if count == 0:
        raise UnpackFailure("Package archive contains no files")
    logger.debug(
        "Unpacked %d files",
        count,
        extra=extra_context(event="unpack", component="packaging", target=folder),
    )
    return count


def extract_manifest(data: bytes) -> PackageManifest:
    """Read ``package/package.json`` from a tarball without unpacking it."""
    wanted = posixpath.join(PackageConsts.PACKAGE_FOLDER, PackageConsts.MANIFEST)
    for name, content in iter_files(data):
        if _safe_member_path(name) == wanted:
            return PackageManifest.from_json(content.decode("utf-8-sig"))
    raise ManifestError(f"Package archive has no {wanted}")


def _gather_folder(folder: str) -> Iterator[Tuple[str, bytes]]:
    for dirpath, dirnames, filenames in os.walk(folder):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            relative = os.path.relpath(path, folder).replace(os.sep, "/")
            with open(path, "rb") as fh:
                yield relative, fh.read()


def create_package(entries: Iterable[Tuple[str, bytes]], manifest: Optional[PackageManifest] = None) -> bytes:
    """Build a gzipped tarball from ``(archive path, content)`` pairs."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        if manifest is not None:
            _add_file(tar, posixpath.join(PackageConsts.PACKAGE_FOLDER, PackageConsts.MANIFEST),
                      manifest.to_json().encode("utf-8"))
        for path, content in entries:
            _add_file(tar, path, content)
    return buffer.getvalue()


def _add_file(tar: tarfile.TarFile, path: str, content: bytes) -> None:
    info = tarfile.TarInfo(name=path)
    info.size = len(content)
    tar.addfile(info, io.BytesIO(content))


def pack_folder(
    folder: str,
    organize: Callable[[str], str] = organize_path,
    manifest: Optional[PackageManifest] = None,
) -> bytes:
    """Pack every file under ``folder`` into a package tarball.

    Paths are rewritten by ``organize`` (flattening into ``package/`` and
    ``package/other/`` by default).
    """
    seen: Dict[str, str] = {}
    entries = []
    for relative, content in _gather_folder(folder):
        if manifest is not None and posixpath.basename(relative).lower() == PackageConsts.MANIFEST:
            continue
        path = organize(relative)
        if path in seen:
            raise ValueError(f"Both {seen[path]} and {relative} map to {path}")
        seen[path] = relative
        entries.append((path, content))
    return create_package(entries, manifest=manifest)
