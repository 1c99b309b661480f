"""fhirpkg command-line entry point."""

from __future__ import annotations

import json
import logging
import sys

from fhirpkg.args import parse_args
from fhirpkg.cache.disk import DiskPackageCache
from fhirpkg.common.logging_utils import configure_logging, extra_context, is_debug_enabled
from fhirpkg.constants import Constants, ExitCodes, load_config
from fhirpkg.errors import PackageError, RangeUnsatisfiable, RegistryError
from fhirpkg.project.folder import FolderProject
from fhirpkg.registry.client import PackageClient
from fhirpkg.restore.orchestrator import PackageRestorer
from fhirpkg.versioning.models import PackageReference, split_dependency_token

logger = logging.getLogger(__name__)


def apply_overrides(args) -> None:
    """CLI flags win over the YAML file and the environment."""
    if args.CACHE_ROOT:
        Constants.CACHE_ROOT = args.CACHE_ROOT
    if args.REGISTRY_URL:
        Constants.REGISTRY_URL = args.REGISTRY_URL.rstrip("/")
    if args.NPM:
        Constants.REGISTRY_NPM_STYLE = True
    if args.WORKERS is not None:
        Constants.RESTORE_MAX_WORKERS = max(1, args.WORKERS)
    if args.NO_CHECKSUM:
        Constants.REQUIRE_CHECKSUM = False


def build_restorer(directory: str) -> PackageRestorer:
    cache = DiskPackageCache(Constants.default_cache_root())
    cache.purge_staging()
    return PackageRestorer(
        cache,
        server=PackageClient.create(Constants.REGISTRY_URL, npm=Constants.REGISTRY_NPM_STYLE),
        project=FolderProject(directory),
        report=print,
    )


def _print_closure(closure) -> int:
    for reference in closure.references:
        print(f"  {reference}")
    if closure.complete:
        print(f"Restore complete: {len(closure)} packages.")
        return ExitCodes.SUCCESS.value
    for dependency in closure.missing:
        print(f"  missing: {dependency}")
    print(f"Restore incomplete: {len(closure.missing)} missing dependencies.")
    return ExitCodes.EXIT_WARNINGS.value


def run_restore(args) -> int:
    closure = build_restorer(args.DIRECTORY).restore()
    return _print_closure(closure)


def run_install(args) -> int:
    name, rng = args.NAME, args.RANGE
    if rng is None:
        name, rng = split_dependency_token(name)
    closure = build_restorer(args.DIRECTORY).install(name, rng)
    return _print_closure(closure)


def run_cache(args) -> int:
    cache = DiskPackageCache(Constants.default_cache_root())
    if args.CACHE_COMMAND == "add":
        reference = cache.install_from_file(args.FILE)
        print(f"Installed {reference}.")
    elif args.CACHE_COMMAND == "purge":
        print(f"Removed {cache.purge_staging()} interrupted installs.")
    else:
        if args.NAME:
            references = [PackageReference(args.NAME, v) for v in cache.get_versions(args.NAME)]
        else:
            references = cache.get_package_references()
        for reference in references:
            print(reference)
    return ExitCodes.SUCCESS.value


def run_index(args) -> int:
    cache = DiskPackageCache(Constants.default_cache_root())
    reference = PackageReference.parse(args.REFERENCE)
    if reference.not_found:
        logging.error("Expected a package as name@version, got %s", args.REFERENCE)
        return ExitCodes.FILE_ERROR.value
    index = cache.get_canonical_index(reference)
    print(json.dumps([entry.to_dict() for entry in index.files], indent=2))
    return ExitCodes.SUCCESS.value


COMMANDS = {
    "restore": run_restore,
    "install": run_install,
    "cache": run_cache,
    "index": run_index,
}


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    configure_logging(args.LOG_LEVEL)
    load_config(args.CONFIG)
    apply_overrides(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(
                event="function_entry", component="cli", action=args.COMMAND,
                target=Constants.default_cache_root(),
            ),
        )

    try:
        code = COMMANDS[args.COMMAND](args)
    except RegistryError as exc:
        logging.error("Registry error: %s", exc)
        code = ExitCodes.CONNECTION_ERROR.value
    except RangeUnsatisfiable as exc:
        logging.error("%s", exc)
        code = ExitCodes.EXIT_WARNINGS.value
    except (PackageError, OSError) as exc:
        logging.error("%s", exc)
        code = ExitCodes.FILE_ERROR.value
    sys.exit(code)


if __name__ == "__main__":
    main()
