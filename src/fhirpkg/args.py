"""Argument parsing functionality for fhirpkg."""

import argparse

from fhirpkg.constants import Constants


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="fhirpkg",
        description="fhirpkg - FHIR package restore, cache and index tool",
        add_help=True,
    )

    parser.add_argument("--cache-root",
                        dest="CACHE_ROOT",
                        help="Package cache folder (default: the platform FHIR package cache)",
                        action="store",
                        type=str)
    parser.add_argument("--registry",
                        dest="REGISTRY_URL",
                        help=f"Package registry URL (default: {Constants.REGISTRY_URL})",
                        action="store",
                        type=str)
    parser.add_argument("--npm",
                        dest="NPM",
                        help="Treat the registry as a plain npm registry",
                        action="store_true")
    parser.add_argument("--workers",
                        dest="WORKERS",
                        help="Dependencies restored in parallel",
                        action="store",
                        type=int)
    parser.add_argument("--no-checksum",
                        dest="NO_CHECKSUM",
                        help="Accept packages for which the registry publishes no checksum",
                        action="store_true")
    parser.add_argument("--config",
                        dest="CONFIG",
                        help="YAML configuration file",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])

    commands = parser.add_subparsers(dest="COMMAND", metavar="COMMAND")
    commands.required = True

    restore = commands.add_parser("restore", help="Restore the dependencies of a project")
    restore.add_argument("-d", "--directory",
                         dest="DIRECTORY",
                         help="Project folder (default: current folder)",
                         action="store", type=str, default=".")

    install = commands.add_parser("install", help="Add a dependency to a project and restore")
    install.add_argument("NAME", help="Package name, optionally name@range")
    install.add_argument("RANGE", help="Version range (default: latest)", nargs="?")
    install.add_argument("-d", "--directory",
                         dest="DIRECTORY",
                         help="Project folder (default: current folder)",
                         action="store", type=str, default=".")

    cache = commands.add_parser("cache", help="Inspect the package cache")
    cache_commands = cache.add_subparsers(dest="CACHE_COMMAND", metavar="ACTION")
    cache_commands.required = True
    cache_list = cache_commands.add_parser("list", help="List cached packages")
    cache_list.add_argument("--name",
                            dest="NAME",
                            help="Only show versions of this package",
                            action="store", type=str)
    cache_add = cache_commands.add_parser("add", help="Install a local package tarball into the cache")
    cache_add.add_argument("FILE", help="Path to a .tgz package")
    cache_commands.add_parser("purge", help="Remove leftovers of interrupted installs")

    index = commands.add_parser("index", help="Print the canonical index of a cached package")
    index.add_argument("REFERENCE", help="Package as name@version")

    return parser.parse_args(argv)
