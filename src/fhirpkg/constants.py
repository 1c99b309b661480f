"""Constants used in the project."""

from __future__ import annotations

import logging
import os
import platform
from enum import Enum
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    EXIT_WARNINGS = 3


class PackageConsts:  # pylint: disable=too-few-public-methods
    """Fixed file and folder names of the on-disk package layout."""

    MANIFEST = "package.json"
    LOCK_FILE = "fhirpkg.lock.json"
    CANONICAL_INDEX_FILE = ".index.json"
    PACKAGE_FOLDER = "package"
    OTHER_FOLDER = "other"
    STAGING_PREFIX = ".staging-"

    # Schema version of the canonical index; bump to invalidate every index.
    INDEX_VERSION = 6


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_FHIR = "https://packages.fhir.org"
    REGISTRY_URL_SIMPLIFIER = "https://packages.simplifier.net"
    REGISTRY_URL_NPM = "https://registry.npmjs.org"
    REGISTRY_URL = REGISTRY_URL_FHIR
    REGISTRY_NPM_STYLE = False

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_CACHE_TTL_SEC = 300

    RESTORE_MAX_WORKERS = 4
    REQUIRE_CHECKSUM = True
    CACHE_ROOT: Optional[str] = None

    CONFIG_ENV = "FHIRPKG_CONFIG"
    CONFIG_DEFAULT_FILE = ".fhirpkg.yml"
    ENV_CACHE_ROOT = "FHIRPKG_CACHE_ROOT"
    ENV_REGISTRY_URL = "FHIRPKG_REGISTRY_URL"
    ENV_MAX_WORKERS = "FHIRPKG_MAX_WORKERS"
    ENV_REQUIRE_CHECKSUM = "FHIRPKG_REQUIRE_CHECKSUM"
    ENV_LOG_LEVEL = "FHIRPKG_LOG_LEVEL"

    @staticmethod
    def default_cache_root() -> str:
        """Return the configured cache root, or the platform default location."""
        if Constants.CACHE_ROOT:
            return Constants.CACHE_ROOT
        system = platform.system()
        if system == "Windows":
            base = os.environ.get("UserProfile") or os.path.expanduser("~")
        elif system == "Darwin":
            base = os.path.expanduser("~")
        else:
            base = os.path.join(os.path.expanduser("~"), ".local", "share")
        return os.path.join(base, ".fhir", "packages")


_TRUE_VALUES = ("1", "true", "yes", "on")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Read the YAML configuration file, returning an empty mapping when absent.

    Lookup order: explicit ``path``, ``$FHIRPKG_CONFIG``, ``~/.fhirpkg.yml``.
    """
    candidate = path or os.environ.get(Constants.CONFIG_ENV)
    if not candidate:
        candidate = os.path.join(os.path.expanduser("~"), Constants.CONFIG_DEFAULT_FILE)
        if not os.path.isfile(candidate):
            return {}
    try:
        with open(candidate, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except FileNotFoundError:
        logger.warning("Config file not found: %s", candidate)
        return {}
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.warning("Failed to read config file %s: %s", candidate, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: top level is not a mapping", candidate)
        return {}
    return data


def load_config(path: Optional[str] = None) -> None:
    """Apply YAML config and environment overrides onto Constants.

    Environment variables take precedence over the YAML file. CLI flags are
    applied afterwards by the entrypoint and win over both.
    """
    cfg = _load_yaml_config(path)

    registry = cfg.get("registry") or {}
    if isinstance(registry, dict):
        if registry.get("url"):
            Constants.REGISTRY_URL = str(registry["url"]).rstrip("/")
        if "npm" in registry:
            Constants.REGISTRY_NPM_STYLE = _as_bool(registry["npm"])
        if registry.get("timeout") is not None:
            Constants.REQUEST_TIMEOUT = int(registry["timeout"])
        if registry.get("retries") is not None:
            Constants.HTTP_RETRY_MAX = int(registry["retries"])

    cache = cfg.get("cache") or {}
    if isinstance(cache, dict) and cache.get("root"):
        Constants.CACHE_ROOT = os.path.expanduser(str(cache["root"]))

    restore = cfg.get("restore") or {}
    if isinstance(restore, dict):
        if restore.get("max_workers") is not None:
            Constants.RESTORE_MAX_WORKERS = int(restore["max_workers"])
        if "require_checksum" in restore:
            Constants.REQUIRE_CHECKSUM = _as_bool(restore["require_checksum"])

    env = os.environ
    if env.get(Constants.ENV_CACHE_ROOT):
        Constants.CACHE_ROOT = os.path.expanduser(env[Constants.ENV_CACHE_ROOT])
    if env.get(Constants.ENV_REGISTRY_URL):
        Constants.REGISTRY_URL = env[Constants.ENV_REGISTRY_URL].rstrip("/")
    if env.get(Constants.ENV_MAX_WORKERS):
        try:
            Constants.RESTORE_MAX_WORKERS = int(env[Constants.ENV_MAX_WORKERS])
        except ValueError:
            logger.warning(
                "Ignoring %s=%r: not an integer",
                Constants.ENV_MAX_WORKERS,
                env[Constants.ENV_MAX_WORKERS],
            )
    if env.get(Constants.ENV_REQUIRE_CHECKSUM):
        Constants.REQUIRE_CHECKSUM = _as_bool(env[Constants.ENV_REQUIRE_CHECKSUM])
