"""Shared HTTP helpers used by the registry client.

Every request gets the configured timeout and is retried with exponential
backoff on timeouts, connection errors and 5xx answers. Failures surface
as RegistryError. Listing bodies are kept in a short-lived in-memory cache;
tarballs never are.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import requests

from fhirpkg.common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from fhirpkg.constants import Constants
from fhirpkg.errors import RegistryError

logger = logging.getLogger(__name__)

TextResponse = Tuple[int, Dict[str, str], str]


class _ResponseCache:
    """Thread-safe TTL cache of text responses, keyed by url and headers."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[TextResponse, float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(url: str, headers: Optional[Dict[str, str]]) -> str:
        return f"GET {url} {sorted(headers.items()) if headers else ''}"

    def get(self, key: str) -> Optional[TextResponse]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        response, stored_at = entry
        if time.time() - stored_at >= Constants.HTTP_CACHE_TTL_SEC:
            return None
        return response

    def put(self, key: str, response: TextResponse) -> None:
        with self._lock:
            self._entries[key] = (response, time.time())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_cache = _ResponseCache()


def clear_cache() -> None:
    """Drop every cached response."""
    _cache.clear()


def _log_failure(outcome: str, attempt: int, target: str) -> None:
    logger.debug(
        "HTTP attempt %d failed: %s",
        attempt,
        outcome,
        extra=extra_context(
            event="http_exception", component="http_client",
            outcome=outcome, attempt=attempt, target=target,
        ),
    )


def _send(
    url: str,
    session: Optional[requests.Session],
    headers: Optional[Dict[str, str]],
    **kwargs: Any,
) -> requests.Response:
    """GET ``url`` until a non-5xx answer arrives or the retries run out.

    Raises:
        RegistryError: every attempt timed out, failed to connect or got a 5xx.
    """
    target = safe_url(url)
    getter = session.get if session is not None else requests.get
    failure = "no attempt made"

    for attempt in range(1, Constants.HTTP_RETRY_MAX + 1):
        if attempt > 1:
            time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * 2 ** (attempt - 2))
        if is_debug_enabled(logger):
            logger.debug(
                "GET %s",
                target,
                extra=extra_context(event="http_request", component="http_client", attempt=attempt),
            )
        with Timer() as t:
            try:
                response = getter(url, timeout=Constants.REQUEST_TIMEOUT, headers=headers, **kwargs)
            except requests.Timeout:
                failure = "timeout"
                _log_failure(failure, attempt, target)
                continue
            except requests.RequestException as exc:
                failure = str(exc)
                _log_failure("request_exception", attempt, target)
                continue

        if response.status_code >= 500:
            failure = f"HTTP {response.status_code}"
            _log_failure("server_error", attempt, target)
            continue

        if is_debug_enabled(logger):
            logger.debug(
                "GET %s -> %d",
                target,
                response.status_code,
                extra=extra_context(
                    event="http_response", component="http_client",
                    status_code=response.status_code, duration_ms=t.duration_ms(),
                ),
            )
        return response

    raise RegistryError(
        f"Request to {target} failed after {Constants.HTTP_RETRY_MAX} attempts: {failure}"
    )


def get_text(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any,
) -> TextResponse:
    """Cached GET returning ``(status_code, headers, text)``."""
    key = _cache.key(url, headers)
    cached = _cache.get(key)
    if cached is not None:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP cache hit",
                extra=extra_context(event="cache_hit", component="http_client", target=safe_url(url)),
            )
        return cached
    response = _send(url, session, headers, **kwargs)
    result = (response.status_code, dict(response.headers), response.text)
    _cache.put(key, result)
    return result


def get_json(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any,
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """GET a JSON document.

    Args:
        url: Target URL.
        session: Optional requests session to reuse connections.
        headers: Optional request headers.
        **kwargs: Passed through to ``requests.get``.

    Returns:
        ``(status_code, headers, body)`` where body is the parsed JSON of a
        200 answer, or None for other answers and unparseable bodies.

    Raises:
        RegistryError: the request failed after all retries.
    """
    status_code, response_headers, text = get_text(url, session=session, headers=headers, **kwargs)
    if status_code != 200 or not text:
        return status_code, response_headers, None
    try:
        return status_code, response_headers, json.loads(text)
    except ValueError:
        logger.warning(
            "Response is not valid JSON",
            extra=extra_context(
                event="parse", component="http_client", outcome="json_decode_error",
                target=safe_url(url),
            ),
        )
        return status_code, response_headers, None


def get_bytes(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any,
) -> bytes:
    """Download a binary body, uncached. Non-200 answers raise RegistryError."""
    response = _send(url, session, headers, **kwargs)
    if response.status_code != 200:
        raise RegistryError(
            f"Download of {safe_url(url)} failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )
    return response.content
