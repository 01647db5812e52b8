from __future__ import annotations

import logging
import time

import requests

from server.refcheck.core.cache import Cache

logger = logging.getLogger(__name__)


class RegistryError(RuntimeError):
    """Raised inside a registry client when a request cannot be completed."""


def backoff_sleep(attempt: int) -> None:
    # basic exponential backoff with cap
    time.sleep(min(8.0, 0.5 * (2**attempt)))


def get_json(
    session: requests.Session,
    url: str,
    *,
    source: str,
    timeout_seconds: float,
    max_attempts: int,
    headers: dict[str, str] | None = None,
    params: dict | None = None,
    missing_ok: bool = False,
):
    """
    GET a JSON document with retries.

    Returns None for a 404 when ``missing_ok`` is set; raises RegistryError once
    every attempt has failed or the body is not JSON.
    """
    last_error: Exception | None = None
    attempts = max(1, int(max_attempts))
    for attempt in range(attempts):
        try:
            resp = session.get(url, headers=headers, params=params, timeout=timeout_seconds)
            if missing_ok and resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            last_error = e
            logger.debug("%s request failed (attempt %s/%s): %s", source, attempt + 1, attempts, e)
            if attempt + 1 < attempts:
                backoff_sleep(attempt)
        except ValueError as e:
            raise RegistryError(f"{source}: malformed JSON payload") from e
    raise RegistryError(f"{source}: request failed after {attempts} attempt(s): {last_error}") from last_error


def get_text(
    session: requests.Session,
    url: str,
    *,
    source: str,
    timeout_seconds: float,
    max_attempts: int,
    headers: dict[str, str] | None = None,
    params: dict | None = None,
) -> str:
    last_error: Exception | None = None
    attempts = max(1, int(max_attempts))
    for attempt in range(attempts):
        try:
            resp = session.get(url, headers=headers, params=params, timeout=timeout_seconds)
            resp.raise_for_status()
            return resp.text
        except requests.RequestException as e:
            last_error = e
            logger.debug("%s request failed (attempt %s/%s): %s", source, attempt + 1, attempts, e)
            if attempt + 1 < attempts:
                backoff_sleep(attempt)
    raise RegistryError(f"{source}: request failed after {attempts} attempt(s): {last_error}") from last_error


def record_http_request(cache: Cache | None, namespace: str) -> None:
    if cache and cache.enabled:
        cache.debug_stats.increment(namespace, "http_request")
