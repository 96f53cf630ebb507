"""lodestar_rag.common.http

Small JSON-over-HTTP helpers used by the local, Ollama and rerank providers.

Every failure (connection error, timeout, non-2xx status, or a body that is
not JSON) is raised as :class:`~lodestar_rag.common.exceptions.TransportError`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator, Mapping

import requests

from lodestar_rag.common.exceptions import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def _check_status(response: requests.Response, url: str) -> None:
    if not response.ok:
        body = (response.text or "")[:500]
        raise TransportError(
            f"POST {url} failed with HTTP {response.status_code}",
            status=response.status_code,
            details={"body": body},
        )


def post_json(
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Any:
    """POST ``payload`` as JSON and return the decoded JSON response.

    Raises
    ------
    TransportError
        On network failure, timeout, non-2xx status or an undecodable body.
    """
    try:
        response = requests.post(url, json=dict(payload), headers=dict(headers or {}), timeout=timeout)
    except requests.RequestException as exc:
        raise TransportError(f"POST {url} failed: {exc}") from exc

    _check_status(response, url)
    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(f"POST {url} returned a non-JSON body") from exc


def stream_json_lines(
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Iterator[dict[str, Any]]:
    """POST ``payload`` and lazily yield one decoded object per response line.

    The connection stays open while the generator is consumed and is closed
    when the generator finishes or is closed early. Lines that are not valid
    JSON objects are skipped.
    """
    try:
        with requests.post(
            url,
            json=dict(payload),
            headers=dict(headers or {}),
            timeout=timeout,
            stream=True,
        ) as response:
            _check_status(response, url)
            for line in response.iter_lines(decode_unicode=True):
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except ValueError:
                    logger.debug("Skipping malformed stream line from %s", url)
                    continue
                if isinstance(obj, dict):
                    yield obj
    except requests.RequestException as exc:
        raise TransportError(f"POST {url} failed: {exc}") from exc
