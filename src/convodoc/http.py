"""JSON-over-HTTP calls shared by the LLM and embedding providers.

Every provider talks to a local or hosted server with a single POST and
a JSON body, so transport failures are mapped to the caller's
:class:`~convodoc.exceptions.ConvodocError` subclass in one place.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from convodoc.exceptions import ConvodocError

__all__ = ["post_json"]

logger = logging.getLogger(__name__)


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    service: str,
    timeout: float,
    api_key: str | None = None,
    error: type[ConvodocError] = ConvodocError,
) -> Any:
    """POST ``payload`` to ``url`` and return the decoded JSON reply.

    Args:
        url: Endpoint to call.
        payload: JSON-serializable request body.
        service: Human-readable server name used in error messages.
        timeout: Socket timeout in seconds.
        api_key: Sent as a bearer token when given.
        error: Exception type raised on failure.

    Raises:
        ConvodocError: ``error`` on connection, HTTP or decoding failure.
    """
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    req = Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers)

    logger.debug("POST %s", url)
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read()
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise error(f"{service} returned invalid JSON from {url}") from e
    except HTTPError as e:
        raise error(f"{service} API error (HTTP {e.code}): {e.reason}") from e
    except (ConnectionError, URLError) as e:
        raise error(f"{service} not reachable at {url}. Error: {e}") from e
