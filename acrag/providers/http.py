"""Shared httpx plumbing for HTTP-backed providers."""

from __future__ import annotations

from typing import Any

import httpx

from acrag.errors import UpstreamCallFailed

# Per-call timeouts (seconds)
AVAILABILITY_TIMEOUT = 5.0
EMBED_TIMEOUT = 30.0
GENERATE_TIMEOUT = 60.0


async def request_json(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
    """
    Send a request and decode the JSON body.

    Any transport error, timeout, non-2xx status or undecodable body is
    raised as UpstreamCallFailed.
    """
    try:
        resp = await client.request(method, url, **kwargs)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPError as exc:
        raise UpstreamCallFailed(f"{method} {url} failed: {exc}") from exc
    except ValueError as exc:
        raise UpstreamCallFailed(f"{method} {url} returned invalid JSON: {exc}") from exc
