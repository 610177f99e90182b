import logging
from typing import Any, Dict, Optional

import httpx

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
HEADERS = {"User-Agent": "QuantumMatrix/1.0", "Accept": "application/json"}


async def https_get(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[httpx.Response]:
    try:
        resp = await client.get(url, params=params, headers=headers or HEADERS, timeout=timeout)
        resp.raise_for_status()
        return resp
    except httpx.HTTPError as e:
        log.warning("GET %s failed: %s", url, e)
        return None


def safe_json(resp: Optional[httpx.Response]) -> Any:
    if resp is None:
        return None
    try:
        return resp.json()
    except ValueError:
        return None
