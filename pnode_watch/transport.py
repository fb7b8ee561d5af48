from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional
from urllib import error, request

from pnode_watch.errors import UpstreamError

FetchJson = Callable[..., Any]

_USER_AGENT = "pnode-watch/0.1"


def http_json(
    url: str,
    *,
    method: str = "GET",
    payload: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_seconds: float = 10.0,
) -> Any:
    """Blocking JSON request. Run it through ``asyncio.to_thread`` from async code."""
    request_headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
    request_headers.update(headers or {})
    body: Optional[bytes] = None
    if payload is not None:
        body = json.dumps(payload).encode("utf-8")
        request_headers["Content-Type"] = "application/json"

    req = request.Request(url=url, method=method, data=body, headers=request_headers)
    try:
        with request.urlopen(req, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        raise UpstreamError(f"HTTP {exc.code} from {url}", status_code=exc.code) from exc
    except UnicodeDecodeError as exc:
        raise UpstreamError(f"Malformed response from {url}: not UTF-8") from exc
    except (error.URLError, TimeoutError, OSError) as exc:
        raise UpstreamError(f"{type(exc).__name__} calling {url}: {exc}") from exc

    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise UpstreamError(f"Malformed JSON from {url}") from exc
