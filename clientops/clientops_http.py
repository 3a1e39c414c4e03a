import asyncio
import json
import collections.abc
from typing import Any, Dict, Optional

import httpx

from clientops.clientops_serialize import deserialize


class FetchResponse:
    """A completed HTTP exchange with body extraction by declared type."""
    def __init__(self, status: int, headers: Dict[str, str], content: bytes, url: str = ""):
        self.status = int(status)
        # Lower-case header keys for consistent lookups
        self.headers = {str(k).lower(): v for k, v in headers.items()}
        self.content = content
        self.url = url

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text())

    def read(self, response_type: Optional[str] = None) -> Any:
        """
        Body by declared type:
          text (default) | json | blob / arrayBuffer (bytes) | yaml | xml
        """
        t = response_type or "text"
        match t:
            case "text":
                return self.text()
            case "json":
                return self.json()
            case "blob" | "arrayBuffer" | "bytes":
                return bytes(self.content)
            case "yaml" | "xml" | "toml":
                return deserialize(self.content, content_type=self.headers.get("content-type"), fmt=t)
            case _:
                raise ValueError(f"Unsupported response type: {t!r}")

    def __repr__(self):
        return f"<FetchResponse {self.status} {self.url}>"


def _request_body(options: Dict[str, Any], headers: Dict[str, str]) -> Optional[bytes]:
    body = options.get("body")
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    if isinstance(body, (collections.abc.Mapping, list)):
        headers.setdefault("Content-Type", "application/json")
        return json.dumps(body).encode("utf-8")
    headers.setdefault("Content-Type", "text/plain; charset=utf-8")
    return str(body).encode("utf-8")


async def http_request(url: str, options: Optional[Dict] = None, *,
                       timeout: Optional[float] = None, retries: int = 0,
                       backoff: float = 0.2) -> FetchResponse:
    """
    Core fetch helper.

    `options` follows the request-init shape: method, headers, body, params.
    `timeout`, `retries` and `backoff` may also be given there. Non-2xx
    responses are returned, never raised; transport errors are retried
    and then raised.
    """
    opts = dict(options or {})
    timeout = opts.pop("timeout", timeout)
    retries = int(opts.pop("retries", retries))
    backoff = float(opts.pop("backoff", backoff))
    method = str(opts.get("method") or "GET").upper()
    headers = {str(k): str(v) for k, v in dict(opts.get("headers") or {}).items()}
    params = dict(opts.get("params") or {})
    body = _request_body(opts, headers)

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        last_exc = None
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method, url, headers=headers, params=params, content=body)
                return FetchResponse(resp.status_code, dict(resp.headers), resp.content, str(resp.url))
            except httpx.HTTPError as e:
                last_exc = e
                if attempt < retries:
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise last_exc


async def fetch_text(url: str, options: Optional[Dict] = None, **kwargs) -> str:
    resp = await http_request(url, options, **kwargs)
    if not resp.ok:
        raise RuntimeError(f"HTTP {resp.status} for {url}: {resp.text()[:200]}")
    return resp.text()
