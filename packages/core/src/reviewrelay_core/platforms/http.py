"""Thin httpx wrapper shared by the REST-only adapters."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from reviewrelay_core.errors import classify_platform_error

logger = logging.getLogger(__name__)


class PlatformHttpClient:
    """JSON over HTTPS with a per-call timeout.

    Non-2xx responses and transport failures are raised as PlatformError
    subclasses so callers only deal with one taxonomy.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
        auth: httpx.Auth | tuple[str, str] | None = None,
        params: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout,
            auth=auth,
            params=params,
            transport=transport,
        )

    def request(self, method: str, path: str, **kwargs) -> Any:
        logger.debug("%s %s", method, path)
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_platform_error(e) from e
        if not response.content:
            return None
        return response.json()

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("POST", path, json=json, **kwargs)

    def paginate(self, path: str, items_key: str | None = None, params: dict | None = None, limit: int = 20) -> list:
        """Follow ``page``-numbered pagination (GitLab, Forgejo) or ``next`` links (Bitbucket)."""
        results: list = []
        page_params = dict(params or {})
        url: str | None = path
        page = 1
        while url and page <= limit:
            data = self.get(url, params=page_params if url == path else None)
            items = data.get(items_key, []) if items_key and isinstance(data, dict) else data
            if not items:
                break
            results.extend(items)
            if isinstance(data, dict) and data.get("next"):
                url = data["next"]
            elif isinstance(data, list) and "page" in page_params:
                page_params["page"] = int(page_params["page"]) + 1
            else:
                url = None
            page += 1
        return results

    def close(self) -> None:
        self._client.close()
