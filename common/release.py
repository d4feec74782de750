from __future__ import annotations

import asyncio
import logging

import aiohttp


class ReleaseFetcher:
    """Reads the latest published agent version from a releases endpoint."""

    def __init__(
        self,
        api_url: str,
        asset_url: str,
        arch: str = "arm64",
        timeout: float = 30.0,
    ):
        self.logger = logging.getLogger("panel.release")
        self.api_url = api_url
        self.asset_url_template = asset_url
        self.arch = arch
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = {"Accept": "application/vnd.github+json"}

    async def latest_tag(self) -> str | None:
        try:
            async with aiohttp.ClientSession(headers=self.headers, timeout=self.timeout) as session:
                async with session.get(self.api_url) as response:
                    if response.status >= 400:
                        self.logger.error("release feed error status=%s url=%s", response.status, self.api_url)
                        return None
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            self.logger.error("error fetching latest version: %s", exc)
            return None
        if not isinstance(data, dict):
            self.logger.error("release feed returned %s, expected an object", type(data).__name__)
            return None
        tag = str(data.get("tag_name") or "").strip()
        return tag or None

    def asset_url(self, tag: str) -> str:
        return self.asset_url_template.format(tag=tag, arch=self.arch)
