"""
Shared HTTP client for page scraping and JSON APIs.

Every failure mode (transport error, timeout, non-200, undecodable body or
JSON) is logged with the URL and parameters needed to replay the request and
reported to the caller as ``None``; nothing here raises into the sync pipeline.
"""

import asyncio
import json
import logging
import time
from typing import Any
from typing import Dict
from typing import Optional
from typing import Tuple

import aiohttp

from cinepath.settings import Settings

logger = logging.getLogger(__name__)

SECRET_PARAMS = frozenset({"api_key", "apikey"})


def redact(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Mask credentials so failing requests can be logged verbatim."""
    if not params:
        return params
    return {k: ("***" if k in SECRET_PARAMS else v) for k, v in params.items()}


class HttpClient:
    """Thin wrapper around one aiohttp session with a fixed timeout."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpClient":
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout),
            headers={
                "User-Agent": self.settings.user_agent,
                "Accept-Language": "ja,en-US;q=0.8,en;q=0.6",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Optional[str]]:
        """
        GET a URL and return its status and body.

        Returns:
            (status, text) on HTTP 200, (status, None) otherwise; status is -1
            when the request never produced a response
        """
        if self._session is None:
            raise RuntimeError("HttpClient used outside of 'async with'")

        t0 = time.perf_counter()
        try:
            async with self._session.get(url, params=params, headers=headers) as resp:
                status = resp.status
                if status != 200:
                    logger.warning(
                        f"[FETCH] status={status} url={url} params={redact(params)} "
                        f"t={time.perf_counter() - t0:.2f}s"
                    )
                    return status, None
                try:
                    text = await resp.text()
                except UnicodeDecodeError as e:
                    logger.warning(
                        f"[FETCH] undecodable body status=200 url={url} params={redact(params)} "
                        f"charset={resp.charset} msg={e}"
                    )
                    return status, None
                logger.debug(f"[FETCH] status=200 url={url} t={time.perf_counter() - t0:.2f}s")
                return status, text
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"[FETCH] error={type(e).__name__} url={url} params={redact(params)} msg={e}")
            return -1, None

    async def get_text(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[str]:
        _, text = await self.fetch(url, params=params)
        return text

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """GET a URL and decode its JSON body."""
        _, text = await self.fetch(url, params=params)
        if text is None:
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            logger.warning(f"[JSON] decode failed url={url} params={redact(params)} msg={e}")
            return None
