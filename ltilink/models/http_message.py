"""
Trace record of a single outbound service request and its response.
"""

import asyncio
import logging
from typing import Dict, Optional, Union
from urllib.parse import urlencode

import aiohttp


logger = logging.getLogger(__name__)


class HttpMessage:
    """HTTP request/response snapshot, overwritten on every service call."""

    def __init__(
        self,
        url: str,
        method: str = 'GET',
        body: Union[str, Dict[str, str], None] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.url = url
        self.method = method.upper()
        self.request_body = body
        self.request_headers: Dict[str, str] = dict(headers or {})
        self.status: Optional[int] = None
        self.response: str = ''
        self.response_headers: Dict[str, str] = {}
        self.ok = False
        self.error: Optional[str] = None

    @property
    def request(self) -> str:
        """Request body as sent on the wire."""
        if isinstance(self.request_body, dict):
            return urlencode(self.request_body)
        return self.request_body or ''

    async def send(self, session: aiohttp.ClientSession) -> bool:
        """
        Send the request using an open client session.

        Returns:
            True if a 2xx response was received
        """
        self.ok = False
        self.error = None
        try:
            async with session.request(
                self.method,
                self.url,
                data=self.request_body,
                headers=self.request_headers
            ) as response:
                self.status = response.status
                self.response_headers = dict(response.headers)
                self.response = await response.text()
                self.ok = 200 <= response.status < 300
                if not self.ok:
                    self.error = f"HTTP {response.status}"

        except aiohttp.ClientError as e:
            self.error = f"HTTP client error: {e}"
        except asyncio.TimeoutError:
            self.error = "Request timed out"

        if self.error:
            logger.debug(f"{self.method} {self.url} failed: {self.error}")
        return self.ok

    def __repr__(self) -> str:
        return f"HttpMessage({self.method} {self.url} status={self.status})"
