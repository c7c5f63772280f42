"""
Simple-mode rendering: plain HTTP GET and HTML selection, no browser.
"""

from typing import Dict, Optional

import httpx
import structlog
from asyncio_throttle import Throttler
from bs4 import BeautifulSoup

from patrol.errors import FetchConnectionError, FetchTimeoutError, NavigationError
from patrol.models import Target

logger = structlog.get_logger(__name__)


class HttpRenderer:
    """
    Fetches static HTML and extracts the text of every element matching the target selector.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        rate_limit_per_second: float = 2.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize renderer.

        Args:
            timeout: Per-request timeout in seconds
            rate_limit_per_second: Upper bound on request rate across all targets
            headers: Request headers
            transport: Optional httpx transport (used by tests)
        """
        self.throttler = Throttler(rate_limit=rate_limit_per_second)
        self.client_config = {
            "timeout": timeout,
            "headers": headers or {},
            "follow_redirects": True,
            "limits": httpx.Limits(max_keepalive_connections=10, max_connections=20),
        }
        if transport is not None:
            self.client_config["transport"] = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logger.bind(component="http_renderer")

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(**self.client_config)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, target: Target) -> str:
        await self.open()
        url = target.url_str

        async with self.throttler:
            try:
                response = await self._client.get(url)
            except httpx.TimeoutException as e:
                raise FetchTimeoutError(f"GET {url} timed out: {e}") from e
            except httpx.HTTPError as e:
                raise FetchConnectionError(f"GET {url} failed: {e}") from e

        if not response.is_success:
            raise NavigationError(f"GET {url} returned HTTP {response.status_code}")

        text = self.extract_text(response.text, target.wait.selector)
        self.logger.debug("Fetched page", target_id=target.target_id, length=len(text))
        return text

    @staticmethod
    def extract_text(html: str, selector: str) -> str:
        """
        Join the stripped text of all elements matching `selector`, one per line.

        Raises:
            NavigationError: if the selector cannot be parsed
        """
        soup = BeautifulSoup(html, "html.parser")
        try:
            elements = soup.select(selector)
        except Exception as e:
            raise NavigationError(f"Invalid selector {selector!r}: {e}") from e

        pieces = [element.get_text().strip() for element in elements]
        return "\n".join(piece for piece in pieces if piece)
