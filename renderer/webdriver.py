"""
Full-mode rendering through a W3C WebDriver endpoint.

This module provides:
- WebDriverClient: minimal W3C WebDriver protocol client over httpx
- WebDriverSessionPool: one browser session per driver port, borrowed exclusively
- WebDriverRenderer: the PageRenderer used for full-mode targets
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from patrol.errors import (
    FetchConnectionError,
    FetchError,
    FetchTimeoutError,
    NavigationError,
    UnknownFetchError,
)
from patrol.models import Target

logger = structlog.get_logger(__name__)

# W3C element reference key
ELEMENT_KEY = "element-6066-11e4-a52e-4f735466cecf"

HEADLESS_CAPABILITIES = {
    "goog:chromeOptions": {
        "args": ["--headless", "--disable-extensions", "--disable-gpu"]
    },
    "moz:firefoxOptions": {
        "args": ["--headless", "--safe-mode"]
    },
}

TIMEOUT_ERRORS = {"timeout", "script timeout"}
NAVIGATION_ERRORS = {"no such element", "invalid selector"}


class WebDriverClient:
    """
    Client for one WebDriver endpoint holding at most one session.
    """

    def __init__(
        self,
        base_url: str,
        page_load_timeout: float = 30.0,
        element_wait_timeout: float = 10.0,
        poll_interval: float = 0.25,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize WebDriver client.

        Args:
            base_url: Driver endpoint, e.g. http://localhost:9515
            page_load_timeout: Browser page load timeout in seconds
            element_wait_timeout: How long to poll for an awaited element
            poll_interval: Delay between element lookups while waiting
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.page_load_timeout = page_load_timeout
        self.element_wait_timeout = element_wait_timeout
        self.poll_interval = poll_interval
        self.session_id: Optional[str] = None

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=page_load_timeout + 10,
            transport=transport
        )
        self.logger = logger.bind(component="webdriver", endpoint=self.base_url)

    @property
    def has_session(self) -> bool:
        return self.session_id is not None

    async def new_session(self) -> str:
        """Start a headless browser session and apply the page load timeout."""
        payload = {"capabilities": {"alwaysMatch": HEADLESS_CAPABILITIES}}
        value = await self._command("POST", "/session", payload)

        session_id = value.get("sessionId") if isinstance(value, dict) else None
        if not session_id:
            raise UnknownFetchError(f"{self.base_url}: no session id in new session response")
        self.session_id = session_id

        await self._command(
            "POST",
            f"/session/{session_id}/timeouts",
            {"pageLoad": int(self.page_load_timeout * 1000)}
        )

        self.logger.info("WebDriver session created", session_id=session_id)
        return session_id

    async def delete_session(self) -> None:
        if self.session_id is None:
            return
        session_id, self.session_id = self.session_id, None
        try:
            await self._command("DELETE", f"/session/{session_id}")
            self.logger.info("WebDriver session closed", session_id=session_id)
        except FetchError as e:
            self.logger.warning("Failed to close WebDriver session", session_id=session_id, error=str(e))

    async def close(self) -> None:
        await self.delete_session()
        await self._http.aclose()

    async def navigate(self, url: str) -> None:
        await self._command("POST", self._session_path("url"), {"url": url}, navigating=True)

    async def find_element(self, selector: str) -> str:
        """Return the element reference for the first match of a CSS selector."""
        value = await self._command(
            "POST",
            self._session_path("element"),
            {"using": "css selector", "value": selector}
        )
        if not isinstance(value, dict) or ELEMENT_KEY not in value:
            raise UnknownFetchError(f"Malformed element reference for {selector!r}")
        return value[ELEMENT_KEY]

    async def wait_for_element(self, selector: str, timeout: Optional[float] = None) -> str:
        """
        Poll for an element until it appears.

        Raises:
            NavigationError: if the element did not appear within the timeout
        """
        timeout = self.element_wait_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            try:
                return await self.find_element(selector)
            except NavigationError as e:
                if time.monotonic() >= deadline:
                    raise NavigationError(f"Element {selector!r} did not appear within {timeout}s: {e}") from e
            await asyncio.sleep(self.poll_interval)

    async def element_text(self, element_id: str) -> str:
        value = await self._command("GET", self._session_path(f"element/{element_id}/text"))
        return value if isinstance(value, str) else ""

    def _session_path(self, suffix: str) -> str:
        if self.session_id is None:
            raise FetchConnectionError(f"{self.base_url}: no active WebDriver session")
        return f"/session/{self.session_id}/{suffix}"

    async def _command(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        navigating: bool = False
    ) -> Any:
        """
        Send one WebDriver command and return its `value`.

        Raises:
            FetchError: subclass matching the transport or WebDriver error
        """
        try:
            response = await self._http.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.ConnectError as e:
            self.session_id = None
            raise FetchConnectionError(f"Cannot reach WebDriver at {self.base_url}: {e}") from e
        except httpx.HTTPError as e:
            self.session_id = None
            raise FetchConnectionError(f"WebDriver transport error: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise UnknownFetchError(
                f"{method} {path}: non-JSON response (HTTP {response.status_code})"
            ) from e

        value = body.get("value") if isinstance(body, dict) else None
        if response.is_success:
            return value

        error = value.get("error", "unknown error") if isinstance(value, dict) else "unknown error"
        message = value.get("message", "") if isinstance(value, dict) else ""
        raise self._map_error(error, f"{method} {path}: {error}: {message}", navigating)

    def _map_error(self, error: str, detail: str, navigating: bool) -> FetchError:
        if error in TIMEOUT_ERRORS:
            return FetchTimeoutError(detail)
        if error in NAVIGATION_ERRORS:
            return NavigationError(detail)
        if error == "invalid session id":
            self.session_id = None
            return FetchConnectionError(detail)
        if error == "unknown error" and navigating:
            return NavigationError(detail)
        return UnknownFetchError(detail)


class WebDriverSessionPool:
    """
    One WebDriver client per driver port.
    A borrowed client is used by exactly one cycle at a time.
    """

    def __init__(self, clients: List[WebDriverClient]):
        if not clients:
            raise ValueError("At least one WebDriver client is required")
        self.clients = clients
        self._available: asyncio.Queue = asyncio.Queue()
        for client in clients:
            self._available.put_nowait(client)
        self.logger = logger.bind(component="webdriver_pool")

    @classmethod
    def for_ports(
        cls,
        host: str,
        ports: List[int],
        page_load_timeout: float = 30.0,
        element_wait_timeout: float = 10.0
    ) -> "WebDriverSessionPool":
        clients = [
            WebDriverClient(
                f"http://{host}:{port}",
                page_load_timeout=page_load_timeout,
                element_wait_timeout=element_wait_timeout
            )
            for port in ports
        ]
        return cls(clients)

    async def open(self) -> None:
        """
        Create a session on every endpoint.

        Raises:
            FetchError: if any endpoint refuses a session
        """
        for client in self.clients:
            await client.new_session()
        self.logger.info("WebDriver sessions ready", sessions=len(self.clients))

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
        self.logger.info("WebDriver sessions closed", sessions=len(self.clients))

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[WebDriverClient]:
        """Borrow a client, re-creating its session if it was lost."""
        client = await self._available.get()
        try:
            if not client.has_session:
                self.logger.info("Re-creating WebDriver session", endpoint=client.base_url)
                await client.new_session()
            yield client
        finally:
            self._available.put_nowait(client)


class WebDriverRenderer:
    """Renders full-mode targets in a real browser."""

    def __init__(self, pool: WebDriverSessionPool, fetch_timeout: float = 60.0):
        """
        Initialize renderer.

        Args:
            pool: Session pool to borrow browsers from
            fetch_timeout: Upper bound for one whole fetch, including waits
        """
        self.pool = pool
        self.fetch_timeout = fetch_timeout
        self.logger = logger.bind(component="webdriver_renderer")

    async def fetch(self, target: Target) -> str:
        try:
            return await asyncio.wait_for(self._render(target), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(
                f"Fetching {target.url_str} exceeded {self.fetch_timeout}s"
            ) from e

    async def _render(self, target: Target) -> str:
        async with self.pool.acquire() as client:
            await client.navigate(target.url_str)
            await client.wait_for_element("html")

            if target.wait.wait_seconds:
                await asyncio.sleep(target.wait.wait_seconds)

            element_id = await client.wait_for_element(target.wait.selector)
            text = await client.element_text(element_id)

        self.logger.debug("Rendered page", target_id=target.target_id, length=len(text))
        return text
