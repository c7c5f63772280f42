"""
Page renderers.

- WebDriverRenderer: full mode, real browser over W3C WebDriver
- HttpRenderer: simple mode, static HTML over HTTP
- SelectiveRenderer: picks one of the above per target
"""

from renderer.http_renderer import HttpRenderer
from renderer.selective import SelectiveRenderer
from renderer.webdriver import WebDriverClient, WebDriverRenderer, WebDriverSessionPool

__all__ = [
    "HttpRenderer",
    "SelectiveRenderer",
    "WebDriverClient",
    "WebDriverRenderer",
    "WebDriverSessionPool",
]
