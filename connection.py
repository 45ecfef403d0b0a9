"""
Manages a connection to a running Chromium browser over CDP.
"""
import requests
from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright
from typing import Optional
import logging

logger = logging.getLogger("apiscope.connection")


class CDPConnection:
    """Attaches Playwright to an existing browser exposing a remote debugging port."""

    def __init__(self, cdp_port: int, host: str = "localhost"):
        self.cdp_port = cdp_port
        self.host = host
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.cdp_port}"

    def probe(self) -> Optional[str]:
        """
        Checks the debugging endpoint before attaching.
        Returns the browser version string, or None if it is not reachable.
        """
        try:
            response = requests.get(f"{self.endpoint}/json/version", timeout=5)
        except requests.ConnectionError:
            logger.error(f"Connection refused on port {self.cdp_port}.")
            logger.error("Start the browser with --remote-debugging-port=<port>.")
            return None
        except requests.RequestException as e:
            logger.error(f"Pre-connection check against {self.endpoint} failed: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Browser on port {self.cdp_port} is not accessible. (HTTP Status: {response.status_code})")
            return None
        try:
            return response.json().get("Browser", "Unknown Version")
        except ValueError:
            return "Unknown Version"

    async def connect(self) -> bool:
        """
        Connects to the browser after verifying it's accessible.
        Returns True on success, False on failure.
        """
        browser_info = self.probe()
        if browser_info is None:
            return False
        logger.info(f"Located browser: {browser_info}")

        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.connect_over_cdp(self.endpoint)
            if self.browser.contexts:
                self.context = self.browser.contexts[0]
            else:
                self.context = await self.browser.new_context()
            if not self.context.pages:
                await self.context.new_page()
            return True
        except Exception as e:
            logger.error(f"Playwright failed to establish the CDP connection: {e}")
            await self.disconnect()
            return False

    async def disconnect(self):
        """Stops the Playwright instance."""
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
            self.browser = None
            self.context = None
            logger.info("Playwright connection stopped.")
