"""Render-surface controller built on Playwright's async API and a CDP session."""

from __future__ import annotations

import platform
from pathlib import Path
from typing import Any, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import EvalError, LaunchError, NavigationTimeout, ProtocolError
from .models import LaunchOptions


_CHROME_CANDIDATES: dict[str, tuple[str, ...]] = {
    "Windows": (
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files\Google\Chrome Dev\Application\chrome.exe",
    ),
    "Darwin": ("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",),
    "Linux": ("/usr/bin/google-chrome", "/usr/bin/google-chrome-stable", "/usr/bin/chromium"),
}


def default_executable_path(system: str | None = None) -> str | None:
    """First installed Chrome for this platform, or None to use Playwright's Chromium."""
    for candidate in _CHROME_CANDIDATES.get(system or platform.system(), ()):
        if Path(candidate).exists():
            return candidate
    return None


class DebugChannel:
    """Low-level protocol commands against the page target."""

    def __init__(self, cdp: Any) -> None:
        self._cdp = cdp

    async def send(self, command: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            return await self._cdp.send(command, params or {})
        except PlaywrightError as exc:
            raise ProtocolError(f"{command}: {exc}") from exc

    def on(self, event: str, handler: Callable[[dict[str, Any]], None]) -> None:
        self._cdp.on(event, handler)

    def remove_listener(self, event: str, handler: Callable[[dict[str, Any]], None]) -> None:
        self._cdp.remove_listener(event, handler)


class SurfaceSession:
    """One exclusively owned browser page plus its debug channel."""

    def __init__(self, playwright: Any, browser: Any, context: Any, page: Any, cdp: Any) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self.page = page
        self.debug_channel = DebugChannel(cdp)
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def enable_performance(self) -> None:
        await self.debug_channel.send("Performance.enable")

    async def navigate(self, url: str, timeout_ms: int, wait_until: str = "networkidle") -> None:
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"{url} not loaded within {timeout_ms} ms") from exc
        except PlaywrightError as exc:
            raise LaunchError(f"could not open {url}: {exc}") from exc

    async def exec(self, script: str, arg: Any = None) -> Any:
        try:
            return await self.page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise EvalError(str(exc)) from exc

    async def clear_browsing_data(self) -> None:
        await self.debug_channel.send("Network.clearBrowserCookies")
        await self.debug_channel.send("Network.clearBrowserCache")
        await self.debug_channel.send("Storage.clearDataForOrigin", {"origin": "*", "storageTypes": "all"})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
            await self._browser.close()
        finally:
            await self._playwright.stop()


class RenderSurfaceController:
    """Launches an instrumented Chromium and hands out a :class:`SurfaceSession`."""

    def __init__(self, options: LaunchOptions | None = None) -> None:
        self.options = options or LaunchOptions()

    def launch_kwargs(self) -> dict[str, Any]:
        opts = self.options
        kwargs: dict[str, Any] = {"headless": opts.headless, "args": list(opts.args)}
        executable = opts.executable_path or (None if opts.channel else default_executable_path())
        if executable:
            kwargs["executable_path"] = executable
        elif opts.channel:
            kwargs["channel"] = opts.channel
        return kwargs

    async def open(self) -> SurfaceSession:
        try:
            playwright = await async_playwright().start()
        except PlaywrightError as exc:
            raise LaunchError(f"playwright driver failed to start: {exc}") from exc
        try:
            browser = await playwright.chromium.launch(**self.launch_kwargs())
            context = await browser.new_context(
                viewport={"width": self.options.viewport_width, "height": self.options.viewport_height}
            )
            page = await context.new_page()
            cdp = await context.new_cdp_session(page)
        except PlaywrightError as exc:
            await playwright.stop()
            raise LaunchError(f"browser launch failed: {exc}") from exc
        return SurfaceSession(playwright, browser, context, page, cdp)
