"""Selenium browser session."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from selenium import webdriver
from selenium.common.exceptions import (
    InvalidSessionIdException,
    NoSuchWindowException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.common.by import By
from selenium.webdriver.support.ui import WebDriverWait
from urllib3.exceptions import HTTPError as TransportError
from webdriver_manager.chrome import ChromeDriverManager

from .errors import DriverFatalError, TransientNavigationError
from .selectors import SelectorSpec

POLL_INTERVAL = 0.25
READY_STATES = {
    "domcontentloaded": {"interactive", "complete"},
    "load": {"complete"},
}
FATAL_MESSAGE_HINTS = ("chrome not reachable", "disconnected", "target window already closed")
# A dead chromedriver surfaces as transport errors from Selenium's HTTP client.
CONNECTION_ERRORS = (TransportError, ConnectionError)

DISPATCH_EVENTS_SCRIPT = """
const el = arguments[0];
for (const name of ['input', 'change', 'keyup']) {
    el.dispatchEvent(new Event(name, { bubbles: true }));
}
"""
FULL_PAGE_SIZE_SCRIPT = (
    "return [document.body.scrollWidth, document.documentElement.scrollHeight];"
)


def _is_fatal(exc: WebDriverException) -> bool:
    if isinstance(exc, (InvalidSessionIdException, NoSuchWindowException)):
        return True
    message = (exc.msg or "").lower()
    return any(hint in message for hint in FATAL_MESSAGE_HINTS)


def _fatal(action: str, exc: WebDriverException) -> DriverFatalError:
    return DriverFatalError(f"Browser session lost during {action}: {exc.msg or exc}")


@contextmanager
def _session_guard(action: str) -> Iterator[None]:
    """Translate lost-session failures raised by driver calls into DriverFatalError."""
    try:
        yield
    except WebDriverException as exc:
        if _is_fatal(exc):
            raise _fatal(action, exc) from exc
        raise
    except CONNECTION_ERRORS as exc:
        raise DriverFatalError(f"Browser session lost during {action}: {exc}") from exc


class SeleniumSession:
    """Chrome session implementing the SearchSession contract."""

    def __init__(self, driver: Any, *, logger: logging.Logger) -> None:
        self._driver = driver
        self._logger = logger

    @classmethod
    def launch(
        cls, *, user_agent: str, headless: bool, logger: logging.Logger
    ) -> SeleniumSession:
        """Start Chrome with a driver binary resolved by webdriver-manager."""
        options = webdriver.ChromeOptions()
        if headless:
            options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--window-size=1280,720")
        options.add_argument(f"user-agent={user_agent}")
        try:
            service = ChromeService(ChromeDriverManager().install())
            driver = webdriver.Chrome(service=service, options=options)
        except (WebDriverException, OSError, ValueError) as exc:
            raise DriverFatalError(f"Failed to start Selenium driver: {exc}") from exc
        logger.info("Browser initialized (headless=%s)", headless)
        return cls(driver, logger=logger)

    def navigate(
        self, url: str, wait_condition: str = "domcontentloaded", timeout_ms: int = 60000
    ) -> None:
        timeout = timeout_ms / 1000
        wanted = READY_STATES.get(wait_condition, READY_STATES["load"])
        with _session_guard("navigation"):
            try:
                self._driver.set_page_load_timeout(timeout)
                self._driver.get(url)
                WebDriverWait(self._driver, timeout, poll_frequency=POLL_INTERVAL).until(
                    lambda drv: drv.execute_script("return document.readyState") in wanted
                )
            except TimeoutException as exc:
                raise TransientNavigationError(f"Timed out loading {url}") from exc
            except WebDriverException as exc:
                if _is_fatal(exc):
                    raise _fatal("navigation", exc) from exc
                raise TransientNavigationError(f"Failed to load {url}: {exc.msg or exc}") from exc

    def _matches(self, element: Any, spec: SelectorSpec, visible: bool) -> bool:
        if visible and not element.is_displayed():
            return False
        if spec.text is not None and not spec.matches_text(element.text):
            return False
        if spec.has and not element.find_elements(By.CSS_SELECTOR, spec.has):
            return False
        return True

    def _find(self, spec: SelectorSpec, visible: bool) -> Any:
        for element in self._driver.find_elements(By.CSS_SELECTOR, spec.css):
            try:
                if self._matches(element, spec, visible):
                    return element
            except StaleElementReferenceException:
                continue
        return None

    def locate(self, spec: SelectorSpec, *, timeout_ms: int = 0, visible: bool = False) -> Any:
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            with _session_guard("element lookup"):
                try:
                    element = self._find(spec, visible)
                except WebDriverException as exc:
                    if _is_fatal(exc):
                        raise _fatal("element lookup", exc) from exc
                    self._logger.debug("Lookup failed for %s: %s", spec.describe(), exc.msg)
                    element = None
            if element is not None or time.monotonic() >= deadline:
                return element
            time.sleep(POLL_INTERVAL)

    def fill(self, handle: Any, text: str) -> None:
        with _session_guard("form fill"):
            handle.click()
            handle.clear()
            handle.send_keys(text)
            self._driver.execute_script(DISPATCH_EVENTS_SCRIPT, handle)

    def click(self, handle: Any) -> None:
        with _session_guard("click"):
            handle.click()

    def is_visible(self, handle: Any) -> bool:
        with _session_guard("visibility check"):
            try:
                return bool(handle.is_displayed())
            except WebDriverException as exc:
                if _is_fatal(exc):
                    raise
                return False

    def is_enabled(self, handle: Any) -> bool:
        with _session_guard("enablement check"):
            try:
                return bool(handle.is_enabled())
            except WebDriverException as exc:
                if _is_fatal(exc):
                    raise
                return False

    def evaluate_in_page(self, script: str, *args: Any) -> Any:
        with _session_guard("script evaluation"):
            return self._driver.execute_script(script, *args)

    def wait_ms(self, duration: int) -> None:
        time.sleep(duration / 1000)

    def screenshot(self, path: str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with _session_guard("screenshot"):
            original_size = self._driver.get_window_size()
            try:
                width, height = self._driver.execute_script(FULL_PAGE_SIZE_SCRIPT)
                self._driver.set_window_size(width, height)
                self._driver.save_screenshot(str(target))
            finally:
                self._driver.set_window_size(original_size["width"], original_size["height"])

    def title(self) -> str:
        with _session_guard("title lookup"):
            return str(self._driver.title)

    def current_url(self) -> str:
        with _session_guard("url lookup"):
            return str(self._driver.current_url)

    def content(self) -> str:
        with _session_guard("page read"):
            return str(self._driver.page_source)

    def visible_text(self) -> str:
        return str(self.evaluate_in_page("return document.body ? document.body.innerText : '';"))

    def close(self) -> None:
        try:
            self._driver.quit()
        except (WebDriverException, *CONNECTION_ERRORS) as exc:
            self._logger.debug("Browser quit failed: %s", exc)
