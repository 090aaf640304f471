"""
WhatsApp Client - Selenium-Based WhatsApp Web Automation
=========================================================

Drives one Chrome instance per sender. The Chrome profile directory is the
persisted credential: when it still holds a valid login, WhatsApp Web loads
straight into the chat list and no QR code is ever shown.

Selenium is blocking and a WebDriver must not be used from two threads at
once, so every driver call runs on a single worker thread owned by the
connection.
"""

import asyncio
import functools
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional, Set, Tuple
from urllib.parse import quote

from selenium import webdriver
from selenium.common.exceptions import (
    InvalidSessionIdException,
    JavascriptException,
    NoSuchWindowException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.common.by import By
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from ...domain.errors import TransportError, TransportErrorKind
from ..config import WhatsAppSettings, get_settings
from .messaging_provider import Connection, ConnectionEvent, EventHandler

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"

# Browser gone for good: the session cannot be used again
_CLOSED_ERRORS = (InvalidSessionIdException, NoSuchWindowException)


class WhatsAppClient(Connection):
    """
    Selenium-based WhatsApp Web connection for a single sender.
    """

    # CSS Selectors - WhatsApp Web 2024/2025
    SELECTORS = {
        # The QR canvas wrapper carries the raw pairing payload
        "qr_code": 'div[data-ref]',
        "search_box": 'div[contenteditable="true"][data-tab="3"]',
        "message_input": 'div[contenteditable="true"][data-tab="10"]',
        "send_button": 'span[data-icon="send"]',
        "popup": 'div[data-animate-modal-popup="true"]',
        # data-id is "<fromMe>_<chat>_<id>"
        "outgoing_messages": 'div[data-id^="true_"]',
    }

    BLOCK_INDICATORS = [
        "temporarily banned",
        "account is temporarily",
        "verify your phone",
        "unusual activity",
    ]

    INVALID_NUMBER_INDICATORS = [
        "phone number shared via url is invalid",
        "מספר הטלפון ששותף דרך כתובת url אינו תקין",
    ]

    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    def __init__(
        self,
        sender_id: str,
        profile_dir: Path,
        on_event: EventHandler,
        settings: Optional[WhatsAppSettings] = None,
    ):
        self._settings = settings or get_settings().whatsapp
        self.sender_id = sender_id
        self.profile_dir = Path(profile_dir)
        self._on_event = on_event
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="whatsapp")

        self.driver: Optional[webdriver.Chrome] = None
        self._identity: Optional[str] = None
        self._authenticated = False
        self._last_qr: Optional[str] = None
        self._watch_task: Optional[asyncio.Task] = None

    # ── Connection interface ──────────────────────────────────────

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    async def start(self) -> None:
        """Launch Chrome, open WhatsApp Web and start watching the page."""
        try:
            self.driver = await self._run(self._create_driver)
            await self._run(self._navigate_to_whatsapp)
        except Exception as e:
            # Chrome may already be running even though the page never loaded
            await self._quit_driver()
            self._executor.shutdown(wait=False)
            detail = (e.msg if isinstance(e, WebDriverException) else None) or str(e)
            raise TransportError.of(
                TransportErrorKind.FATAL, f"Failed to launch browser: {detail}", e
            )

        self._watch_task = asyncio.create_task(self._watch())

    async def send_message(self, phone: str, text: str) -> str:
        """Open the chat for a phone number and send one text message."""
        if self.driver is None:
            raise TransportError.of(TransportErrorKind.CLOSED, "Browser is not running")

        try:
            return await self._run(self._send, phone, text)
        except _CLOSED_ERRORS as e:
            self._emit(ConnectionEvent.DISCONNECTED, "browser closed")
            raise TransportError.of(TransportErrorKind.CLOSED, "Browser closed while sending", e)
        except TimeoutException as e:
            raise TransportError.of(
                TransportErrorKind.PROTOCOL, f"Chat for {phone} did not respond in time", e
            )
        except JavascriptException as e:
            raise TransportError.of(TransportErrorKind.EVALUATION, e.msg or str(e), e)
        except StaleElementReferenceException as e:
            raise TransportError.of(TransportErrorKind.PROTOCOL, "Page changed while sending", e)
        except WebDriverException as e:
            raise TransportError.of(TransportErrorKind.PROTOCOL, e.msg or str(e), e)

    async def destroy(self) -> None:
        """Stop watching and close the browser."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

        driver, self.driver = self.driver, None
        self._identity = None
        if driver is None:
            self._executor.shutdown(wait=False)
            return

        try:
            await self._run(driver.quit)
            logger.info(f"Browser closed for {self.sender_id}")
        except WebDriverException as e:
            raise TransportError.of(TransportErrorKind.CLOSED, f"Browser already closed: {e.msg}", e)
        finally:
            self._executor.shutdown(wait=False)

    # ── Browser setup ─────────────────────────────────────────────

    async def _run(self, fn, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def _quit_driver(self) -> None:
        driver, self.driver = self.driver, None
        if driver is None:
            return
        try:
            await self._run(driver.quit)
        except WebDriverException as e:
            logger.warning(f"Could not quit browser for {self.sender_id}: {e.msg}")

    def _create_driver(self) -> webdriver.Chrome:
        """Create and configure Chrome WebDriver."""
        options = webdriver.ChromeOptions()

        if self._settings.headless:
            options.add_argument("--headless=new")
            options.add_argument(f"--user-agent={self.USER_AGENT}")
        else:
            options.add_argument("--start-maximized")

        options.add_argument("--disable-gpu")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")

        self.profile_dir.mkdir(parents=True, exist_ok=True)
        options.add_argument(f"--user-data-dir={self.profile_dir.resolve()}")
        logger.info(f"Using Chrome profile at: {self.profile_dir}")

        service = ChromeService(ChromeDriverManager().install())
        return webdriver.Chrome(service=service, options=options)

    def _navigate_to_whatsapp(self) -> None:
        """Navigate to WhatsApp Web."""
        self.driver.get(WHATSAPP_WEB_URL)
        logger.info(f"Opened WhatsApp Web for {self.sender_id}")

    def _random_delay(self, min_s: float = 0.5, max_s: float = 2.0) -> None:
        """Add human-like random delay."""
        time.sleep(random.uniform(min_s, max_s))

    # ── Page watching ─────────────────────────────────────────────

    async def _watch(self) -> None:
        """Poll the page and turn what it shows into connection events."""
        while True:
            try:
                phase, value = await self._run(self._probe)
            except _CLOSED_ERRORS:
                self._emit(ConnectionEvent.DISCONNECTED, "browser closed")
                return
            except WebDriverException as e:
                logger.debug(f"Probe failed for {self.sender_id}: {e.msg}")
                await asyncio.sleep(self._settings.poll_interval)
                continue

            if not self._advance(phase, value):
                return
            await asyncio.sleep(self._settings.poll_interval)

    def _probe(self) -> Tuple[str, Optional[str]]:
        """Classify the current page: blocked, qr, authenticated, ready or loading."""
        blocked = self._check_for_blocks()
        if blocked:
            return "blocked", blocked

        qr_elements = self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["qr_code"])
        for element in qr_elements:
            code = element.get_attribute("data-ref")
            if code:
                return "qr", code

        if self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["search_box"]):
            identity = self._read_identity()
            return ("ready", identity) if identity else ("authenticated", None)

        return "loading", None

    def _advance(self, phase: str, value: Optional[str]) -> bool:
        """Emit events for a probe result. Returns False once watching should stop."""
        if phase == "blocked":
            self._emit(ConnectionEvent.AUTH_FAILED, value)
            return False

        if phase == "qr":
            if self._authenticated:
                # Device was unlinked from the phone
                self._identity = None
                self._emit(ConnectionEvent.DISCONNECTED, "LOGOUT")
                return False
            if value != self._last_qr:
                self._last_qr = value
                self._emit(ConnectionEvent.PAIRING_CODE, value)
            return True

        if phase in ("authenticated", "ready") and not self._authenticated:
            self._authenticated = True
            self._emit(ConnectionEvent.AUTHENTICATED, None)

        if phase == "ready" and self._identity is None:
            self._identity = value
            self._emit(ConnectionEvent.READY, value)

        return True

    def _check_for_blocks(self) -> Optional[str]:
        """Return the blocking/warning indicator shown on the page, if any."""
        page_text = self.driver.page_source.lower()
        for indicator in self.BLOCK_INDICATORS:
            if indicator in page_text:
                logger.error(f"Block indicator detected for {self.sender_id}: {indicator}")
                return indicator
        return None

    def _read_identity(self) -> Optional[str]:
        """Read the logged-in account id WhatsApp Web keeps in localStorage."""
        raw = self.driver.execute_script(
            "return window.localStorage.getItem('last-wid-md')"
            " || window.localStorage.getItem('last-wid');"
        )
        if not raw:
            return None
        # Stored as a JSON string such as "972501234567:12@c.us"
        wid = str(raw).strip('"')
        user = wid.split("@")[0].split(":")[0]
        return f"{user}@c.us" if user else None

    def _emit(self, event: ConnectionEvent, payload: Any) -> None:
        logger.debug(f"{self.sender_id}: {event.value}")
        try:
            self._on_event(event, payload)
        except Exception:
            logger.exception(f"Event handler failed for {self.sender_id} on {event.value}")

    # ── Sending ───────────────────────────────────────────────────

    def _send(self, phone: str, text: str) -> str:
        """Open the chat through the send URL and click send. Runs on the worker thread."""
        self.driver.get(f"{WHATSAPP_WEB_URL}send?phone={phone}&text={quote(text)}")

        outcome, element = WebDriverWait(self.driver, self._settings.send_timeout).until(
            self._chat_opened
        )
        if outcome == "invalid":
            raise TransportError.of(
                TransportErrorKind.NOT_REGISTERED, f"{phone} is not on WhatsApp"
            )

        before = self._outgoing_ids()
        self._random_delay(0.5, 1.0)
        element.click()

        message_id = WebDriverWait(self.driver, self._settings.send_timeout).until(
            lambda driver: self._new_outgoing_id(before)
        )
        logger.info(f"Sent message to {phone}: {text[:50]}...")
        return message_id

    def _chat_opened(self, driver) -> Any:
        """Wait condition: the send button is ready, or WhatsApp rejected the number."""
        for button in driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["send_button"]):
            if button.is_displayed():
                return "send", button

        for popup in driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["popup"]):
            popup_text = popup.text.lower()
            if any(indicator in popup_text for indicator in self.INVALID_NUMBER_INDICATORS):
                return "invalid", popup

        return False

    def _outgoing_ids(self) -> Set[str]:
        ids = set()
        for element in self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["outgoing_messages"]):
            try:
                ids.add(element.get_attribute("data-id"))
            except StaleElementReferenceException:
                continue
        return ids

    def _new_outgoing_id(self, before: Set[str]) -> Optional[str]:
        new_ids = [mid for mid in self._outgoing_ids() if mid and mid not in before]
        return new_ids[-1] if new_ids else None
