from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import Settings
from .errors import (
    ActivityNotFoundError,
    CaptureRequestFailedError,
    CaptureTimeoutError,
    LoginFieldNotFoundError,
    SessionAcquisitionError,
)


logger = logging.getLogger(__name__)

LOGIN_URL = (
    "https://sso.garmin.com/portal/sso/en-US/sign-in"
    "?clientId=GarminConnect&service=https%3A%2F%2Fconnect.garmin.com%2Fmodern"
)
POST_LOGIN_URL_PATTERN = "https://connect.garmin.com/modern**"
ACTIVITIES_URL = "https://connect.garmin.com/modern/activities"
DEVICE_REQUEST_MARKER = "/device-service/deviceservice/user-device/"

EMAIL_SELECTOR = "input#email"
PASSWORD_SELECTOR = "input#password"
SUBMIT_SELECTOR = "button[type=submit]"
ACTIVITY_LINK_SELECTOR = 'div[class^="ActivityList_activitiesListItems"] a[href*="/activity/"]'

EMAIL_FIELD_TIMEOUT_MS = 15_000
PASSWORD_FIELD_TIMEOUT_MS = 10_000
TYPING_DELAY_MS = 50

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1280, "height": 800}
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
]
HIDE_WEBDRIVER_SCRIPT = "Object.defineProperty(navigator, 'webdriver', { get: () => undefined });"


@dataclass(frozen=True)
class CapturedSession:
    authorization: str
    cookie: str

    @property
    def is_valid(self) -> bool:
        return bool(self.authorization) and bool(self.cookie)


class CaptureLatch:
    """Single-fire signal: the first ``set`` or ``fail`` wins, later calls are ignored."""

    def __init__(self) -> None:
        self._future: asyncio.Future[CapturedSession] = asyncio.get_running_loop().create_future()
        # A failure nobody awaited should not surface as an asyncio warning.
        self._future.add_done_callback(lambda future: future.cancelled() or future.exception())
        self.session: CapturedSession | None = None

    @property
    def captured(self) -> bool:
        return self.session is not None

    def set(self, session: CapturedSession) -> bool:
        if self._future.done():
            return False
        self.session = session
        self._future.set_result(session)
        return True

    def fail(self, exc: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(exc)
        return True

    async def wait(self) -> CapturedSession:
        return await asyncio.shield(self._future)


async def race_with_deadline(
    signal: Awaitable[Any],
    timeout_seconds: float,
    error: BaseException,
) -> Any:
    """Resolve with ``signal`` or raise ``error`` once ``timeout_seconds`` pass, whichever is first."""
    signal_task = asyncio.ensure_future(signal)
    deadline_task = asyncio.ensure_future(asyncio.sleep(timeout_seconds))
    try:
        done, _pending = await asyncio.wait(
            {signal_task, deadline_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (signal_task, deadline_task):
            if not task.done():
                task.cancel()
    if signal_task in done:
        return signal_task.result()
    raise error


async def join_all(*awaitables: Awaitable[Any]) -> list[Any]:
    """Await every step; the first failure cancels whatever is still running."""
    tasks = [asyncio.ensure_future(item) for item in awaitables]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


class DeviceRequestInterceptor:
    """Watches page traffic for the device-metadata call and lifts its auth headers.

    Observation is passive: requests are never paused, altered or blocked.
    """

    def __init__(self, latch: CaptureLatch, marker: str = DEVICE_REQUEST_MARKER) -> None:
        self.latch = latch
        self.marker = marker
        self._page: Any = None

    def matches(self, url: str) -> bool:
        return self.marker in url

    def attach(self, page: Any) -> None:
        page.on("request", self.on_request)
        page.on("requestfailed", self.on_request_failed)
        self._page = page

    def detach(self) -> None:
        page = self._page
        if page is None:
            return
        self._page = None
        page.remove_listener("request", self.on_request)
        page.remove_listener("requestfailed", self.on_request_failed)

    async def on_request(self, request: Any) -> None:
        if self.latch.captured or not self.matches(request.url):
            return
        try:
            headers = await request.all_headers()
        except PlaywrightError as exc:
            logger.warning("Could not read headers of %s: %s", request.url, exc)
            return

        session = CapturedSession(
            authorization=headers.get("authorization") or "",
            cookie=headers.get("cookie") or "",
        )
        if not session.is_valid:
            logger.warning("Matched device-service request but failed to extract auth/cookie headers.")
            logger.warning("Headers found: %s", sorted(headers))
            return
        if self.latch.set(session):
            logger.info("Captured Authorization and Cookie headers from device-service request.")

    def on_request_failed(self, request: Any) -> None:
        if self.latch.captured or not self.matches(request.url):
            return
        failure = request.failure
        logger.error("Target device-service request failed! URL: %s, Failure: %s", request.url, failure)
        self.latch.fail(CaptureRequestFailedError(f"Target device-service request failed: {failure}"))


def activity_id_from_href(href: str | None) -> str | None:
    if not href:
        return None
    path = urlsplit(href).path
    segment = path.split("/")[-1]
    return segment or None


async def _type_into_field(page: Any, selector: str, value: str, *, timeout_ms: int) -> None:
    try:
        await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
    except PlaywrightTimeoutError as exc:
        raise LoginFieldNotFoundError(f"Login field '{selector}' not found.") from exc
    await page.type(selector, value, delay=TYPING_DELAY_MS)


async def log_in(page: Any, settings: Settings, latch: CaptureLatch) -> CapturedSession:
    logger.info("Navigating to Garmin login")
    login_timeout_ms = settings.login_timeout_seconds * 1000
    try:
        await page.goto(LOGIN_URL, wait_until="networkidle", timeout=login_timeout_ms)
    except PlaywrightError as exc:
        raise SessionAcquisitionError(f"Login page did not load: {exc}") from exc

    logger.info("Entering credentials...")
    await _type_into_field(page, EMAIL_SELECTOR, settings.garmin_email or "", timeout_ms=EMAIL_FIELD_TIMEOUT_MS)
    await _type_into_field(
        page, PASSWORD_SELECTOR, settings.garmin_password or "", timeout_ms=PASSWORD_FIELD_TIMEOUT_MS
    )

    logger.info("Submitting login & waiting for redirect and header capture...")
    capture_timeout = settings.capture_timeout_seconds
    try:
        _navigated, _clicked, session = await join_all(
            page.wait_for_url(POST_LOGIN_URL_PATTERN, wait_until="networkidle", timeout=login_timeout_ms),
            page.click(SUBMIT_SELECTOR, timeout=login_timeout_ms),
            race_with_deadline(
                latch.wait(),
                capture_timeout,
                CaptureTimeoutError(
                    f"Timeout: Did not capture device-service headers within {capture_timeout} seconds."
                ),
            ),
        )
    except PlaywrightError as exc:
        raise SessionAcquisitionError(f"Login submit or redirect failed: {exc}") from exc
    logger.info("Login complete and required headers captured.")
    return session


async def find_activity_id(page: Any, activity_type: str, *, timeout_ms: int) -> str:
    logger.info("Navigating to activities list...")
    try:
        await page.goto(ACTIVITIES_URL, wait_until="networkidle", timeout=timeout_ms)
        logger.info('Waiting for activities list and searching for "%s"...', activity_type)
        await page.wait_for_selector(ACTIVITY_LINK_SELECTOR, timeout=timeout_ms)
    except PlaywrightError as exc:
        raise SessionAcquisitionError(f"Activities list did not render: {exc}") from exc

    for link in await page.query_selector_all(ACTIVITY_LINK_SELECTOR):
        text = (await link.text_content() or "").strip()
        if activity_type not in text:
            continue
        activity_id = activity_id_from_href(await link.get_attribute("href"))
        if activity_id:
            logger.info('Found latest "%s" activity ID: %s', activity_type, activity_id)
            return activity_id
        break

    logger.error('No "%s" activity found on the first page.', activity_type)
    raise ActivityNotFoundError(f'Target activity "{activity_type}" not found.')


@asynccontextmanager
async def launched_browser(playwright: Any, settings: Settings) -> AsyncIterator[Any]:
    logger.info("Launching browser...")
    try:
        browser = await playwright.chromium.launch(headless=settings.headless, args=BROWSER_ARGS)
    except PlaywrightError as exc:
        raise SessionAcquisitionError(f"Browser launch failed: {exc}") from exc
    try:
        yield browser
    finally:
        logger.info("Closing browser...")
        try:
            await browser.close()
        except Exception as exc:
            logger.warning("Browser close failed: %s", exc)


async def acquire_session(
    settings: Settings,
    *,
    playwright_factory: Callable[[], Any] = async_playwright,
) -> tuple[CapturedSession, str]:
    """Log in through the browser and return the captured headers plus the target activity id."""
    try:
        async with playwright_factory() as playwright:
            async with launched_browser(playwright, settings) as browser:
                context = await browser.new_context(user_agent=USER_AGENT, viewport=VIEWPORT, locale="en-US")
                await context.add_init_script(HIDE_WEBDRIVER_SCRIPT)
                page = await context.new_page()

                interceptor = DeviceRequestInterceptor(CaptureLatch())
                interceptor.attach(page)
                logger.info("Request observation enabled.")
                try:
                    session = await log_in(page, settings, interceptor.latch)
                finally:
                    interceptor.detach()
                    logger.info("Request observation disabled.")

                activity_id = await find_activity_id(
                    page,
                    settings.target_activity_type,
                    timeout_ms=settings.activity_list_timeout_seconds * 1000,
                )
    except PlaywrightError as exc:
        logger.error("Browser session failed: %s", exc)
        raise SessionAcquisitionError(f"Browser session failed: {exc}") from exc
    return session, activity_id
