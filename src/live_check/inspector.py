"""Single-page presence check in a throwaway browser.

Every call launches its own Chromium, opens a fresh context, renders the
target and tears everything down again in ``finally`` blocks. The render
runs on the event loop through the async patchright API, so a hard timeout
cancels it and the browser is closed before ``inspect`` returns.
"""

from __future__ import annotations

import asyncio
import logging

from scrapling.parser import Adaptor

from .config import (
    HEADLESS,
    LAUNCH_BUDGET_SECONDS,
    MARKER_WAIT_SECONDS,
    NAVIGATION_TIMEOUT_SECONDS,
    NOT_FOUND_TEXTS,
    PRESENCE_MARKER,
    SETTLE_DELAY_SECONDS,
)
from .models import Outcome, Target, Verdict

logger = logging.getLogger(__name__)

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--no-default-browser-check",
]
_CONSENT_SELECTORS = [
    'button:has-text("Accept all")',
    'button:has-text("Reject all")',
    'button:has-text("I agree")',
    'button:has-text("Got it")',
    'button[jsname="higCR"]',
    'form[action*="consent"] button',
]


def _css_first(el: object, selector: str) -> object | None:
    """Safe css_first that works on both Adaptor and Selector objects."""
    if hasattr(el, "css_first"):
        return el.css_first(selector)
    results = el.css(selector)
    return results[0] if results else None


def _full_text(el: object) -> str:
    """Visible text of ``el``; script and style contents are skipped."""
    if hasattr(el, "get_all_text"):
        return str(el.get_all_text(separator=" ") or "")
    if hasattr(el, "text"):
        return str(el.text or "")
    return ""


def evaluate_presence(html: str, *, marker: str = PRESENCE_MARKER, url: str = "") -> tuple[Outcome, str | None]:
    """Apply the presence predicate to rendered HTML.

    Returns (outcome, evidence) where evidence is the marker's
    ``data-review-id`` when present.
    """
    if not html:
        return Outcome.absent, None

    page = Adaptor(html, url=url or None)
    body = _css_first(page, "body")
    body_text = _full_text(page if body is None else body)
    if any(text in body_text for text in NOT_FOUND_TEXTS):
        logger.debug("Not-found indicator on %s", url)
        return Outcome.absent, None

    el = _css_first(page, marker)
    if el is None:
        return Outcome.absent, None
    evidence = None
    attrib = getattr(el, "attrib", None)
    if attrib is not None:
        evidence = attrib.get("data-review-id") or None
    return Outcome.confirmed, evidence


class Inspector:
    """Runs one verification per call; never raises."""

    def __init__(
        self,
        *,
        navigation_timeout: float = NAVIGATION_TIMEOUT_SECONDS,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        marker_wait: float = MARKER_WAIT_SECONDS,
        marker: str = PRESENCE_MARKER,
        headless: bool = HEADLESS,
        hard_timeout: float | None = None,
    ) -> None:
        self.navigation_timeout = navigation_timeout
        self.settle_delay = settle_delay
        self.marker_wait = marker_wait
        self.marker = marker
        self.headless = headless
        if hard_timeout is None:
            hard_timeout = navigation_timeout + settle_delay + marker_wait + LAUNCH_BUDGET_SECONDS
        self.hard_timeout = hard_timeout

    async def inspect(self, target: Target) -> Verdict:
        rid = target.resource_id
        if not target.url:
            return Verdict.failed(rid, "No link provided")

        logger.debug("Inspecting %s at %s (hint: %s)", rid, target.url, (target.hint or "")[:60])
        # wait_for cancels the render and waits for its teardown before raising.
        try:
            html = await asyncio.wait_for(self._render(target.url), timeout=self.hard_timeout)
        except asyncio.TimeoutError:
            logger.warning("Inspection of %s exceeded %.0fs", rid, self.hard_timeout)
            return Verdict.failed(rid, f"Timed out after {self.hard_timeout:.0f}s")
        except Exception as e:
            logger.warning("Inspection of %s failed: %s", rid, e)
            return Verdict.failed(rid, str(e) or type(e).__name__)

        try:
            outcome, evidence = evaluate_presence(html, marker=self.marker, url=target.url)
        except Exception as e:
            logger.exception("Presence check crashed for %s", rid)
            return Verdict.failed(rid, str(e) or type(e).__name__)

        logger.info("Inspected %s: %s", rid, outcome.value)
        return Verdict(resource_id=rid, outcome=outcome, evidence=evidence)

    async def _render(self, url: str) -> str:
        """Open ``url`` in an isolated context and return the rendered HTML."""
        from patchright.async_api import async_playwright

        async with async_playwright() as pw:
            browser = await pw.chromium.launch(
                headless=self.headless,
                args=_BROWSER_ARGS,
                timeout=LAUNCH_BUDGET_SECONDS * 1000,
            )
            try:
                context = await browser.new_context(
                    viewport={"width": 1280, "height": 720},
                    user_agent=_USER_AGENT,
                    locale="en-US",
                    extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
                )
                try:
                    page = await context.new_page()
                    await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
                    await page.wait_for_timeout(self.settle_delay * 1000)
                    await self._dismiss_consent(page)
                    await self._wait_for_marker(page)
                    return await page.content()
                finally:
                    await context.close()
            finally:
                await browser.close()

    async def _dismiss_consent(self, page: object) -> None:
        """Click through a cookie consent wall if one is showing."""
        for sel in _CONSENT_SELECTORS:
            try:
                button = page.locator(sel).first
                if await button.is_visible():
                    logger.debug("Dismissing consent via %s", sel)
                    await button.click(timeout=2000)
                    await page.wait_for_timeout(1500)
                    return
            except Exception:
                continue

    async def _wait_for_marker(self, page: object) -> None:
        if self.marker_wait <= 0:
            return
        try:
            await page.wait_for_selector(self.marker, state="attached", timeout=self.marker_wait * 1000)
        except Exception:
            logger.debug("Marker did not attach within %.0fs", self.marker_wait)
