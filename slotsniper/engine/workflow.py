"""
Reservation workflow

Visits every claim link of a found slot, one per page load, and then reads
the booking side bar to decide whether the claim succeeded.
"""
import asyncio
import logging
import random
import re
from typing import Awaitable, Callable, Iterable, List, Optional

from ..browser.page import PageDriver, PageRow
from ..browser.urls import SEARCH_PAGE_TITLE, Selectors, WebPages
from ..common.config import AutomationConfig, SiteConfig
from ..common.errors import SlotSniperError
from ..common.events import EventLog
from ..common.models import ClaimResult, ClaimStatus
from ..common.notifications import AlertCenter
from ..common.scheduler import human_pause
from .classifier import MarkerExtractor, ResponseMarkers

logger = logging.getLogger(__name__)

BOOKED_SLOT_RE = re.compile(
    r"\b(Mon|Tue|Wed|Thu|Fri|Sat|Sun)\s+(\d{1,2})\s+"
    r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+(\d{4})\s+(\d{2}:\d{2})\b"
)
TEST_CENTER_RE = re.compile(r"([^(]+)\s*\(([^)]+)\)")
NO_INFORMATION = "No information found"
CONFIRMATION_TEXTS = ("minutes to complete your booking", "minute to complete your booking")
HEADER_ROW_CLASSES = {"first", "searchcriteria"}


class ClaimLinkQueue:
    """
    Claim links still to visit, plus the lock held by the active claim.

    Every change is reported to ``on_change`` so the owner can persist it.
    """

    def __init__(self, links: Optional[Iterable[str]] = None, locked: bool = False,
                 on_change: Optional[Callable[[], None]] = None):
        self._links: List[str] = list(links or [])
        self._locked = locked
        self.on_change = on_change

    @property
    def locked(self) -> bool:
        return self._locked

    def acquire(self) -> bool:
        if self._locked:
            return False
        self._locked = True
        self._changed()
        return True

    def release(self):
        self._locked = False
        self._links = []
        self._changed()

    def load(self, links: Iterable[str], locked: bool):
        """Restore persisted contents without reporting a change"""
        self._links = list(links)
        self._locked = locked

    def replace(self, links: Iterable[str]):
        self._links = list(links)
        self._changed()

    def pop(self) -> Optional[str]:
        if not self._links:
            return None
        link = self._links.pop(0)
        self._changed()
        return link

    def snapshot(self) -> List[str]:
        return list(self._links)

    def __len__(self) -> int:
        return len(self._links)

    def _changed(self):
        if self.on_change:
            self.on_change()


def _is_booked(row: PageRow) -> bool:
    return row.text != NO_INFORMATION and BOOKED_SLOT_RE.search(row.text) is not None


def count_reserved(rows: List[PageRow]) -> int:
    """Count side bar rows that hold a booked test date and time"""
    return sum(1 for row in rows if _is_booked(row))


def describe_slots(rows: List[PageRow]):
    """Return (test centre label, booked slot texts) from the side bar rows"""
    test_center = "Unknown"
    slots = []
    for row in rows:
        if HEADER_ROW_CLASSES.intersection(row.classes):
            match = TEST_CENTER_RE.search(row.text)
            if match:
                test_center = f"{match.group(1).strip()} ({match.group(2).strip()})"

        if row.text == NO_INFORMATION:
            continue
        match = BOOKED_SLOT_RE.search(row.text)
        if match:
            slots.append(" ".join(match.groups()))
    return test_center, slots


def assess_confirmation(
    rows: List[PageRow],
    claim_controls: int,
    reserved_cap: int = 10,
    minutes_remaining: Optional[str] = None,
    location_info: Optional[str] = None,
) -> ClaimResult:
    """
    Decide the claim state from a visible booking confirmation panel.

    - reserved >= cap                  -> success, even with controls left
    - no controls and reserved > 0     -> success
    - no controls and nothing reserved -> slot lost
    - controls left                    -> in progress
    """
    reserved = count_reserved(rows)

    if reserved >= reserved_cap or (claim_controls == 0 and reserved > 0):
        test_center, slots = describe_slots(rows)
        return ClaimResult(
            status=ClaimStatus.SUCCESS,
            reserved_count=reserved,
            minutes_remaining=minutes_remaining,
            test_center=test_center,
            slots=slots,
        )

    if claim_controls == 0:
        return ClaimResult(
            status=ClaimStatus.SLOT_LOST,
            location_info=location_info or "Unknown location",
        )

    return ClaimResult(status=ClaimStatus.IN_PROGRESS, reserved_count=reserved)


class ReservationWorkflow:
    """
    Claim state machine driven by page loads.

    begin() locks the queue and navigates to the first claim link; every later
    page load either visits the next queued link or inspects the result.
    Terminal results are handed to ``on_finished`` and unlock the queue; a
    claim that falls back to the search page unlocks and calls ``on_abandoned``.
    """

    def __init__(
        self,
        page: PageDriver,
        queue: ClaimLinkQueue,
        alerts: AlertCenter,
        site: Optional[SiteConfig] = None,
        automation: Optional[AutomationConfig] = None,
        extractor: Optional[MarkerExtractor] = None,
        markers: Optional[ResponseMarkers] = None,
        events: Optional[EventLog] = None,
        rng: Optional[random.Random] = None,
    ):
        self.page = page
        self.queue = queue
        self.alerts = alerts
        self.site = site or SiteConfig()
        self.automation = automation or AutomationConfig()
        self.extractor = extractor or MarkerExtractor()
        self.markers = markers or ResponseMarkers()
        self.events = events or EventLog()
        self.rng = rng
        self.on_finished: Optional[Callable[[ClaimResult], Awaitable[None]]] = None
        self.on_abandoned: Optional[Callable[[], Awaitable[None]]] = None
        self._starting = False

    @property
    def active(self) -> bool:
        return self.queue.locked

    def _absolute(self, link: str) -> str:
        return WebPages.absolute(link, self.site.base_url)

    async def begin(self, slot_link: str) -> bool:
        """Start claiming the slot behind ``slot_link``. False when nothing was started."""
        if not self.queue.acquire():
            logger.info("Claim already in progress, ignoring new slot")
            return False

        self._starting = True
        try:
            return await self._start_claim(slot_link)
        finally:
            self._starting = False

    async def _start_claim(self, slot_link: str) -> bool:
        try:
            body = await self.page.fetch_text(self._absolute(slot_link))
            links = self.extractor.all_links(body, self.markers.claim_action)
            reason = "No reserve links on slot page"
        except SlotSniperError as e:
            links = []
            reason = f"Slot page unavailable: {e}"

        if not links:
            self.events.record("warning", "Claim link missing", slot_link=slot_link, reason=reason)
            self.alerts.notify_claim_link_missing(slot_link, reason)
            self.queue.release()
            return False

        self.events.record("success", f"Found {len(links)} reserve links", slot_link=slot_link)
        self.alerts.notify_slot_found(len(links))

        ordered = [self._absolute(link) for link in reversed(links)]
        self.queue.replace(ordered[1:])
        self._starting = False
        try:
            await self.page.navigate(ordered[0])
        except SlotSniperError as e:
            logger.warning(f"Navigation to first reserve link interrupted: {e}")
        return True

    async def on_page_load(self) -> bool:
        """
        Advance the claim after a page load.

        Returns True while the claim owns the page (the caller should skip its
        own page handling).
        """
        if not self.active:
            return False
        # Loads of the previous page while begin() is still fetching
        if self._starting:
            return True

        link = self.queue.pop()
        if link:
            logger.info(f"Visiting next reserve link ({len(self.queue)} left)")
            await asyncio.sleep(self.automation.claim_step_delay_ms / 1000)
            await self.page.navigate(link)
            return True

        result = await self.inspect()
        if result is None:
            if await self._on_search_page():
                self.events.record("warning", "Claim ended without a booking panel, resuming search")
                self.queue.release()
                if self.on_abandoned:
                    await self.on_abandoned()
                return False
            return True

        if not result.is_terminal:
            logger.info(f"Reservation in progress ({result.reserved_count} reserved)")
            return True

        await self._finish(result)
        return True

    async def inspect(self) -> Optional[ClaimResult]:
        """Read the confirmation panel. None when no booking countdown is shown."""
        notice = await self.page.read_text(Selectors.CONFIRMATION_NOTICE)
        if not notice:
            return None
        normalized = " ".join(notice.split())
        if not any(text in normalized for text in CONFIRMATION_TEXTS):
            return None

        rows = await self.page.read_rows(Selectors.BOOKED_ROWS)
        controls = await self.page.count(Selectors.RESERVE_BUTTONS)
        minutes = await self.page.read_text(Selectors.MINUTES_REMAINING)
        location = await self.page.read_text(Selectors.LOCATION_HEADING)

        return assess_confirmation(
            rows,
            controls,
            reserved_cap=self.automation.reserved_cap,
            minutes_remaining=minutes or "unknown",
            location_info=location,
        )

    async def return_to_search(self) -> bool:
        await human_pause(
            self.automation.slot_lost_delay_min,
            self.automation.slot_lost_delay_max,
            self.rng,
        )
        clicked = await self.page.click(Selectors.RETURN_TO_SEARCH)
        if not clicked:
            logger.error("Could not find 'Return to search results' link")
        return clicked

    async def _on_search_page(self) -> bool:
        if await self.page.title() != SEARCH_PAGE_TITLE:
            return False
        return await self.page.count(Selectors.NEXT_AVAILABLE) > 0 or \
            await self.page.count(Selectors.PREVIOUS_AVAILABLE) > 0

    async def _finish(self, result: ClaimResult):
        self.queue.release()
        if result.status == ClaimStatus.SUCCESS:
            self.events.record(
                "success",
                f"Reserved {result.reserved_count} tests",
                test_center=result.test_center,
                slots=result.slots,
            )
        else:
            self.events.record("warning", "Slot lost", location_info=result.location_info)

        if self.on_finished:
            await self.on_finished(result)
