"""
Page automation agent

Lives next to the page: executes controller commands, watches network
responses and page loads, and keeps the site session healthy (dialogs,
housekeeping, login and timeout pages).
"""
import asyncio
import logging
import random
import re
from datetime import date
from typing import Coroutine, Dict, Optional, Set, Tuple

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from ..common.config import Config
from ..common.errors import PageNavigatedError
from ..common.models import Classification, ClickControl, DateWindow, Outcome
from ..common.scheduler import human_pause
from ..engine.channel import ActionReply, ActionStatus, AgentChannel, AgentCommand
from ..engine.classifier import ResponseClassifier
from ..engine.controller import SessionController
from ..engine.workflow import ReservationWorkflow
from .page import PageDriver
from .urls import Selectors, WebPages

logger = logging.getLogger(__name__)

PERIOD_RE = re.compile(
    r"(\d+)(?:st|nd|rd|th)?\s+(\w+)\s+(\d{4})\s*[–—-]\s*(\d+)(?:st|nd|rd|th)?\s+(\w+)\s+(\d{4})"
)

CONTROL_SELECTORS = {
    ClickControl.NEXT_AVAILABLE: Selectors.NEXT_AVAILABLE,
    ClickControl.PREVIOUS_AVAILABLE: Selectors.PREVIOUS_AVAILABLE,
}

# Placeholder options of the test centre group select
UNSET_OPTION_VALUES = {"", "null", "-1", "0"}


def parse_period(text: Optional[str]) -> Optional[DateWindow]:
    """Parse '23rd March 2026 – 29th March 2026' (en/em dash or hyphen)"""
    if not text:
        return None
    match = PERIOD_RE.search(text)
    if not match:
        return None

    start_day, start_month, start_year, end_day, end_month, end_year = match.groups()
    try:
        start = date_parser.parse(f"{start_day} {start_month} {start_year}").date()
        end = date_parser.parse(f"{end_day} {end_month} {end_year}").date()
    except (ValueError, OverflowError):
        return None
    return DateWindow(start=start, end=end, text=text.strip())


def target_period(today: date, deadline: Optional[date] = None) -> DateWindow:
    """today .. deadline, or three months ahead without a deadline"""
    return DateWindow(start=today, end=deadline or today + relativedelta(months=3))


def choose_control(current: DateWindow, target: DateWindow) -> ClickControl:
    # Outside the wanted range: walk back towards it
    if not current.overlaps(target):
        return ClickControl.PREVIOUS_AVAILABLE
    return ClickControl.NEXT_AVAILABLE


class PageAgent:
    """
    Executes commands against the page and reports what it sees.

    Housekeeping runs every 30-45 clicks (configurable) and briefly pauses
    the controller while the search criteria dialog is opened and closed.
    """

    def __init__(
        self,
        page: PageDriver,
        controller: SessionController,
        workflow: ReservationWorkflow,
        config: Config,
        classifier: Optional[ResponseClassifier] = None,
        rng: Optional[random.Random] = None,
    ):
        self.page = page
        self.controller = controller
        self.workflow = workflow
        self.config = config
        self.automation = config.automation
        self.classifier = classifier or ResponseClassifier(today=controller.clock.today)
        self.rng = rng or random.Random()
        self.events = controller.events

        self.action_count = 0
        self.threshold = self.new_threshold()

        self._warning_clicked = False
        self._closing_dialog = False
        self._last_dialog_check: Optional[float] = None
        self._captcha_seen: Dict[Tuple[Optional[str], str], float] = {}
        self._tasks: Set[asyncio.Task] = set()

    def new_threshold(self) -> int:
        return self.rng.randint(self.automation.housekeeping_min_actions, self.automation.housekeeping_max_actions)

    def attach(self, channel: AgentChannel):
        """Hook into the page and start accepting controller commands"""
        self.page.set_response_hook(self.on_response, self.config.site.watched_requests)
        self.page.set_load_hook(self.on_page_load)
        self.page.set_change_hook(self.on_dom_change)
        channel.attach(self.handle_command)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if isinstance(error, PageNavigatedError):
            logger.debug(f"Page changed under background task: {error}")
        elif error is not None:
            logger.error(f"Agent task failed: {error}")

    async def drain(self):
        """Wait for background work (used on shutdown and in tests)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========================================
    # Commands
    # ========================================

    async def handle_command(self, command: AgentCommand) -> ActionReply:
        if command == AgentCommand.PERFORM_ACTION:
            return await self.perform_action()
        raise ValueError(f"Unknown command: {command}")

    async def current_period(self) -> Optional[DateWindow]:
        return parse_period(await self.page.read_text(Selectors.DATE_RANGE))

    async def perform_action(self) -> ActionReply:
        current = await self.current_period()
        if current is None:
            logger.warning("No date range on page, cannot choose a control")
            return ActionReply(status=ActionStatus.PERIOD_UNKNOWN)

        deadline = self.controller.config.deadline_date if self.controller.config else None
        control = choose_control(current, target_period(self.controller.clock.today(), deadline))
        selector = CONTROL_SELECTORS[control]
        if await self.page.count(selector) == 0:
            logger.warning(f"{control.value} control not found")
            return ActionReply(status=ActionStatus.CONTROL_MISSING, control=control)

        self.action_count += 1
        if self.action_count >= self.threshold:
            self.events.record(
                "info", f"Reached {self.threshold} clicks - refreshing search criteria",
                click_count=self.threshold,
            )
            self.action_count = 0
            self.threshold = self.new_threshold()
            self.controller.pause()
            self._spawn(self.housekeeping())
            return ActionReply(status=ActionStatus.HOUSEKEEPING)

        await self.page.click(selector)
        return ActionReply(status=ActionStatus.CLICKED, control=control)

    # ========================================
    # Housekeeping and dialogs
    # ========================================

    async def housekeeping(self):
        """Open and close the search criteria dialog, then resume polling"""
        try:
            if not await self.page.click(Selectors.REFINE_SEARCH):
                logger.warning("Change search criteria button not found")
                return
            await self.wait_for_dialog()
            await human_pause(self.automation.housekeeping_wait_min, self.automation.housekeeping_wait_max, self.rng)
            await self.close_dialog()
        except PageNavigatedError as e:
            logger.debug(f"Page changed during housekeeping: {e}")
        finally:
            self.controller.resume()

    async def wait_for_dialog(self) -> Optional[str]:
        """Poll for an open dialog; after the timeout try the fallback close buttons"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.automation.dialog_timeout

        while loop.time() < deadline:
            if await self.page.count(Selectors.DIALOG) > 0 and await self.page.count(Selectors.DIALOG_CLOSE) > 0:
                return Selectors.DIALOG_CLOSE
            await asyncio.sleep(self.automation.dialog_poll_interval)

        logger.warning("Dialog did not open in time, looking for any close button")
        for selector in Selectors.DIALOG_CLOSE_FALLBACKS:
            if await self.page.count(selector) > 0:
                return selector
        return None

    async def close_dialog(self) -> bool:
        self._closing_dialog = True
        try:
            for selector in (Selectors.DIALOG_CLOSE,) + Selectors.DIALOG_CLOSE_FALLBACKS:
                if await self.page.click(selector):
                    return True
            logger.warning("Dialog close button not found")
            return False
        finally:
            self._closing_dialog = False

    def on_dom_change(self):
        now = asyncio.get_running_loop().time()
        if self._last_dialog_check is not None and now - self._last_dialog_check < self.automation.dialog_check_throttle:
            return
        self._last_dialog_check = now
        self._spawn(self.check_warning_dialog())

    async def check_warning_dialog(self) -> bool:
        """Dismiss the navigation warning dialog. True when it was clicked."""
        if self._closing_dialog:
            return False

        present = await self.page.count(Selectors.BACK_WARNING_DIALOG) > 0
        if self._warning_clicked:
            # Wait for the dialog to go away before clicking again
            if not present:
                self._warning_clicked = False
            return False

        if not present or not await self.page.is_visible(Selectors.BACK_WARNING_DIALOG):
            return False
        if await self.page.count(Selectors.BACK_WARNING_CLOSE) == 0:
            return False

        self._warning_clicked = True
        await self.page.click(Selectors.BACK_WARNING_CLOSE)
        self.events.record("info", "Navigation warning dialog dismissed")
        return True

    # ========================================
    # Network and page events
    # ========================================

    def on_response(self, url: str, status: int, body: str) -> Classification:
        """Classify a watched response right away and route it to the controller"""
        deadline = self.controller.config.deadline_date if self.controller.config else None
        classification = self.classifier.classify(body, deadline)
        if classification.outcome != Outcome.NO_SLOT:
            logger.info(f"Response classified as {classification.outcome.value}")
            self._spawn(self.controller.handle_classification(classification, url))
        return classification

    async def on_page_load(self):
        url = self.page.url

        if WebPages.is_timeout(url) or await self.has_system_error():
            self.events.record("warning", "Session timeout or system error, returning home", url=url)
            await self.page.navigate(self.config.site.home_url)
            return

        await self.check_page_captcha()

        if await self.workflow.on_page_load():
            return

        if WebPages.is_login(url):
            await self.handle_login()
            return

        if WebPages.is_already_signed_in(url):
            await self.handle_already_signed_in()
            return

        if WebPages.BOOKING_HOME_FRAGMENT in url and await self.fill_search_form():
            return

        await self.check_warning_dialog()

    async def has_system_error(self) -> bool:
        for text in await self.page.read_all_text(Selectors.ERROR_BLOCK):
            if Selectors.SYSTEM_ERROR_TEXTS[0] in text:
                return True
        paragraph = await self.page.read_text(Selectors.PARAGRAPH)
        return bool(paragraph and Selectors.SYSTEM_ERROR_TEXTS[1] in paragraph)

    async def check_page_captcha(self) -> bool:
        if await self.page.count(Selectors.HCAPTCHA) == 0:
            return False

        sitekey = await self.page.attribute(Selectors.HCAPTCHA_SITEKEY, "data-sitekey")
        url = self.page.url
        now = asyncio.get_running_loop().time()
        key = (sitekey, url)
        last = self._captcha_seen.get(key)
        if last is not None and now - last < self.automation.captcha_alert_dedupe_seconds:
            return False

        self._captcha_seen[key] = now
        self.controller.handle_page_captcha(sitekey, url, on_claim_page=WebPages.is_claim_step(url))
        return True

    async def handle_login(self) -> bool:
        heading = await self.page.read_text(Selectors.SESSION_EXPIRED_HEADING)
        if heading and Selectors.SESSION_EXPIRED_TEXT in heading:
            await self.page.navigate(self.config.site.home_url)
            return False

        credentials = self.config.credentials
        if not credentials.is_complete:
            url = self.page.url
            self.events.record("error", "Login credentials missing - automation refused", url=url)
            self.controller.alerts.notify_credentials_missing(url)
            self.controller.stop()
            return False

        logger.info(f"Logging in as {credentials.username}...")
        await self.page.fill(Selectors.USERNAME, credentials.username)
        await self.page.fill(Selectors.PASSWORD, credentials.password)
        return await self.page.click(Selectors.LOGIN_SUBMIT)

    async def handle_already_signed_in(self) -> bool:
        if not await self.page.click(Selectors.STAY_SIGNED_IN):
            return False
        return await self.page.click(Selectors.LOGIN_SUBMIT)

    async def fill_search_form(self) -> bool:
        """
        Complete the booking home form and press "Book test".

        Fields already chosen (test centre group, special needs answer) are
        kept. Returns False when the page shows no search form.
        """
        if await self.page.count(Selectors.TEST_CATEGORY) == 0:
            return False

        form = self.config.site.search_form
        group = await self.page.input_value(Selectors.TEST_CENTRE_GROUPS)
        group_chosen = bool(group) and group not in UNSET_OPTION_VALUES
        needs_chosen = await self.page.is_checked(Selectors.NO_SPECIAL_NEEDS) or \
            await self.page.is_checked(Selectors.SPECIAL_NEEDS)

        if not (group_chosen and needs_chosen):
            if not await self.page.select_option(Selectors.TEST_CATEGORY, form.test_category):
                logger.error(f"Test category {form.test_category} not offered")
            if not group_chosen:
                await self.select_test_centre_group()
            if not needs_chosen and not await self.page.check(Selectors.NO_SPECIAL_NEEDS):
                logger.error("Special needs 'No' option not found")

        if not await self.page.click(Selectors.BOOK_TEST):
            logger.error("Book test button not found")
            return False
        self.events.record("info", "Search form submitted", test_category=form.test_category)
        return True

    async def select_test_centre_group(self) -> Optional[str]:
        wanted = self.config.site.search_form.test_centre_group
        if wanted is None:
            values = await self.page.option_values(Selectors.TEST_CENTRE_GROUPS)
            wanted = next((v for v in values if v.strip() not in UNSET_OPTION_VALUES), None)

        if wanted is None or not await self.page.select_option(Selectors.TEST_CENTRE_GROUPS, wanted):
            logger.error(f"Test centre group {wanted} not available")
            return None
        logger.info(f"Test centre group {wanted} selected")
        return wanted
