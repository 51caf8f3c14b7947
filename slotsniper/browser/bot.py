"""
SlotSniper browser runtime

Launches Chromium through Playwright, wires the controller, the claim
workflow and the page agent around one page, and runs until the session
stops.
"""
import logging
from pathlib import Path
from typing import Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Error as PlaywrightError,
)

from .agent import PageAgent
from .page import PlaywrightPage
from ..common.config import Config
from ..common.errors import ClickLimitReachedError, CooldownActiveError
from ..common.events import EventLog
from ..common.models import SessionConfig
from ..common.notifications import AlertCenter
from ..common.scheduler import SessionClock, format_countdown
from ..common.settings import (
    BackendSettingsProvider,
    SettingsProvider,
    StaticSettingsProvider,
    fetch_with_fallback,
)
from ..common.store import JsonFileStore
from ..engine.channel import AgentChannel
from ..engine.controller import RecoveryKind, RecoveryReport, SessionController
from ..engine.workflow import ReservationWorkflow

logger = logging.getLogger(__name__)


class SlotSniperBot:
    """
    Browser-hosted slot sniper.

    This approach:
    - Uses a real browser (Chromium via Playwright) logged in as the user
    - Reads watched search responses before the page renders them
    - Persists session state so a restarted process picks up where it left off
    """

    def __init__(self, config: Config, settings: Optional[SettingsProvider] = None):
        self.config = config
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.driver: Optional[PlaywrightPage] = None

        if settings is None:
            if config.backend.url:
                settings = BackendSettingsProvider(config.backend.url, timeout=config.backend.timeout)
            else:
                settings = StaticSettingsProvider(config.session)
        self.settings = settings

        self.events = EventLog(config.storage.max_log_entries)
        self.alerts = AlertCenter(config.notifications, config.backend)
        self.channel = AgentChannel(timeout=config.automation.command_timeout_seconds)
        self.controller = SessionController(
            store=JsonFileStore(config.storage.state_file),
            alerts=self.alerts,
            channel=self.channel,
            config=config.session,
            clock=SessionClock(config.timezone),
            automation=config.automation,
            events=self.events,
        )
        self.workflow: Optional[ReservationWorkflow] = None
        self.agent: Optional[PageAgent] = None

    async def start(self):
        """Start the browser and wire the page"""
        logger.info("Starting browser...")

        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=self.config.browser.headless,
            slow_mo=self.config.browser.slow_mo,
        )

        context_options = {
            "user_agent": self.config.browser.user_agent,
            "viewport": {"width": 1920, "height": 1080},
            "locale": "en-GB",
        }
        state_file = self.config.browser.storage_state_file
        if state_file and Path(state_file).exists():
            context_options["storage_state"] = state_file
            logger.info("Previous browser session restored")

        self.context = await self.browser.new_context(**context_options)
        self.page = await self.context.new_page()
        self.page.set_default_navigation_timeout(self.config.browser.navigation_timeout_ms)

        self.driver = PlaywrightPage(self.page, self.context)
        await self.driver.install_change_observer()

        self.workflow = ReservationWorkflow(
            self.driver,
            self.controller.claim_queue,
            self.alerts,
            site=self.config.site,
            automation=self.config.automation,
            events=self.events,
        )
        self.controller.bind_workflow(self.workflow)
        self.agent = PageAgent(self.driver, self.controller, self.workflow, self.config)
        self.agent.attach(self.channel)

        logger.info("Browser started")

    async def stop(self):
        """Stop the browser"""
        self.channel.detach()
        await self.save_browser_state()
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        await self.alerts.drain()
        logger.info("Browser stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    async def save_browser_state(self):
        state_file = self.config.browser.storage_state_file
        if not state_file or not self.context:
            return
        try:
            Path(state_file).parent.mkdir(parents=True, exist_ok=True)
            await self.context.storage_state(path=state_file)
            logger.debug(f"Browser state saved to {state_file}")
        except (OSError, PlaywrightError) as e:
            logger.error(f"Failed to save browser state: {e}")

    async def load_settings(self) -> SessionConfig:
        return await fetch_with_fallback(self.settings, self.config.session)

    async def run(self, auto_start: bool = True) -> Optional[RecoveryReport]:
        """
        Recover or start a session and block until it stops.

        Returns the recovery report, or None when the session could not start.
        """
        self.controller.apply_config(await self.load_settings())
        report = self.controller.restore()
        logger.info(f"Recovered session state: {report.kind.value}")

        await self.driver.navigate(self.config.site.home_url)

        if report.kind == RecoveryKind.COOLDOWN:
            logger.warning(f"Cooldown active - {format_countdown(int(report.cooldown_remaining.total_seconds()))} left")
            return None

        if report.kind == RecoveryKind.IDLE:
            if not auto_start:
                return report
            try:
                self.controller.start()
            except (CooldownActiveError, ClickLimitReachedError) as e:
                logger.warning(f"Session not started: {e}")
                return None

        await self.controller.wait_idle()
        await self.agent.drain()
        logger.info("Session finished")
        return report
