from datetime import datetime, timedelta
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from slotsniper.browser.page import PageDriver, PageRow
from slotsniper.common.config import (
    AutomationConfig,
    Config,
    CredentialsConfig,
    NotificationsConfig,
    StorageConfig,
)
from slotsniper.common.events import EventLog
from slotsniper.common.models import SessionConfig
from slotsniper.common.notifications import AlertCenter
from slotsniper.common.store import MemoryStore
from slotsniper.engine.channel import AgentChannel
from slotsniper.engine.controller import SessionController


class FakeClock:
    """Settable clock (naive datetimes)"""

    def __init__(self, now: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def today(self):
        return self.current.date()

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FakePage(PageDriver):
    """In-memory page: selectors map to canned text, rows, counts and attributes"""

    def __init__(self, url: str = "https://driver-services.dvsa.gov.uk/obs-web/pages/home"):
        self.current_url = url
        self.page_title = ""
        self.texts: Dict[str, str] = {}
        self.all_texts: Dict[str, List[str]] = {}
        self.rows: Dict[str, List[PageRow]] = {}
        self.counts: Dict[str, int] = {}
        self.visible: Dict[str, bool] = {}
        self.attributes: Dict[tuple, str] = {}
        self.fetch_bodies: Dict[str, object] = {}
        self.clicks: List[str] = []
        self.navigations: List[str] = []
        self.fills: Dict[str, str] = {}
        self.values: Dict[str, str] = {}
        self.options: Dict[str, List[str]] = {}
        self.checked: Dict[str, bool] = {}
        self.response_hook = None
        self.url_filter = ()
        self.load_hook = None
        self.change_hook = None

    @property
    def url(self) -> str:
        return self.current_url

    async def title(self) -> str:
        return self.page_title

    async def read_text(self, selector: str) -> Optional[str]:
        return self.texts.get(selector)

    async def read_all_text(self, selector: str) -> List[str]:
        return self.all_texts.get(selector, [])

    async def read_rows(self, selector: str) -> List[PageRow]:
        return self.rows.get(selector, [])

    async def count(self, selector: str) -> int:
        return self.counts.get(selector, 0)

    async def is_visible(self, selector: str) -> bool:
        return self.visible.get(selector, self.counts.get(selector, 0) > 0)

    async def attribute(self, selector: str, name: str) -> Optional[str]:
        return self.attributes.get((selector, name))

    async def click(self, selector: str) -> bool:
        if self.counts.get(selector, 0) == 0:
            return False
        self.clicks.append(selector)
        return True

    async def fill(self, selector: str, value: str) -> bool:
        self.fills[selector] = value
        return True

    async def input_value(self, selector: str) -> Optional[str]:
        return self.values.get(selector)

    async def option_values(self, selector: str) -> List[str]:
        return self.options.get(selector, [])

    async def select_option(self, selector: str, value: str) -> bool:
        if value not in self.options.get(selector, []):
            return False
        self.values[selector] = value
        return True

    async def is_checked(self, selector: str) -> bool:
        return self.checked.get(selector, False)

    async def check(self, selector: str) -> bool:
        if self.counts.get(selector, 0) == 0:
            return False
        self.checked[selector] = True
        return True

    async def navigate(self, url: str):
        self.navigations.append(url)
        self.current_url = url

    async def fetch_text(self, url: str) -> str:
        body = self.fetch_bodies.get(url, "")
        if isinstance(body, Exception):
            raise body
        return body

    def set_response_hook(self, hook, url_filter):
        self.response_hook = hook
        self.url_filter = tuple(url_filter)

    def set_load_hook(self, hook):
        self.load_hook = hook

    def set_change_hook(self, hook):
        self.change_hook = hook


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def session_config():
    return SessionConfig(
        jitter_min=0.8,
        jitter_max=1.5,
        max_clicks_per_day=100,
        max_running_minutes=20,
        cooldown_minutes=45,
    )


@pytest.fixture()
def automation():
    return AutomationConfig(
        soft_retry_delay_seconds=0.01,
        claim_step_delay_ms=0,
        slot_lost_delay_min=0,
        slot_lost_delay_max=0,
        housekeeping_wait_min=0,
        housekeeping_wait_max=0,
        dialog_poll_interval=0.01,
        dialog_timeout=0.05,
    )


@pytest.fixture()
def config(session_config, automation):
    return Config(
        credentials=CredentialsConfig(username="driver", password="secret"),
        session=session_config,
        notifications=NotificationsConfig(console=False, backend=False),
        automation=automation,
        storage=StorageConfig(state_file="unused.json"),
    )


@pytest.fixture()
def alerts():
    return MagicMock(spec=AlertCenter)


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def page():
    return FakePage()


@pytest.fixture()
def controller(store, alerts, session_config, clock, automation):
    return SessionController(
        store=store,
        alerts=alerts,
        channel=AgentChannel(timeout=1.0),
        config=session_config,
        clock=clock,
        automation=automation,
        events=EventLog(),
    )
