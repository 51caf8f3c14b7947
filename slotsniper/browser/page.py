"""
Page collaborator

PageDriver is everything the agent and the claim workflow need from a
browser page. PlaywrightPage implements it on top of one Playwright page.
"""
import logging
from abc import ABC, abstractmethod
from functools import wraps
from typing import Awaitable, Callable, List, Optional, Sequence

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, Response
from pydantic import BaseModel, Field

from ..common.errors import PageNavigatedError

logger = logging.getLogger(__name__)

ResponseHook = Callable[[str, int, str], None]
LoadHook = Callable[[], Awaitable[None]]
ChangeHook = Callable[[], None]

CHANGE_BINDING = "__slotsniperDomChanged"

_CHANGE_OBSERVER_SCRIPT = """
(() => {
    const start = () => {
        const observer = new MutationObserver(() => {
            if (window.%(binding)s) { window.%(binding)s(); }
        });
        observer.observe(document.documentElement, { childList: true, subtree: true });
    };
    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', start);
    } else {
        start();
    }
})();
""" % {"binding": CHANGE_BINDING}


class PageRow(BaseModel):
    """Text and CSS classes of one table row"""
    text: str
    classes: List[str] = Field(default_factory=list)


class PageDriver(ABC):
    """Read, click and navigate one page; deliver network and load events"""

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    async def title(self) -> str:
        pass

    @abstractmethod
    async def read_text(self, selector: str) -> Optional[str]:
        """Text of the first match, None when nothing matches"""
        pass

    @abstractmethod
    async def read_all_text(self, selector: str) -> List[str]:
        pass

    @abstractmethod
    async def read_rows(self, selector: str) -> List[PageRow]:
        pass

    @abstractmethod
    async def count(self, selector: str) -> int:
        pass

    @abstractmethod
    async def is_visible(self, selector: str) -> bool:
        pass

    @abstractmethod
    async def attribute(self, selector: str, name: str) -> Optional[str]:
        pass

    @abstractmethod
    async def click(self, selector: str) -> bool:
        """Click the first match, False when nothing matches"""
        pass

    @abstractmethod
    async def fill(self, selector: str, value: str) -> bool:
        pass

    @abstractmethod
    async def input_value(self, selector: str) -> Optional[str]:
        """Current value of a form field, None when nothing matches"""
        pass

    @abstractmethod
    async def option_values(self, selector: str) -> List[str]:
        pass

    @abstractmethod
    async def select_option(self, selector: str, value: str) -> bool:
        """Choose an option of a select, False when the select or option is missing"""
        pass

    @abstractmethod
    async def is_checked(self, selector: str) -> bool:
        pass

    @abstractmethod
    async def check(self, selector: str) -> bool:
        pass

    @abstractmethod
    async def navigate(self, url: str):
        pass

    @abstractmethod
    async def fetch_text(self, url: str) -> str:
        """GET a URL with the page's cookies without navigating"""
        pass

    @abstractmethod
    def set_response_hook(self, hook: ResponseHook, url_filter: Sequence[str]):
        pass

    @abstractmethod
    def set_load_hook(self, hook: LoadHook):
        pass

    @abstractmethod
    def set_change_hook(self, hook: ChangeHook):
        pass


def _page_call(func):
    """Translate Playwright failures into PageNavigatedError"""
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except PlaywrightError as e:
            raise PageNavigatedError(f"{func.__name__} failed: {e}") from e
    return wrapper


class PlaywrightPage(PageDriver):
    """PageDriver backed by a Playwright page and its browser context"""

    def __init__(self, page: Page, context: BrowserContext):
        self.page = page
        self.context = context
        self._response_hook: Optional[ResponseHook] = None
        self._url_filter: Sequence[str] = ()
        self._load_hook: Optional[LoadHook] = None
        self._change_hook: Optional[ChangeHook] = None
        self._observer_installed = False

        self.page.on("response", self._on_response)
        self.page.on("load", self._on_load)

    @property
    def url(self) -> str:
        return self.page.url

    @_page_call
    async def title(self) -> str:
        return await self.page.title()

    @_page_call
    async def read_text(self, selector: str) -> Optional[str]:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return None
        return (await locator.inner_text()).strip()

    @_page_call
    async def read_all_text(self, selector: str) -> List[str]:
        return [t.strip() for t in await self.page.locator(selector).all_inner_texts()]

    @_page_call
    async def read_rows(self, selector: str) -> List[PageRow]:
        rows = await self.page.locator(selector).evaluate_all(
            "els => els.map(e => ({text: e.textContent.trim(), classes: Array.from(e.classList)}))"
        )
        return [PageRow(**row) for row in rows]

    @_page_call
    async def count(self, selector: str) -> int:
        return await self.page.locator(selector).count()

    @_page_call
    async def is_visible(self, selector: str) -> bool:
        return await self.page.locator(selector).first.is_visible()

    @_page_call
    async def attribute(self, selector: str, name: str) -> Optional[str]:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return None
        return await locator.get_attribute(name)

    @_page_call
    async def click(self, selector: str) -> bool:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return False
        await locator.click()
        return True

    @_page_call
    async def fill(self, selector: str, value: str) -> bool:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return False
        await locator.fill(value)
        return True

    @_page_call
    async def input_value(self, selector: str) -> Optional[str]:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return None
        return await locator.input_value()

    @_page_call
    async def option_values(self, selector: str) -> List[str]:
        return await self.page.locator(f"{selector} option").evaluate_all("els => els.map(e => e.value)")

    @_page_call
    async def select_option(self, selector: str, value: str) -> bool:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return False
        if value not in await self.option_values(selector):
            return False
        await locator.select_option(value)
        return True

    @_page_call
    async def is_checked(self, selector: str) -> bool:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return False
        return await locator.is_checked()

    @_page_call
    async def check(self, selector: str) -> bool:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return False
        await locator.check()
        return True

    @_page_call
    async def navigate(self, url: str):
        logger.debug(f"Navigating to {url}")
        await self.page.goto(url, wait_until="domcontentloaded")

    @_page_call
    async def fetch_text(self, url: str) -> str:
        response = await self.context.request.get(url)
        if not response.ok:
            raise PageNavigatedError(f"GET {url} returned {response.status}")
        return await response.text()

    def set_response_hook(self, hook: ResponseHook, url_filter: Sequence[str]):
        self._response_hook = hook
        self._url_filter = tuple(url_filter)

    def set_load_hook(self, hook: LoadHook):
        self._load_hook = hook

    def set_change_hook(self, hook: ChangeHook):
        self._change_hook = hook

    async def install_change_observer(self):
        """Report DOM mutations to the change hook on every document"""
        if self._observer_installed:
            return
        await self.page.expose_function(CHANGE_BINDING, self._on_change)
        await self.page.add_init_script(_CHANGE_OBSERVER_SCRIPT)
        self._observer_installed = True

    async def _on_response(self, response: Response):
        if self._response_hook is None or response.status != 200:
            return
        if not any(fragment in response.url for fragment in self._url_filter):
            return

        try:
            body = await response.text()
        except PlaywrightError as e:
            logger.debug(f"Response body unavailable for {response.url}: {e}")
            return

        self._response_hook(response.url, response.status, body)

    async def _on_load(self, _page):
        if self._load_hook is None:
            return
        try:
            await self._load_hook()
        except PageNavigatedError as e:
            logger.debug(f"Page changed during load handling: {e}")
        except Exception as e:
            logger.error(f"Load handler error: {e}")

    def _on_change(self):
        if self._change_hook is not None:
            self._change_hook()
