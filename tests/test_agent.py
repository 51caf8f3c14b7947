"""
Tests for the page agent (slotsniper/browser/agent.py)
"""
import random
from datetime import date

import pytest

from slotsniper.browser.agent import PageAgent, choose_control, parse_period, target_period
from slotsniper.browser.urls import Selectors
from slotsniper.common.config import CredentialsConfig
from slotsniper.common.models import ClickControl, DateWindow, Outcome, SessionStatus
from slotsniper.engine.channel import ActionStatus, AgentCommand
from slotsniper.engine.workflow import ReservationWorkflow

BASE = "https://driver-services.dvsa.gov.uk"
IN_RANGE = "23rd March 2026 – 29th March 2026"


def make_agent(page, controller, config, alerts):
    workflow = ReservationWorkflow(
        page, controller.claim_queue, alerts, site=config.site, automation=config.automation
    )
    controller.bind_workflow(workflow)
    return PageAgent(page, controller, workflow, config, rng=random.Random(7))


@pytest.fixture()
def agent(page, controller, config, alerts):
    return make_agent(page, controller, config, alerts)


class TestPeriods:
    def test_parse_ordinal_period(self):
        window = parse_period(IN_RANGE)
        assert window.start == date(2026, 3, 23)
        assert window.end == date(2026, 3, 29)

    def test_parse_hyphen_period(self):
        window = parse_period("1 Apr 2026 - 7 Apr 2026")
        assert window.start == date(2026, 4, 1)
        assert window.end == date(2026, 4, 7)

    def test_parse_missing(self):
        assert parse_period(None) is None
        assert parse_period("Tests available soon") is None

    def test_parse_impossible_date(self):
        assert parse_period("31st February 2026 – 6th March 2026") is None

    def test_target_default_three_months(self):
        window = target_period(date(2026, 3, 2))
        assert window.end == date(2026, 6, 2)

    def test_target_deadline(self):
        window = target_period(date(2026, 3, 2), date(2026, 4, 1))
        assert window.end == date(2026, 4, 1)

    def test_overlapping_week_goes_forward(self):
        target = target_period(date(2026, 3, 2))
        current = DateWindow(start=date(2026, 3, 23), end=date(2026, 3, 29))
        assert choose_control(current, target) == ClickControl.NEXT_AVAILABLE

    def test_week_beyond_target_goes_back(self):
        target = target_period(date(2026, 3, 2), date(2026, 4, 1))
        current = DateWindow(start=date(2026, 4, 6), end=date(2026, 4, 12))
        assert choose_control(current, target) == ClickControl.PREVIOUS_AVAILABLE


class TestPerformAction:
    @pytest.mark.asyncio
    async def test_period_unknown(self, agent, page):
        reply = await agent.perform_action()
        assert reply.status == ActionStatus.PERIOD_UNKNOWN
        assert page.clicks == []

    @pytest.mark.asyncio
    async def test_clicks_next_available(self, agent, page):
        page.texts[Selectors.DATE_RANGE] = IN_RANGE
        page.counts[Selectors.NEXT_AVAILABLE] = 1

        reply = await agent.perform_action()

        assert reply.status == ActionStatus.CLICKED
        assert reply.control == ClickControl.NEXT_AVAILABLE
        assert page.clicks == [Selectors.NEXT_AVAILABLE]
        assert agent.action_count == 1

    @pytest.mark.asyncio
    async def test_control_missing(self, agent, page):
        page.texts[Selectors.DATE_RANGE] = "6th July 2026 – 12th July 2026"

        reply = await agent.perform_action()

        assert reply.status == ActionStatus.CONTROL_MISSING
        assert reply.control == ClickControl.PREVIOUS_AVAILABLE
        assert not reply.clicked

    @pytest.mark.asyncio
    async def test_command_over_channel(self, agent, controller, page):
        agent.attach(controller.channel)
        page.texts[Selectors.DATE_RANGE] = IN_RANGE
        page.counts[Selectors.NEXT_AVAILABLE] = 1

        reply = await controller.channel.request(AgentCommand.PERFORM_ACTION)

        assert reply.clicked
        assert page.response_hook == agent.on_response
        assert page.url_filter == tuple(agent.config.site.watched_requests)

    def test_threshold_within_window(self, agent):
        for _ in range(50):
            assert 30 <= agent.new_threshold() <= 45

    @pytest.mark.asyncio
    async def test_housekeeping_pauses_then_resumes(self, agent, controller, page):
        controller.start()
        agent.threshold = 1
        page.texts[Selectors.DATE_RANGE] = IN_RANGE
        for selector in (Selectors.NEXT_AVAILABLE, Selectors.REFINE_SEARCH, Selectors.DIALOG,
                         Selectors.DIALOG_CLOSE):
            page.counts[selector] = 1

        reply = await agent.perform_action()

        assert reply.status == ActionStatus.HOUSEKEEPING
        assert controller.status == SessionStatus.PAUSED
        assert agent.action_count == 0

        await agent.drain()

        assert page.clicks == [Selectors.REFINE_SEARCH, Selectors.DIALOG_CLOSE]
        assert controller.status == SessionStatus.RUNNING
        assert 30 <= agent.threshold <= 45
        controller.stop(suppress_alert=True)

    @pytest.mark.asyncio
    async def test_housekeeping_resumes_without_button(self, agent, controller, page):
        controller.start()
        controller.pause()

        await agent.housekeeping()

        assert page.clicks == []
        assert controller.status == SessionStatus.RUNNING
        controller.stop(suppress_alert=True)

    @pytest.mark.asyncio
    async def test_dialog_fallback_close(self, agent, page):
        page.counts[Selectors.DIALOG_CLOSE_FALLBACKS[1]] = 1

        assert await agent.wait_for_dialog() == Selectors.DIALOG_CLOSE_FALLBACKS[1]
        assert await agent.close_dialog() is True
        assert page.clicks == [Selectors.DIALOG_CLOSE_FALLBACKS[1]]


class TestWarningDialog:
    @pytest.mark.asyncio
    async def test_dom_changes_are_throttled(self, agent, page):
        page.counts[Selectors.BACK_WARNING_DIALOG] = 1
        page.counts[Selectors.BACK_WARNING_CLOSE] = 1

        agent.on_dom_change()
        agent.on_dom_change()
        assert len(agent._tasks) == 1

        await agent.drain()
        assert page.clicks == [Selectors.BACK_WARNING_CLOSE]

    @pytest.mark.asyncio
    async def test_no_second_click_until_dialog_gone(self, agent, page):
        page.counts[Selectors.BACK_WARNING_DIALOG] = 1
        page.counts[Selectors.BACK_WARNING_CLOSE] = 1

        assert await agent.check_warning_dialog() is True
        assert await agent.check_warning_dialog() is False
        assert page.clicks == [Selectors.BACK_WARNING_CLOSE]

        page.counts[Selectors.BACK_WARNING_DIALOG] = 0
        assert await agent.check_warning_dialog() is False

        page.counts[Selectors.BACK_WARNING_DIALOG] = 1
        assert await agent.check_warning_dialog() is True
        assert len(page.clicks) == 2

    @pytest.mark.asyncio
    async def test_hidden_dialog_ignored(self, agent, page):
        page.counts[Selectors.BACK_WARNING_DIALOG] = 1
        page.counts[Selectors.BACK_WARNING_CLOSE] = 1
        page.visible[Selectors.BACK_WARNING_DIALOG] = False

        assert await agent.check_warning_dialog() is False


class TestPageEvents:
    @pytest.mark.asyncio
    async def test_no_slot_response_spawns_nothing(self, agent):
        result = agent.on_response(f"{BASE}/obs-web/pages/home", 200, "<p>nothing</p>")
        assert result.outcome == Outcome.NO_SLOT
        assert len(agent._tasks) == 0

    @pytest.mark.asyncio
    async def test_rate_limited_response_routed(self, agent, controller):
        result = agent.on_response(f"{BASE}/obs-web/pages/home", 200, "Pardon Our Interruption")
        assert result.outcome == Outcome.RATE_LIMITED

        await agent.drain()

        assert controller.events.entries()[0].message == "Rate limit detected"

    @pytest.mark.asyncio
    async def test_timeout_page_goes_home(self, agent, page):
        page.current_url = f"{BASE}/obs-web/sessionTimeout"

        await agent.on_page_load()

        assert page.navigations == [f"{BASE}/obs"]

    @pytest.mark.asyncio
    async def test_system_error_goes_home(self, agent, page):
        page.all_texts[Selectors.ERROR_BLOCK] = ["Sorry, there's a problem with the system. Please wait."]

        await agent.on_page_load()

        assert page.navigations == [f"{BASE}/obs"]

    @pytest.mark.asyncio
    async def test_login_fills_credentials(self, agent, page):
        page.current_url = f"{BASE}/login/signin/creds"
        page.counts[Selectors.LOGIN_SUBMIT] = 1

        await agent.on_page_load()

        assert page.fills == {Selectors.USERNAME: "driver", Selectors.PASSWORD: "secret"}
        assert page.clicks == [Selectors.LOGIN_SUBMIT]

    @pytest.mark.asyncio
    async def test_login_without_credentials_stops(self, page, controller, config, alerts):
        config = config.model_copy(update={"credentials": CredentialsConfig()})
        agent = make_agent(page, controller, config, alerts)
        page.current_url = f"{BASE}/login/signin/creds"
        controller.start()

        await agent.on_page_load()

        alerts.notify_credentials_missing.assert_called_once_with(page.current_url)
        assert controller.status == SessionStatus.IDLE
        assert page.fills == {}

    @pytest.mark.asyncio
    async def test_expired_session_login_goes_home(self, agent, page):
        page.current_url = f"{BASE}/login/signin/creds"
        page.texts[Selectors.SESSION_EXPIRED_HEADING] = "Your session has expired"

        await agent.on_page_load()

        assert page.navigations == [f"{BASE}/obs"]
        assert page.fills == {}

    @pytest.mark.asyncio
    async def test_already_signed_in(self, agent, page):
        page.current_url = f"{BASE}/login/already-signed-in/"
        page.counts[Selectors.STAY_SIGNED_IN] = 1
        page.counts[Selectors.LOGIN_SUBMIT] = 1

        await agent.on_page_load()

        assert page.clicks == [Selectors.STAY_SIGNED_IN, Selectors.LOGIN_SUBMIT]

    @pytest.mark.asyncio
    async def test_claim_in_progress_owns_page_load(self, agent, controller, page):
        controller.claim_queue.acquire()
        controller.claim_queue.replace([f"{BASE}/obs-web/pages/home?execution=e1s2&_eventId=reserveSlot"])
        page.current_url = f"{BASE}/login/signin/creds"

        await agent.on_page_load()

        assert page.navigations == [f"{BASE}/obs-web/pages/home?execution=e1s2&_eventId=reserveSlot"]
        assert page.fills == {}

    @pytest.mark.asyncio
    async def test_page_captcha_deduplicated(self, agent, controller, page):
        page.counts[Selectors.HCAPTCHA] = 1
        page.attributes[(Selectors.HCAPTCHA_SITEKEY, "data-sitekey")] = "site-key"

        assert await agent.check_page_captcha() is True
        assert await agent.check_page_captcha() is False

        captcha_events = [e for e in controller.events.entries() if e.message == "hCaptcha detected"]
        assert len(captcha_events) == 1

    @pytest.mark.asyncio
    async def test_page_captcha_on_claim_step_stops(self, agent, controller, page, alerts):
        controller.start()
        page.current_url = f"{BASE}/obs-web/pages/home?execution=e1s3"
        page.counts[Selectors.HCAPTCHA] = 1
        page.attributes[(Selectors.HCAPTCHA_SITEKEY, "data-sitekey")] = "site-key"

        await agent.check_page_captcha()

        alerts.notify_captcha_during_claim.assert_called_once_with("site-key", page.current_url)
        assert controller.status == SessionStatus.IDLE


def show_search_form(page):
    page.counts[Selectors.TEST_CATEGORY] = 1
    page.counts[Selectors.NO_SPECIAL_NEEDS] = 1
    page.counts[Selectors.BOOK_TEST] = 1
    page.options[Selectors.TEST_CATEGORY] = ["", "TC-B", "TC-BE"]
    page.options[Selectors.TEST_CENTRE_GROUPS] = ["-1", "null", "4102", "4103"]


class TestSearchForm:
    @pytest.mark.asyncio
    async def test_home_page_form_filled_and_submitted(self, agent, page):
        show_search_form(page)

        await agent.on_page_load()

        assert page.values[Selectors.TEST_CATEGORY] == "TC-B"
        assert page.values[Selectors.TEST_CENTRE_GROUPS] == "4102"
        assert page.checked[Selectors.NO_SPECIAL_NEEDS]
        assert page.clicks == [Selectors.BOOK_TEST]
        assert agent.events.entries()[0].message == "Search form submitted"

    @pytest.mark.asyncio
    async def test_completed_form_only_submitted(self, agent, page):
        show_search_form(page)
        page.values[Selectors.TEST_CENTRE_GROUPS] = "4103"
        page.checked[Selectors.SPECIAL_NEEDS] = True

        assert await agent.fill_search_form() is True

        assert Selectors.TEST_CATEGORY not in page.values
        assert page.values[Selectors.TEST_CENTRE_GROUPS] == "4103"
        assert not page.checked.get(Selectors.NO_SPECIAL_NEEDS)
        assert page.clicks == [Selectors.BOOK_TEST]

    @pytest.mark.asyncio
    async def test_configured_test_centre_group(self, page, controller, config, alerts):
        config.site.search_form.test_centre_group = "4103"
        agent = make_agent(page, controller, config, alerts)
        show_search_form(page)

        assert await agent.fill_search_form() is True
        assert page.values[Selectors.TEST_CENTRE_GROUPS] == "4103"

    @pytest.mark.asyncio
    async def test_no_form_on_page(self, agent, page):
        assert await agent.fill_search_form() is False
        assert page.clicks == []

    @pytest.mark.asyncio
    async def test_missing_book_button(self, agent, page):
        show_search_form(page)
        page.counts[Selectors.BOOK_TEST] = 0

        assert await agent.fill_search_form() is False
        assert page.values[Selectors.TEST_CENTRE_GROUPS] == "4102"

    @pytest.mark.asyncio
    async def test_form_ignored_away_from_booking_home(self, agent, page):
        show_search_form(page)
        page.current_url = f"{BASE}/obs"

        await agent.on_page_load()

        assert page.clicks == []
