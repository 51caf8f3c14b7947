"""
Tests for the reservation workflow (slotsniper/engine/workflow.py)
"""
from unittest.mock import AsyncMock

import pytest

from slotsniper.browser.page import PageRow
from slotsniper.browser.urls import SEARCH_PAGE_TITLE, Selectors
from slotsniper.common.errors import PageNavigatedError
from slotsniper.common.models import ClaimResult, ClaimStatus
from slotsniper.engine.workflow import (
    ClaimLinkQueue,
    ReservationWorkflow,
    assess_confirmation,
    count_reserved,
    describe_slots,
)

BASE = "https://driver-services.dvsa.gov.uk"
SLOT_LINK = "/obs-web/pages/home?execution=e2s3&_eventId=searchForDaySlots"
SLOT_PAGE = (
    '<a id="reserve_1" href="/obs-web/pages/home?execution=e2s4&amp;_eventId=reserveSlot&amp;slot=1">Reserve</a>'
    '<a id="reserve_2" href="/obs-web/pages/home?execution=e2s4&amp;_eventId=reserveSlot&amp;slot=2">Reserve</a>'
    '<a id="reserve_3" href="/obs-web/pages/home?execution=e2s4&amp;_eventId=reserveSlot&amp;slot=3">Reserve</a>'
)


def reserve_url(n: int) -> str:
    return f"{BASE}/obs-web/pages/home?execution=e2s4&_eventId=reserveSlot&slot={n}"


def booked_rows():
    return [
        PageRow(text="Birmingham (South Yardley) (B25 8HU)", classes=["first"]),
        PageRow(text="Fri 20 Mar 2026 08:57 Remove", classes=[]),
        PageRow(text="Mon 23 Mar 2026 14:10 Remove", classes=[]),
    ]


def show_confirmation(page, rows, controls=0):
    page.texts[Selectors.CONFIRMATION_NOTICE] = "You have\n 14 minutes to complete   your booking"
    page.texts[Selectors.MINUTES_REMAINING] = "14"
    page.texts[Selectors.LOCATION_HEADING] = "Birmingham (South Yardley)"
    page.rows[Selectors.BOOKED_ROWS] = rows
    page.counts[Selectors.RESERVE_BUTTONS] = controls


@pytest.fixture()
def queue():
    return ClaimLinkQueue()


@pytest.fixture()
def workflow(page, queue, alerts, config):
    wf = ReservationWorkflow(page, queue, alerts, site=config.site, automation=config.automation)
    wf.on_finished = AsyncMock()
    wf.on_abandoned = AsyncMock()
    return wf


class TestClaimLinkQueue:
    def test_fifo(self):
        queue = ClaimLinkQueue(["a", "b"])
        assert queue.pop() == "a"
        assert queue.pop() == "b"
        assert queue.pop() is None

    def test_lock_is_exclusive(self):
        queue = ClaimLinkQueue()
        assert queue.acquire() is True
        assert queue.acquire() is False
        queue.release()
        assert queue.acquire() is True

    def test_release_clears_links(self):
        queue = ClaimLinkQueue(["a"], locked=True)
        queue.release()
        assert len(queue) == 0
        assert queue.locked is False

    def test_changes_reported(self):
        changes = []
        queue = ClaimLinkQueue(on_change=lambda: changes.append(1))
        queue.acquire()
        queue.replace(["a", "b"])
        queue.pop()
        queue.release()
        assert len(changes) == 4

    def test_load_does_not_report(self):
        changes = []
        queue = ClaimLinkQueue(on_change=lambda: changes.append(1))
        queue.load(["a"], True)
        assert queue.snapshot() == ["a"]
        assert queue.locked is True
        assert changes == []


class TestConfirmationAssessment:
    def test_count_reserved_excludes_placeholder(self):
        rows = booked_rows() + [PageRow(text="No information found")]
        assert count_reserved(rows) == 2

    def test_count_reserved_needs_time(self):
        assert count_reserved([PageRow(text="Fri 20 Mar 2026")]) == 0

    def test_describe_slots(self):
        test_center, slots = describe_slots(booked_rows())
        assert test_center == "Birmingham (South Yardley)"
        assert slots == ["Fri 20 Mar 2026 08:57", "Mon 23 Mar 2026 14:10"]

    def test_describe_slots_without_header(self):
        test_center, slots = describe_slots([PageRow(text="Fri 20 Mar 2026 08:57")])
        assert test_center == "Unknown"
        assert len(slots) == 1

    def test_controls_left_nothing_reserved_in_progress(self):
        result = assess_confirmation([], claim_controls=3)
        assert result.status == ClaimStatus.IN_PROGRESS
        assert not result.is_terminal

    def test_no_controls_two_reserved_success(self):
        result = assess_confirmation(booked_rows(), claim_controls=0, minutes_remaining="14")
        assert result.status == ClaimStatus.SUCCESS
        assert result.reserved_count == 2
        assert result.minutes_remaining == "14"
        assert result.test_center == "Birmingham (South Yardley)"

    def test_no_controls_nothing_reserved_slot_lost(self):
        result = assess_confirmation([], claim_controls=0, location_info="Birmingham")
        assert result.status == ClaimStatus.SLOT_LOST
        assert result.location_info == "Birmingham"

    def test_reserved_cap_wins_over_controls(self):
        rows = [PageRow(text=f"Fri {d} Mar 2026 08:57") for d in range(10, 20)]
        result = assess_confirmation(rows, claim_controls=2, reserved_cap=10)
        assert result.status == ClaimStatus.SUCCESS
        assert result.reserved_count == 10

    def test_controls_left_some_reserved_in_progress(self):
        result = assess_confirmation(booked_rows(), claim_controls=1)
        assert result.status == ClaimStatus.IN_PROGRESS


class TestReservationWorkflow:
    @pytest.mark.asyncio
    async def test_begin_visits_last_link_first(self, workflow, page, queue, alerts):
        page.fetch_bodies[BASE + SLOT_LINK] = SLOT_PAGE

        assert await workflow.begin(SLOT_LINK) is True

        assert page.navigations == [reserve_url(3)]
        assert queue.snapshot() == [reserve_url(2), reserve_url(1)]
        assert queue.locked
        alerts.notify_slot_found.assert_called_once_with(3)

    @pytest.mark.asyncio
    async def test_page_loads_consume_queue(self, workflow, page, queue):
        page.fetch_bodies[BASE + SLOT_LINK] = SLOT_PAGE
        await workflow.begin(SLOT_LINK)

        assert await workflow.on_page_load() is True
        assert await workflow.on_page_load() is True

        assert page.navigations == [reserve_url(3), reserve_url(2), reserve_url(1)]
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_missing_claim_link(self, workflow, page, queue, alerts):
        page.fetch_bodies[BASE + SLOT_LINK] = "<p>This slot is no longer available</p>"

        assert await workflow.begin(SLOT_LINK) is False

        assert page.navigations == []
        assert not queue.locked
        alerts.notify_claim_link_missing.assert_called_once()
        alerts.notify_slot_found.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetch_failure_counts_as_missing_link(self, workflow, page, queue, alerts):
        page.fetch_bodies[BASE + SLOT_LINK] = PageNavigatedError("gone")

        assert await workflow.begin(SLOT_LINK) is False
        assert not queue.locked
        alerts.notify_claim_link_missing.assert_called_once()

    @pytest.mark.asyncio
    async def test_begin_refused_while_locked(self, workflow, page, queue):
        queue.acquire()
        assert await workflow.begin(SLOT_LINK) is False
        assert page.navigations == []

    @pytest.mark.asyncio
    async def test_idle_workflow_ignores_loads(self, workflow, page):
        assert await workflow.on_page_load() is False
        assert page.navigations == []

    @pytest.mark.asyncio
    async def test_in_progress_takes_no_action(self, workflow, page, queue):
        queue.acquire()
        show_confirmation(page, rows=[], controls=3)

        assert await workflow.on_page_load() is True

        assert page.navigations == []
        assert page.clicks == []
        assert queue.locked
        workflow.on_finished.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_finishes_claim(self, workflow, page, queue):
        queue.acquire()
        show_confirmation(page, rows=booked_rows(), controls=0)

        await workflow.on_page_load()

        assert not queue.locked
        result = workflow.on_finished.call_args.args[0]
        assert isinstance(result, ClaimResult)
        assert result.status == ClaimStatus.SUCCESS
        assert result.reserved_count == 2
        assert result.minutes_remaining == "14"
        assert result.slots == ["Fri 20 Mar 2026 08:57", "Mon 23 Mar 2026 14:10"]

    @pytest.mark.asyncio
    async def test_slot_lost_finishes_claim(self, workflow, page, queue):
        queue.acquire()
        show_confirmation(page, rows=[PageRow(text="No information found")], controls=0)

        await workflow.on_page_load()

        result = workflow.on_finished.call_args.args[0]
        assert result.status == ClaimStatus.SLOT_LOST
        assert result.location_info == "Birmingham (South Yardley)"

    @pytest.mark.asyncio
    async def test_other_notice_is_ignored(self, workflow, page, queue):
        queue.acquire()
        page.texts[Selectors.CONFIRMATION_NOTICE] = "Your booking is held"
        page.page_title = "Booking"

        assert await workflow.on_page_load() is True
        assert queue.locked
        workflow.on_finished.assert_not_called()

    @pytest.mark.asyncio
    async def test_back_on_search_page_abandons_claim(self, workflow, page, queue):
        queue.acquire()
        page.page_title = SEARCH_PAGE_TITLE
        page.counts[Selectors.NEXT_AVAILABLE] = 1

        assert await workflow.on_page_load() is False
        assert not queue.locked
        workflow.on_finished.assert_not_called()
        workflow.on_abandoned.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_return_to_search(self, workflow, page):
        page.counts[Selectors.RETURN_TO_SEARCH] = 1
        assert await workflow.return_to_search() is True
        assert page.clicks == [Selectors.RETURN_TO_SEARCH]

    @pytest.mark.asyncio
    async def test_return_to_search_missing_link(self, workflow, page):
        assert await workflow.return_to_search() is False
