"""
Notification services for SlotSniper

The core only emits fixed-shape AlertEvents; formatting and channel fan-out
happen here.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Set
import httpx

from .models import AlertEvent, AlertKind
from .config import NotificationsConfig, BackendConfig

logger = logging.getLogger(__name__)

TITLES = {
    AlertKind.SESSION_START: "🚀 Session Started",
    AlertKind.SESSION_END: "😴 Session Complete",
    AlertKind.SLOT_FOUND: "🎯 SLOT FOUND!",
    AlertKind.RESERVATION_SUCCESS: "🎉 Test Slot Reserved!",
    AlertKind.SLOT_LOST: "⚠️ Slot Lost",
    AlertKind.CAPTCHA_DURING_CLAIM: "🔐 Captcha During Reservation",
    AlertKind.CREDENTIALS_MISSING: "🔑 Credentials Missing",
    AlertKind.CLICK_LIMIT_WARNING: "⚠️ Click Limit Reached",
    AlertKind.CLAIM_LINK_MISSING: "⚠️ Slot Already Taken",
}


def format_message(event: AlertEvent) -> str:
    p = event.payload
    kind = event.kind

    if kind == AlertKind.SESSION_START:
        return "✅ Actively searching for slots"
    if kind == AlertKind.SESSION_END:
        return f"Clicks this session: {p.get('clicks_count', 0)}"
    if kind == AlertKind.SLOT_FOUND:
        return f"Slots: {p.get('count', 0)}"
    if kind == AlertKind.RESERVATION_SUCCESS:
        slots = "\n".join(f"• {s}" for s in p.get("slots", [])) or "• (no details)"
        return (
            f"Test centre: {p.get('test_center', 'Unknown')}\n"
            f"Reserved: {p.get('reserved_count', 0)}\n{slots}\n\n"
            f"⏰ {p.get('minutes_remaining', '?')} minutes to complete your booking!"
        )
    if kind == AlertKind.SLOT_LOST:
        return f"No slots secured at {p.get('location_info', 'Unknown location')}"
    if kind == AlertKind.CAPTCHA_DURING_CLAIM:
        return f"Solve the captcha manually!\nSitekey: {p.get('sitekey')}\nURL: {p.get('url')}"
    if kind == AlertKind.CREDENTIALS_MISSING:
        return "Login credentials are not configured - automation refused"
    if kind == AlertKind.CLICK_LIMIT_WARNING:
        return f"Clicks: {p.get('clicks')}/{p.get('limit')} - session stopped"
    if kind == AlertKind.CLAIM_LINK_MISSING:
        return f"Reason: {p.get('reason')}"
    return str(p)


class NotificationProvider(ABC):
    """Base class for notification providers"""

    @abstractmethod
    async def send(self, event: AlertEvent) -> bool:
        """Send notification, return True if successful"""
        pass


class ConsoleNotifier(NotificationProvider):
    """Console output"""

    async def send(self, event: AlertEvent) -> bool:
        print("\n" + "=" * 60)
        print(f"📢 {TITLES.get(event.kind, event.kind.value)}")
        print("-" * 60)
        print(format_message(event))
        print("=" * 60 + "\n")
        return True


class WebhookNotifier(NotificationProvider):
    """Generic JSON webhook (Slack/Discord compatible text field)"""

    def __init__(self, webhook_url: str, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.client = client or httpx.AsyncClient(timeout=10.0)

    async def send(self, event: AlertEvent) -> bool:
        try:
            response = await self.client.post(
                self.webhook_url,
                json={
                    "text": f"{TITLES.get(event.kind, event.kind.value)}\n\n{format_message(event)}",
                    "kind": event.kind.value,
                    "urgency": event.urgency,
                    "payload": event.payload,
                    "timestamp": event.timestamp.isoformat(),
                }
            )
            success = response.status_code in (200, 202, 204)
            if not success:
                logger.error(f"Webhook send failed: {response.status_code} - {response.text}")
            return success
        except httpx.HTTPError as e:
            logger.error(f"Webhook send error: {e}")
            return False


class BackendNotifier(NotificationProvider):
    """Forwards events to the settings/alert backend, which fans them out"""

    ENDPOINTS = {
        AlertKind.SESSION_START: "/api/bot/start-session",
        AlertKind.SESSION_END: "/api/bot/end-session",
        AlertKind.RESERVATION_SUCCESS: "/api/bot/reservation-success",
        AlertKind.SLOT_LOST: "/api/bot/slot-lost",
    }

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _body(self, event: AlertEvent) -> dict:
        p = event.payload
        if event.kind == AlertKind.SESSION_END:
            return {"clicks_count": p.get("clicks_count", 0)}
        if event.kind == AlertKind.RESERVATION_SUCCESS:
            return {
                "minutesRemaining": p.get("minutes_remaining"),
                "reservedCount": p.get("reserved_count", 0),
                "testCenter": p.get("test_center") or "Unknown",
                "slots": p.get("slots") or [],
            }
        if event.kind == AlertKind.SLOT_LOST:
            return {"locationInfo": p.get("location_info")}
        return {}

    async def send(self, event: AlertEvent) -> bool:
        path = self.ENDPOINTS.get(event.kind)
        if path is None:
            logger.debug(f"Backend has no endpoint for {event.kind.value}, skipping")
            return True

        try:
            response = await self.client.post(f"{self.base_url}{path}", json=self._body(event))
            success = response.status_code == 200
            if not success:
                logger.error(f"Backend alert failed: {response.status_code} - {response.text}")
            return success
        except httpx.HTTPError as e:
            logger.error(f"Backend alert error: {e}")
            return False


class AlertCenter:
    """
    Fire-and-forget alert fan-out.

    The notify_* methods return immediately; delivery runs in background
    tasks so alerting never delays the polling loop.
    """

    def __init__(self, config: NotificationsConfig, backend: Optional[BackendConfig] = None):
        self.providers: List[NotificationProvider] = []
        self._pending: Set[asyncio.Task] = set()

        if config.console:
            self.providers.append(ConsoleNotifier())

        if config.backend and backend and backend.url:
            self.providers.append(BackendNotifier(backend.url, timeout=backend.timeout))
            logger.info("Backend alerts enabled")

        if config.webhook.enabled and config.webhook.url:
            self.providers.append(WebhookNotifier(config.webhook.url))
            logger.info("Webhook notifications enabled")
        elif config.webhook.enabled:
            logger.warning("Webhook notifications enabled but missing URL")

    def emit(self, kind: AlertKind, urgency: str = "normal", **payload) -> Optional[asyncio.Task]:
        event = AlertEvent(kind=kind, payload=payload, urgency=urgency)
        try:
            task = asyncio.get_running_loop().create_task(self.send(event))
        except RuntimeError:
            logger.warning(f"No event loop running, alert {kind.value} not delivered")
            return None
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def notify_session_started(self):
        return self.emit(AlertKind.SESSION_START)

    def notify_session_ended(self, clicks_count: int):
        return self.emit(AlertKind.SESSION_END, clicks_count=clicks_count)

    def notify_slot_found(self, count: int):
        return self.emit(AlertKind.SLOT_FOUND, urgency="high", count=count)

    def notify_reservation_success(self, test_center: str, slots: List[str], minutes_remaining, reserved_count: int):
        return self.emit(
            AlertKind.RESERVATION_SUCCESS,
            urgency="high",
            test_center=test_center,
            slots=slots,
            minutes_remaining=minutes_remaining,
            reserved_count=reserved_count,
        )

    def notify_slot_lost(self, location_info: str):
        return self.emit(AlertKind.SLOT_LOST, location_info=location_info)

    def notify_captcha_during_claim(self, sitekey: Optional[str], url: str):
        return self.emit(AlertKind.CAPTCHA_DURING_CLAIM, urgency="high", sitekey=sitekey, url=url)

    def notify_credentials_missing(self, url: str):
        return self.emit(AlertKind.CREDENTIALS_MISSING, urgency="high", url=url)

    def notify_click_limit(self, clicks: int, limit: int):
        return self.emit(AlertKind.CLICK_LIMIT_WARNING, clicks=clicks, limit=limit)

    def notify_claim_link_missing(self, slot_link: str, reason: str):
        return self.emit(AlertKind.CLAIM_LINK_MISSING, slot_link=slot_link, reason=reason)

    async def send(self, event: AlertEvent) -> int:
        """Send one event through all providers, return the success count"""
        results = await asyncio.gather(
            *[p.send(event) for p in self.providers],
            return_exceptions=True
        )

        success_count = sum(1 for r in results if r is True)
        for r in results:
            if isinstance(r, Exception):
                logger.error(f"Notification provider error: {r}")
        logger.info(f"Alert {event.kind.value} sent: {success_count}/{len(self.providers)} successful")
        return success_count

    async def drain(self):
        """Wait for alerts still in flight (used on shutdown)"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
