"""
Session controller

Owns the session state machine: countdown, cooldown gate, click budget,
action scheduling and routing of classified responses. All mutable session
fields live on one SessionController and are written to the store after
every change.
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ValidationError

from ..common.config import AutomationConfig
from ..common.errors import (
    AgentNotReady,
    ChannelTimeout,
    ClickLimitReachedError,
    CooldownActiveError,
    SessionConfigMissingError,
    SlotSniperError,
)
from ..common.events import EventLog
from ..common.models import (
    ClaimResult,
    ClaimStatus,
    Classification,
    ClickControl,
    ClickCounters,
    Outcome,
    SessionConfig,
    SessionSnapshot,
    SessionState,
    SessionStatus,
)
from ..common.notifications import AlertCenter
from ..common.scheduler import ActionTimer, RetryStrategy, SessionClock, Ticker, format_countdown, jitter
from ..common.store import StateStore
from .channel import ActionReply, ActionStatus, AgentChannel, AgentCommand
from .workflow import ClaimLinkQueue, ReservationWorkflow

logger = logging.getLogger(__name__)

ENDING_SOON_SECONDS = 10


class StartDecision(str, Enum):
    RESUME = "resume"
    FRESH = "fresh"
    RESET = "reset"
    REJECT = "reject"


class GateResult(BaseModel):
    decision: StartDecision
    remaining: timedelta = timedelta(0)


def evaluate_cooldown_gate(state: SessionState, config: SessionConfig, now: datetime) -> GateResult:
    """
    Decide how a start request is treated.

    Time left on the countdown always resumes. Cooldown only applies after a
    run that was served to the end; early or manual stops never set it.
    """
    if state.countdown_remaining_seconds > 0:
        return GateResult(decision=StartDecision.RESUME)

    if state.last_full_duration_stop_at is None:
        return GateResult(decision=StartDecision.FRESH)

    elapsed = now - state.last_full_duration_stop_at
    cooldown = timedelta(minutes=config.cooldown_minutes)
    if elapsed >= cooldown:
        return GateResult(decision=StartDecision.RESET)

    return GateResult(decision=StartDecision.REJECT, remaining=cooldown - elapsed)


class RecoveryKind(str, Enum):
    RESUMED = "resumed"
    RESET = "reset"
    COOLDOWN = "cooldown"
    IDLE = "idle"


class RecoveryReport(BaseModel):
    kind: RecoveryKind
    countdown_remaining_seconds: int = 0
    cooldown_remaining: Optional[timedelta] = None


class SessionController:
    """
    Session state machine.

    idle -> running <-> paused -> idle. While running, a 1 Hz ticker counts
    the session down and a single action timer schedules the next click.
    """

    def __init__(
        self,
        store: StateStore,
        alerts: AlertCenter,
        channel: AgentChannel,
        config: Optional[SessionConfig] = None,
        clock: Optional[SessionClock] = None,
        automation: Optional[AutomationConfig] = None,
        events: Optional[EventLog] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.alerts = alerts
        self.channel = channel
        self.config = config
        self.clock = clock or SessionClock()
        self.automation = automation or AutomationConfig()
        self.events = events or EventLog()
        self.rng = rng

        self.state = SessionState()
        self.counters = ClickCounters()
        self.claim_queue = ClaimLinkQueue(on_change=self._persist)
        self.workflow: Optional[ReservationWorkflow] = None

        self._action_timer = ActionTimer("action")
        self._ticker = Ticker(1.0, "countdown")
        self._idle = asyncio.Event()
        self._idle.set()

    # ========================================
    # State
    # ========================================

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def running(self) -> bool:
        return self.state.status == SessionStatus.RUNNING

    @property
    def action_pending(self) -> bool:
        return self._action_timer.pending

    @property
    def countdown_armed(self) -> bool:
        return self._ticker.running

    def bind_workflow(self, workflow: ReservationWorkflow):
        self.workflow = workflow
        workflow.on_finished = self.finish_claim
        workflow.on_abandoned = self.claim_abandoned

    def apply_config(self, config: SessionConfig):
        """Swap in a new settings snapshot; takes effect from the next action"""
        self.config = config
        logger.info(
            f"Session settings applied: jitter {config.jitter_min}-{config.jitter_max}s, "
            f"{config.max_clicks_per_day} clicks/day"
        )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            counters=self.counters,
            claim_queue=self.claim_queue.snapshot(),
            claim_locked=self.claim_queue.locked,
            logs=self.events.entries(),
        )

    def _persist(self):
        self.store.save(self.snapshot().model_dump(mode="json"))

    def cooldown_remaining(self) -> Optional[timedelta]:
        if self.config is None or self.state.last_full_duration_stop_at is None:
            return None
        cooldown = timedelta(minutes=self.config.cooldown_minutes)
        remaining = cooldown - (self.clock.now() - self.state.last_full_duration_stop_at)
        return remaining if remaining > timedelta(0) else None

    async def wait_idle(self):
        await self._idle.wait()

    # ========================================
    # Lifecycle
    # ========================================

    def start(self, config: Optional[SessionConfig] = None, suppress_alert: bool = False) -> Optional[StartDecision]:
        """
        Start or resume polling.

        Raises ClickLimitReachedError when today's budget is spent and
        CooldownActiveError while a cooldown is running.
        """
        if config is not None:
            self.apply_config(config)
        if self.config is None:
            raise SessionConfigMissingError("No session settings loaded")

        if self.state.status == SessionStatus.RUNNING:
            logger.info("Session already running")
            return None
        if self.state.status == SessionStatus.PAUSED:
            self.resume()
            return StartDecision.RESUME

        if self.counters.roll_day(self.clock.today()):
            self._persist()
        if self.counters.daily_total >= self.config.max_clicks_per_day:
            self.events.record(
                "warning", "Start refused: daily click limit reached",
                clicks=self.counters.daily_total, limit=self.config.max_clicks_per_day,
            )
            raise ClickLimitReachedError(self.counters.daily_total, self.config.max_clicks_per_day)

        gate = evaluate_cooldown_gate(self.state, self.config, self.clock.now())
        if gate.decision == StartDecision.REJECT:
            error = CooldownActiveError(gate.remaining)
            self.events.record(
                "warning", "Start refused: cooldown active",
                remaining_minutes=error.remaining_minutes,
            )
            raise error

        if gate.decision in (StartDecision.FRESH, StartDecision.RESET):
            self.state.countdown_remaining_seconds = self.config.max_running_seconds
        if gate.decision == StartDecision.RESET:
            self.state.last_full_duration_stop_at = None
            self.state.last_active_at = None

        if self.claim_queue.locked and not suppress_alert:
            logger.warning("Discarding unfinished claim from a previous session")
            self.claim_queue.release()

        self.state.status = SessionStatus.RUNNING
        self.state.cooldown_alert_sent = False
        self._idle.clear()
        self._arm()

        self.events.record(
            "info", "Session started",
            decision=gate.decision.value,
            countdown=self.state.countdown_remaining_seconds,
        )
        self._persist()
        if not suppress_alert:
            self.alerts.notify_session_started()
        return gate.decision

    def stop(self, completed_full_duration: bool = False, suppress_alert: bool = False) -> bool:
        """Stop polling. Returns False when already idle."""
        if self.state.status == SessionStatus.IDLE:
            return False

        self._action_timer.cancel()
        self._ticker.stop()

        now = self.clock.now()
        self.state.status = SessionStatus.IDLE
        self.state.last_active_at = now
        if completed_full_duration:
            self.state.last_full_duration_stop_at = now
            self.state.countdown_remaining_seconds = 0

        self.events.record(
            "info", "Session stopped",
            completed_full_duration=completed_full_duration,
            remaining=self.state.countdown_remaining_seconds,
        )
        self._persist()
        self._idle.set()

        if not suppress_alert:
            self.alerts.notify_session_ended(self.counters.total)
        return True

    def pause(self) -> bool:
        """Suspend clicking; the countdown freezes until resume()"""
        if self.state.status != SessionStatus.RUNNING:
            return False
        self._action_timer.cancel()
        self.state.status = SessionStatus.PAUSED
        self.events.record("info", "Session paused")
        self._persist()
        return True

    def resume(self) -> bool:
        if self.state.status != SessionStatus.PAUSED:
            return False
        self.state.status = SessionStatus.RUNNING
        self._arm()
        self.events.record("info", "Session resumed")
        self._persist()
        return True

    def _arm(self):
        """Arm the countdown and the action scheduler unless already live"""
        self._ticker.start(self._tick)
        if not self._action_timer.pending:
            self.schedule_next()

    async def _tick(self):
        if self.state.status != SessionStatus.RUNNING:
            return

        remaining = max(0, self.state.countdown_remaining_seconds - 1)
        self.state.countdown_remaining_seconds = remaining

        if remaining <= ENDING_SOON_SECONDS and not self.state.cooldown_alert_sent:
            self.state.cooldown_alert_sent = True
            self.events.record("warning", f"Session ending in {format_countdown(remaining)}")

        if remaining == 0:
            logger.info("Session time is up")
            self.stop(completed_full_duration=True)
            return

        self._persist()

    # ========================================
    # Actions
    # ========================================

    def schedule_next(self, custom_backoff_seconds: Optional[float] = None) -> bool:
        """Replace the pending action with one after jitter (or the given backoff)"""
        if self.state.status != SessionStatus.RUNNING or self.config is None:
            return False
        if self.claim_queue.locked:
            return False

        if custom_backoff_seconds is not None:
            delay = custom_backoff_seconds
        else:
            delay = jitter(self.config.jitter_min, self.config.jitter_max, self.rng)
        self._action_timer.schedule(delay, self._dispatch)
        return True

    def _can_act(self) -> bool:
        return self.state.status == SessionStatus.RUNNING and not self.claim_queue.locked

    async def _dispatch(self):
        if not self._can_act():
            return

        generation = self._action_timer.generation
        retry = RetryStrategy(
            max_attempts=2,
            base_delay_ms=int(self.automation.soft_retry_delay_seconds * 1000),
        )
        while True:
            retry.record_attempt()
            try:
                reply = await self.channel.request(
                    AgentCommand.PERFORM_ACTION,
                    timeout=self.automation.command_timeout_seconds,
                )
            except (AgentNotReady, ChannelTimeout) as e:
                if self._action_timer.generation != generation:
                    return
                if not retry.should_retry():
                    self.events.record("warning", "Page command failed twice, rescheduling", error=str(e))
                    self.schedule_next()
                    return
                logger.debug(f"Page not ready ({e}), retrying")
                await retry.wait()
                if not self._can_act() or self._action_timer.generation != generation:
                    return
                continue

            if self._action_timer.generation != generation:
                # A page event replaced this action while the agent was clicking
                if reply.clicked and reply.control is not None:
                    self.record_click(reply.control)
                return

            await self.handle_action_reply(reply)
            return

    async def handle_action_reply(self, reply: ActionReply):
        if reply.clicked and reply.control is not None:
            self.record_click(reply.control)

        if reply.status == ActionStatus.HOUSEKEEPING:
            # The agent resumes the session itself
            return
        if reply.status in (ActionStatus.PERIOD_UNKNOWN, ActionStatus.CONTROL_MISSING):
            logger.debug(f"No click this round: {reply.status.value}")

        self.schedule_next()

    def record_click(self, control: ClickControl) -> int:
        """Count one completed click and enforce the daily budget"""
        daily = self.counters.record(control, self.clock.today())
        logger.debug(f"Clicked {control.value} (today: {daily}, total: {self.counters.total})")
        self._persist()

        if self.config is not None and daily >= self.config.max_clicks_per_day:
            limit = self.config.max_clicks_per_day
            self.events.record("warning", "Daily click limit reached", clicks=daily, limit=limit)
            self.alerts.notify_click_limit(daily, limit)
            self.stop(completed_full_duration=False)
        return daily

    # ========================================
    # Page events
    # ========================================

    async def handle_classification(self, classification: Classification, url: Optional[str] = None):
        outcome = classification.outcome

        if outcome == Outcome.NO_SLOT:
            return

        if outcome == Outcome.SLOT_FOUND:
            if self.state.status == SessionStatus.IDLE:
                logger.info("Slot found while idle, ignoring")
                return
            self._action_timer.cancel()
            self.events.record(
                "success", "Slot found",
                claim_link=classification.claim_link,
                period_start=str(classification.period_start) if classification.period_start else None,
            )
            if self.workflow is None:
                logger.error("No reservation workflow bound, cannot claim")
                self.schedule_next()
                return
            if not await self.workflow.begin(classification.claim_link):
                self.schedule_next()
            return

        if outcome == Outcome.RATE_LIMITED:
            backoff = self.automation.rate_limit_backoff_seconds
            self.events.record("warning", "Rate limit detected", backoff_seconds=backoff)
            self.schedule_next(custom_backoff_seconds=backoff)
            return

        if outcome == Outcome.CAPTCHA:
            during_claim = self.claim_queue.locked
            self.events.record(
                "error", "Captcha challenge - session stopped",
                sitekey=classification.sitekey,
                error_code=classification.error_code,
                during_claim=during_claim,
            )
            if during_claim or self.automation.alert_captcha_outside_claim:
                self.alerts.notify_captcha_during_claim(classification.sitekey, url or "")
            self.stop()
            return

        if outcome == Outcome.FATAL_ERROR:
            self.events.record(
                "error", f"Fatal error code {classification.error_code} - session stopped",
                error_code=classification.error_code,
            )
            self.stop()

    def handle_page_captcha(self, sitekey: Optional[str], url: str, on_claim_page: bool = False):
        """An on-page captcha widget was seen"""
        if on_claim_page or self.claim_queue.locked:
            self.events.record("error", "hCaptcha detected during reservation", sitekey=sitekey, url=url)
            self.alerts.notify_captcha_during_claim(sitekey, url)
            self.stop()
        else:
            self.events.record("warning", "hCaptcha detected", sitekey=sitekey, url=url)

    async def claim_abandoned(self):
        """The claim gave up without a result; go back to polling"""
        if self.schedule_next():
            logger.info("Claim abandoned, polling resumed")

    async def finish_claim(self, result: ClaimResult):
        if result.status == ClaimStatus.SUCCESS:
            self.alerts.notify_reservation_success(
                test_center=result.test_center,
                slots=result.slots,
                minutes_remaining=result.minutes_remaining,
                reserved_count=result.reserved_count,
            )
            self.stop()
            return

        if result.status == ClaimStatus.SLOT_LOST:
            was_live = self.state.status != SessionStatus.IDLE
            self.alerts.notify_slot_lost(result.location_info or "Unknown location")
            self.stop(suppress_alert=True)

            if self.workflow is not None:
                await self.workflow.return_to_search()

            if was_live:
                try:
                    self.start(suppress_alert=True)
                except SlotSniperError as e:
                    self.events.record("warning", f"Could not resume after lost slot: {e}")

    # ========================================
    # Recovery
    # ========================================

    def _load_snapshot(self) -> SessionSnapshot:
        data = self.store.load()
        if not data:
            return SessionSnapshot()
        try:
            return SessionSnapshot.model_validate(data)
        except ValidationError as e:
            logger.error(f"Stored session state is invalid, starting fresh: {e}")
            return SessionSnapshot()

    def restore(self) -> RecoveryReport:
        """
        Recover after a process restart.

        - was running/paused with time left -> resume silently
        - was running/paused without time   -> reset to full duration, or stay
                                               idle while a cooldown runs
        - was idle                          -> stay idle
        """
        if self.config is None:
            raise SessionConfigMissingError("No session settings loaded")

        snapshot = self._load_snapshot()
        self.state = snapshot.state
        self.counters = snapshot.counters
        self.claim_queue.load(snapshot.claim_queue, snapshot.claim_locked)
        self.events.load(snapshot.logs)
        self.counters.roll_day(self.clock.today())

        persisted = self.state.status
        if persisted == SessionStatus.IDLE:
            report = RecoveryReport(
                kind=RecoveryKind.COOLDOWN if self.cooldown_remaining() else RecoveryKind.IDLE,
                countdown_remaining_seconds=self.state.countdown_remaining_seconds,
                cooldown_remaining=self.cooldown_remaining(),
            )
            self._persist()
            return report

        if self.state.countdown_remaining_seconds > 0:
            kind = RecoveryKind.RESUMED
        else:
            reference = self.state.last_full_duration_stop_at or self.state.last_active_at
            cooldown = timedelta(minutes=self.config.cooldown_minutes)
            if reference is not None and self.clock.now() - reference < cooldown:
                self.state.status = SessionStatus.IDLE
                remaining = cooldown - (self.clock.now() - reference)
                self.events.record("warning", "Restarted during cooldown, staying idle")
                self._persist()
                return RecoveryReport(kind=RecoveryKind.COOLDOWN, cooldown_remaining=remaining)

            kind = RecoveryKind.RESET
            self.state.countdown_remaining_seconds = self.config.max_running_seconds
            self.state.last_full_duration_stop_at = None
            self.state.last_active_at = None

        self.state.status = SessionStatus.RUNNING
        self._idle.clear()
        self._arm()
        self.events.record(
            "info", f"Session recovered ({kind.value})",
            countdown=self.state.countdown_remaining_seconds,
        )
        self._persist()
        return RecoveryReport(kind=kind, countdown_remaining_seconds=self.state.countdown_remaining_seconds)
