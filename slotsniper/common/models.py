"""
Data models for SlotSniper
"""
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class ClickControl(str, Enum):
    NEXT_AVAILABLE = "next_available"
    PREVIOUS_AVAILABLE = "previous_available"
    NEXT_WEEK = "next_week"
    PREVIOUS_WEEK = "previous_week"


class Outcome(str, Enum):
    SLOT_FOUND = "slot_found"
    RATE_LIMITED = "rate_limited"
    CAPTCHA = "captcha"
    FATAL_ERROR = "fatal_error"
    NO_SLOT = "no_slot"


class ClaimStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    SLOT_LOST = "slot_lost"


class AlertKind(str, Enum):
    SESSION_START = "session-start"
    SESSION_END = "session-end"
    SLOT_FOUND = "slot-found"
    RESERVATION_SUCCESS = "reservation-success"
    SLOT_LOST = "slot-lost"
    CAPTCHA_DURING_CLAIM = "captcha-during-claim"
    CREDENTIALS_MISSING = "credentials-missing"
    CLICK_LIMIT_WARNING = "click-limit-warning"
    CLAIM_LINK_MISSING = "claim-link-missing"


class SessionConfig(BaseModel):
    """Settings snapshot for one run. Never mutated once a run has started."""
    model_config = ConfigDict(frozen=True)

    jitter_min: float = Field(0.8, gt=0)
    jitter_max: float = Field(1.5, gt=0)
    max_clicks_per_day: int = Field(9500, gt=0)
    max_running_minutes: int = Field(20, gt=0)
    cooldown_minutes: int = Field(45, ge=0)
    deadline_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_jitter(self) -> "SessionConfig":
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must not exceed jitter_max")
        return self

    @property
    def max_running_seconds(self) -> int:
        return self.max_running_minutes * 60

    @classmethod
    def from_backend(cls, data: Dict[str, Any]) -> "SessionConfig":
        """Build a snapshot from the settings backend's snake_case payload"""
        fields: Dict[str, Any] = {}
        mapping = {
            "jitter_min": "jitter_min",
            "jitter_max": "jitter_max",
            "max_clicks": "max_clicks_per_day",
            "max_running_time": "max_running_minutes",
            "cooldown_time": "cooldown_minutes",
        }
        for key, field in mapping.items():
            if data.get(key) is not None:
                fields[field] = data[key]

        deadline = data.get("deadline_date")
        if deadline:
            fields["deadline_date"] = date_parser.parse(str(deadline)).date()

        return cls(**fields)


class SessionState(BaseModel):
    """Controller-owned session state"""
    status: SessionStatus = SessionStatus.IDLE
    countdown_remaining_seconds: int = Field(0, ge=0)
    last_active_at: Optional[datetime] = None
    last_full_duration_stop_at: Optional[datetime] = None
    cooldown_alert_sent: bool = False


class ClickCounters(BaseModel):
    """Per-control click counts plus the daily budget counter"""
    next_available: int = 0
    previous_available: int = 0
    next_week: int = 0
    previous_week: int = 0
    total: int = 0
    daily_total: int = 0
    last_reset_date: Optional[date] = None

    def roll_day(self, today: date) -> bool:
        """Reset the daily counter at the local-day boundary"""
        if self.last_reset_date != today:
            self.daily_total = 0
            self.last_reset_date = today
            return True
        return False

    def record(self, control: ClickControl, today: date) -> int:
        """Count one completed click, return the new daily total"""
        self.roll_day(today)
        setattr(self, control.value, getattr(self, control.value) + 1)
        self.total += 1
        self.daily_total += 1
        return self.daily_total


class DateWindow(BaseModel):
    """Inclusive date range, e.g. the weekly window shown on the page"""
    start: date
    end: date
    text: Optional[str] = None

    def overlaps(self, other: "DateWindow") -> bool:
        return self.start <= other.end and self.end >= other.start


class Classification(BaseModel):
    """Outcome of classifying one intercepted response body"""
    outcome: Outcome
    claim_link: Optional[str] = None
    period_start: Optional[date] = None
    sitekey: Optional[str] = None
    error_code: Optional[int] = None

    @classmethod
    def slot_found(cls, claim_link: str, period_start: Optional[date] = None) -> "Classification":
        return cls(outcome=Outcome.SLOT_FOUND, claim_link=claim_link, period_start=period_start)

    @classmethod
    def rate_limited(cls) -> "Classification":
        return cls(outcome=Outcome.RATE_LIMITED)

    @classmethod
    def captcha(cls, sitekey: Optional[str] = None, error_code: Optional[int] = None) -> "Classification":
        return cls(outcome=Outcome.CAPTCHA, sitekey=sitekey, error_code=error_code)

    @classmethod
    def fatal_error(cls, error_code: Optional[int] = None) -> "Classification":
        return cls(outcome=Outcome.FATAL_ERROR, error_code=error_code)

    @classmethod
    def no_slot(cls) -> "Classification":
        return cls(outcome=Outcome.NO_SLOT)


class ClaimResult(BaseModel):
    """Result of inspecting the booking confirmation panel"""
    status: ClaimStatus
    reserved_count: int = 0
    minutes_remaining: Optional[str] = None
    test_center: str = "Unknown"
    slots: List[str] = Field(default_factory=list)
    location_info: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ClaimStatus.IN_PROGRESS


class LogEntry(BaseModel):
    """One entry of the bounded event log"""
    timestamp: datetime = Field(default_factory=datetime.now)
    level: str = "info"
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class AlertEvent(BaseModel):
    """Fixed-shape alert handed to the notification providers"""
    kind: AlertKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    urgency: str = "normal"  # low, normal, high
    timestamp: datetime = Field(default_factory=datetime.now)


class SessionSnapshot(BaseModel):
    """Everything the controller persists between process restarts"""
    state: SessionState = Field(default_factory=SessionState)
    counters: ClickCounters = Field(default_factory=ClickCounters)
    claim_queue: List[str] = Field(default_factory=list)
    claim_locked: bool = False
    logs: List[LogEntry] = Field(default_factory=list)
