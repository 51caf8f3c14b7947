"""
Exceptions raised by the SlotSniper core
"""
from datetime import timedelta
from typing import Optional


class SlotSniperError(Exception):
    """Base class for all SlotSniper errors"""
    pass


class CooldownActiveError(SlotSniperError):
    """Raised when a session is started before the cooldown period has elapsed"""
    def __init__(self, remaining: timedelta):
        self.remaining = remaining
        super().__init__(
            f"Cooldown active - wait {self.remaining_minutes} more minutes"
        )

    @property
    def remaining_minutes(self) -> int:
        # Round up so "0 minutes" is never reported while still rejecting
        seconds = max(0, int(self.remaining.total_seconds()))
        return -(-seconds // 60)


class ClickLimitReachedError(SlotSniperError):
    """Raised when the daily click budget is already spent"""
    def __init__(self, clicks: int, limit: int):
        self.clicks = clicks
        self.limit = limit
        super().__init__(f"Daily click limit reached ({clicks}/{limit})")


class SessionConfigMissingError(SlotSniperError):
    """Raised when a session is started without a settings snapshot"""
    pass


class SettingsError(SlotSniperError):
    """Raised when session settings cannot be fetched from the backend"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PageNavigatedError(SlotSniperError):
    """Raised when the page navigated away while a command was being executed"""
    pass


class AgentNotReady(SlotSniperError):
    """Raised when the page agent cannot accept a command right now"""
    pass


class ChannelTimeout(SlotSniperError):
    """Raised when the page agent did not answer a command in time"""
    pass
