"""
Configuration management for SlotSniper
"""
import os
import yaml
from pathlib import Path
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator
import pytz

from .models import SessionConfig


class CredentialsConfig(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)


class SearchFormConfig(BaseModel):
    """Choices made on the booking home form before searching"""
    test_category: str = "TC-B"
    # None picks the first group the account offers
    test_centre_group: Optional[str] = None


class SiteConfig(BaseModel):
    base_url: str = "https://driver-services.dvsa.gov.uk"
    home_path: str = "/obs"
    watched_requests: List[str] = Field(default_factory=lambda: [
        "searchForWeeklySlotsNextAvailable",
        "searchForWeeklySlotsPreviousAvailable",
    ])
    search_form: SearchFormConfig = Field(default_factory=SearchFormConfig)

    @property
    def home_url(self) -> str:
        return f"{self.base_url}{self.home_path}"


class BackendConfig(BaseModel):
    url: Optional[str] = None
    timeout: float = 10.0


class WebhookConfig(BaseModel):
    enabled: bool = False
    url: Optional[str] = None


class NotificationsConfig(BaseModel):
    console: bool = True
    backend: bool = True
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class BrowserConfig(BaseModel):
    headless: bool = False
    slow_mo: int = 0
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    storage_state_file: Optional[str] = "data/browser-state.json"
    navigation_timeout_ms: int = 30000


class AutomationConfig(BaseModel):
    """Timing constants and policies of the automation loop"""
    rate_limit_backoff_seconds: float = 10.0
    soft_retry_delay_seconds: float = 3.0
    command_timeout_seconds: float = 10.0
    # Both values come from observed site behaviour, not from a documented limit
    reserved_cap: int = 10
    housekeeping_min_actions: int = 30
    housekeeping_max_actions: int = 45
    housekeeping_wait_min: float = 3.0
    housekeeping_wait_max: float = 6.0
    dialog_poll_interval: float = 0.1
    dialog_timeout: float = 5.0
    dialog_check_throttle: float = 1.0
    claim_step_delay_ms: int = 500
    slot_lost_delay_min: float = 1.0
    slot_lost_delay_max: float = 2.0
    captcha_alert_dedupe_seconds: float = 30.0
    # Captcha outside a claim is only logged unless this is switched on
    alert_captcha_outside_claim: bool = False

    @model_validator(mode="after")
    def _check_windows(self) -> "AutomationConfig":
        if self.housekeeping_min_actions > self.housekeeping_max_actions:
            raise ValueError("housekeeping_min_actions must not exceed housekeeping_max_actions")
        if self.housekeeping_wait_min > self.housekeeping_wait_max:
            raise ValueError("housekeeping_wait_min must not exceed housekeeping_wait_max")
        if self.slot_lost_delay_min > self.slot_lost_delay_max:
            raise ValueError("slot_lost_delay_min must not exceed slot_lost_delay_max")
        return self


class StorageConfig(BaseModel):
    state_file: str = "data/session-state.json"
    max_log_entries: int = 1000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "slotsniper.log"


class Config(BaseModel):
    """Main configuration class"""
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    timezone: str = "Europe/London"

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from YAML file"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        session = {}
        if os.environ.get("SLOTSNIPER_DEADLINE_DATE"):
            session["deadline_date"] = os.environ["SLOTSNIPER_DEADLINE_DATE"]
        if os.environ.get("SLOTSNIPER_MAX_RUNNING_MINUTES"):
            session["max_running_minutes"] = int(os.environ["SLOTSNIPER_MAX_RUNNING_MINUTES"])
        if os.environ.get("SLOTSNIPER_COOLDOWN_MINUTES"):
            session["cooldown_minutes"] = int(os.environ["SLOTSNIPER_COOLDOWN_MINUTES"])

        return cls(
            credentials=CredentialsConfig(
                username=os.environ.get("SLOTSNIPER_USERNAME"),
                password=os.environ.get("SLOTSNIPER_PASSWORD"),
            ),
            backend=BackendConfig(url=os.environ["SLOTSNIPER_BACKEND_URL"]),
            session=SessionConfig(**session),
        )

    def to_yaml(self, path: str | Path):
        """Save configuration to YAML file"""
        path = Path(path)
        with open(path, 'w') as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment"""
    if path:
        return Config.from_yaml(path)

    # Try default locations
    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".slotsniper" / "config.yaml",
    ]

    for p in default_paths:
        if p.exists():
            return Config.from_yaml(p)

    # Fall back to environment variables
    try:
        return Config.from_env()
    except KeyError as e:
        raise RuntimeError(
            f"No config file found and missing environment variable: {e}. "
            f"Create config/config.yaml or set SLOTSNIPER_* environment variables."
        )
