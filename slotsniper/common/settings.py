"""
Session settings collaborators

Settings are fetched once per session start and handed to the controller as a
frozen SessionConfig snapshot.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional
import httpx
from pydantic import ValidationError

from .errors import SettingsError
from .models import SessionConfig

logger = logging.getLogger(__name__)


class SettingsProvider(ABC):

    @abstractmethod
    async def fetch(self) -> SessionConfig:
        pass


class StaticSettingsProvider(SettingsProvider):
    """Returns the settings from the local config file"""

    def __init__(self, config: SessionConfig):
        self.config = config

    async def fetch(self) -> SessionConfig:
        return self.config


class BackendSettingsProvider(SettingsProvider):
    """Reads the common settings from the dashboard backend"""

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch(self) -> SessionConfig:
        try:
            response = await self.client.get(f"{self.base_url}/api/settings/common")
        except httpx.HTTPError as e:
            raise SettingsError(f"Settings request failed: {e}") from e

        if response.status_code != 200:
            raise SettingsError(
                f"Settings request failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        body = response.json()
        if not body.get("success"):
            raise SettingsError(f"Backend refused settings request: {body.get('message')}")

        try:
            config = SessionConfig.from_backend(body.get("settings") or {})
        except (ValidationError, ValueError) as e:
            raise SettingsError(f"Invalid settings from backend: {e}") from e

        logger.info(
            f"Settings loaded: jitter {config.jitter_min}-{config.jitter_max}s, "
            f"{config.max_running_minutes}m running, {config.cooldown_minutes}m cooldown, "
            f"deadline {config.deadline_date}"
        )
        return config


async def fetch_with_fallback(provider: SettingsProvider, fallback: SessionConfig) -> SessionConfig:
    """Fetch settings, falling back to local defaults when the backend is unavailable"""
    try:
        return await provider.fetch()
    except SettingsError as e:
        logger.warning(f"{e} - using local session settings")
        return fallback
