"""
Controller to page-agent command channel

At-most-once request/response: each command is delivered to the attached
handler once, and the caller gets a reply, a timeout or a not-ready error.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from ..common.errors import AgentNotReady, ChannelTimeout, PageNavigatedError
from ..common.models import ClickControl

logger = logging.getLogger(__name__)


class AgentCommand(str, Enum):
    PERFORM_ACTION = "perform_action"


class ActionStatus(str, Enum):
    CLICKED = "clicked"
    HOUSEKEEPING = "housekeeping"
    PERIOD_UNKNOWN = "period_unknown"
    CONTROL_MISSING = "control_missing"


class ActionReply(BaseModel):
    """What the agent did with a perform_action command"""
    status: ActionStatus
    control: Optional[ClickControl] = None

    @property
    def clicked(self) -> bool:
        return self.status == ActionStatus.CLICKED


CommandHandler = Callable[[AgentCommand], Awaitable[ActionReply]]


class AgentChannel:
    """
    Routes commands from the controller to the page agent.

    The agent attaches itself once the page is usable and detaches when the
    page goes away; requests in between fail fast with AgentNotReady.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._handler: Optional[CommandHandler] = None

    @property
    def ready(self) -> bool:
        return self._handler is not None

    def attach(self, handler: CommandHandler):
        self._handler = handler
        logger.debug("Agent attached to channel")

    def detach(self):
        self._handler = None
        logger.debug("Agent detached from channel")

    async def request(self, command: AgentCommand, timeout: Optional[float] = None) -> ActionReply:
        handler = self._handler
        if handler is None:
            raise AgentNotReady(f"No agent attached for {command.value}")

        try:
            return await asyncio.wait_for(handler(command), timeout or self.timeout)
        except asyncio.TimeoutError:
            raise ChannelTimeout(f"Agent did not answer {command.value} in time")
        except PageNavigatedError as e:
            raise AgentNotReady(f"Page navigated during {command.value}: {e}") from e
