"""Client-side connection state machine."""

import logging
import time
from enum import Enum

from src.mcp.errors import InvalidTransition

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    DEGRADED = "degraded"


# Teardown (-> DISCONNECTED) is allowed from every state
_TRANSITIONS: dict[ChannelState, set[ChannelState]] = {
    ChannelState.DISCONNECTED: {ChannelState.CONNECTING},
    ChannelState.CONNECTING: {ChannelState.OPEN, ChannelState.DEGRADED},
    ChannelState.OPEN: {ChannelState.DEGRADED},
    ChannelState.DEGRADED: {ChannelState.CONNECTING},
}


class ConnectionState:
    """Liveness record of one push channel as seen by the client."""

    def __init__(self) -> None:
        self.state = ChannelState.DISCONNECTED
        self.channel_id: str | None = None
        self.partition: str | None = None
        self.retry_count = 0
        self.last_heartbeat: float | None = None

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.OPEN

    def transition(self, target: ChannelState) -> None:
        """
        Move to a new state.

        Raises:
            InvalidTransition: If the state machine does not allow the move.
        """
        if target is self.state:
            return
        if target is not ChannelState.DISCONNECTED and target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        logger.debug(f"Channel state {self.state.value} -> {target.value}")
        self.state = target

        if target is ChannelState.OPEN:
            self.retry_count = 0
            self.heartbeat()
        elif target is ChannelState.DEGRADED:
            self.retry_count += 1
        elif target is ChannelState.DISCONNECTED:
            self.channel_id = None

    def mark_open(self, channel_id: str, partition: str | None = None) -> None:
        self.transition(ChannelState.OPEN)
        self.channel_id = channel_id
        self.partition = partition

    def heartbeat(self) -> None:
        """Record a ping or data frame."""
        self.last_heartbeat = time.monotonic()

    def idle_for(self) -> float | None:
        """Seconds since the last ping or data frame, if any was seen."""
        if self.last_heartbeat is None:
            return None
        return time.monotonic() - self.last_heartbeat
